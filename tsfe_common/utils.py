#!/usr/bin/env python3
# tsfe_common/utils.py
from __future__ import annotations
import time
import uuid
from datetime import datetime, timezone

import numpy as np

def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")

def new_model_id(prefix: str = "model") -> str:
    # 毫秒时间戳定宽，按 key 字典序即按创建顺序
    return f"{prefix}_{int(time.time() * 1000):013d}_{uuid.uuid4().hex[:9]}"

def round_half_up(x: float) -> int:
    """Rounding with .5 going up, unlike Python's banker's round()."""
    return int(np.floor(float(x) + 0.5))
