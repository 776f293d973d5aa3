#!/usr/bin/env python3
# tsfe_common/profiler.py
from __future__ import annotations
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from .metric_logger import log_metric

@contextmanager
def time_block(component: str, event: str, extra: Optional[Dict[str, Any]] = None,
               echo: bool = False) -> Iterator[Dict[str, Any]]:
    """
    Logs ``runtime_ms`` and ``ok`` for the wrapped block (also when it raises).
    The yielded dict is merged into the event, so callers can attach results.
    """
    payload: Dict[str, Any] = dict(extra or {})
    t0 = time.perf_counter()
    ok = False
    try:
        yield payload
        ok = True
    finally:
        payload["runtime_ms"] = round((time.perf_counter() - t0) * 1000, 3)
        payload["ok"] = ok
        if echo:
            print(f"[{component}] {event} {'done' if ok else 'failed'} in {payload['runtime_ms']:.1f} ms", flush=True)
        log_metric(component=component, event=event, **payload)
