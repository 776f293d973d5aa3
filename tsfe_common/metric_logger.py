#!/usr/bin/env python3
# tsfe_common/metric_logger.py
from __future__ import annotations
import os, json, time, threading
from typing import Dict, List, Any, Optional

from .config import METRICS_PREFIX
from .utils import now_iso

# 可控行为（环境变量）：
_METRICS_STREAM_STDOUT = os.getenv("METRICS_STREAM_STDOUT", "0").strip().lower() in ("1","true","yes","on")
_METRICS_MAX_BUFFER    = int(os.getenv("METRICS_MAX_BUFFER", "10000"))

CSV_HEADER = "ts,component,event,pod,kv\n"

_BUF: List[Dict[str, Any]] = []
_LOCK = threading.Lock()

def _pod() -> str:
    return os.getenv("HOSTNAME", "local")

def _row_line(r: Dict[str, Any]) -> str:
    kv = json.dumps(r.get("kv", {}), ensure_ascii=False, separators=(",", ":"), default=str)
    def safe(x): return str(x).replace("\n", " ").replace("\r", " ").replace(",", ";")
    return f"{safe(r['ts'])},{safe(r['component'])},{safe(r['event'])},{safe(r['pod'])},{kv}"

def log_metric(*, component: str, event: str, **kwargs) -> None:
    row = {
        "ts": now_iso(),
        "component": component,
        "event": event,
        "pod": _pod(),
        "kv": kwargs or {},
    }
    if _METRICS_STREAM_STDOUT:
        kv_pairs = " ".join(f"{k}={v}" for k, v in (kwargs or {}).items())
        print(f"[metrics:{row['component']}/{row['pod']}] {row['event']} | {kv_pairs}", flush=True)
    with _LOCK:
        _BUF.append(row)
        # 无人 flush 时只保留最近的事件
        if len(_BUF) > _METRICS_MAX_BUFFER:
            del _BUF[: len(_BUF) - _METRICS_MAX_BUFFER]

def buffered(component: Optional[str] = None) -> List[Dict[str, Any]]:
    with _LOCK:
        return [dict(r) for r in _BUF if component is None or r["component"] == component]

def sync_all_metrics(store) -> List[str]:
    """Append buffered rows to one CSV shard per component and clear the buffer."""
    with _LOCK:
        rows = list(_BUF)
        _BUF.clear()
    if not rows:
        return []
    buckets: Dict[str, List[str]] = {}
    for r in rows:
        buckets.setdefault(r.get("component", "misc"), []).append(_row_line(r))
    written = []
    pod = _pod()
    for comp, lines in buckets.items():
        key = f"{METRICS_PREFIX}/{comp}-{pod}.csv"
        try:
            old = store.get(key).decode("utf-8", "ignore")
        except FileNotFoundError:
            old = ""
        payload = (old or CSV_HEADER) + ("" if (not old or old.endswith("\n")) else "\n") + "\n".join(lines) + "\n"
        store.put(key, payload.encode("utf-8"), "text/csv")
        written.append(key)
    return written

def _reset_for_tests() -> None:
    with _LOCK:
        _BUF.clear()
