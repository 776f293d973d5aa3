# tsfe_forecasting/serve_forecaster.py
from __future__ import annotations
import argparse
import time
from typing import List, Optional
from urllib.parse import quote

import pandas as pd

from tsfe_common.config import DEFAULT_HORIZON, RESULT_DIR
from tsfe_common.errors import NotFound
from tsfe_common.metric_logger import sync_all_metrics
from tsfe_common.minio_helper import save_csv, save_json
from tsfe_common.profiler import time_block
from tsfe_common.store import get_store
from .forecaster import forecast_with
from .registry import ModelLifecycleManager


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser("forecast serve")
    ap.add_argument("--subject", type=str, default="", help="use the most accurate model of this subject")
    ap.add_argument("--model_id", type=str, default="", help="use this model instead of the best one")
    ap.add_argument("--horizon", type=int, default=DEFAULT_HORIZON)
    ap.add_argument("--start_year", type=int, required=True)
    args = ap.parse_args(argv)
    if not args.subject and not args.model_id:
        ap.error("one of --subject / --model_id is required")

    print("[forecast.serve] start", flush=True)
    store = get_store()
    manager = ModelLifecycleManager(store)

    model_id = args.model_id
    if not model_id:
        best = manager.best_for(args.subject)
        if best is None:
            raise NotFound(f"no model stored for subject '{args.subject}'")
        model_id = best.id

    regressor, record = manager.load(model_id)
    with regressor, time_block("forecast", "serve", {"model_id": model_id, "horizon": args.horizon}, echo=True):
        points = forecast_with(regressor, record.artifact, args.horizon, args.start_year)

    ts = int(time.time())
    base = f"{RESULT_DIR}/forecasting/forecast_{quote(record.subject_key, safe='')}_{ts}"
    # CSV
    out = pd.DataFrame({"year": [p.year for p in points], "value": [p.value for p in points]})
    save_csv(store, f"{base}.csv", out)
    # JSON
    save_json(store, f"{base}.json", {
        "model_id": model_id,
        "subject_key": record.subject_key,
        "horizon": args.horizon,
        "start_year": args.start_year,
        "accuracy": record.accuracy,
        "forecast": [p._asdict() for p in points],
    })
    print(f"[forecast.serve] wrote {base}.csv/json", flush=True)
    sync_all_metrics(store)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
