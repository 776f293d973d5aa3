#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
MLP forecaster: hyperparameter grid search

- 每个候选独立地：归一化 → 滑窗 → 新建 Regressor → 训练 → 记录验证集 MSE → 立即 dispose
- 选型：验证集 MSE（归一化尺度）最低者胜；平手取网格中更靠前的候选
- accuracy (基于 MAPE) 只用于展示，不参与选型
- 单个候选的 TrainingFailure / InsufficientData 被隔离；全部失败 → SearchExhausted
- 每个候选结束后（成功或失败）调用 progress(candidate_index, total, config, metrics_or_None)

CLI 产物：
  - results/hpsearch/<subject>/grid_results.csv   （全量结果）
  - models/forecast/records/<id>.json             （最优配置在全量序列上重训后的模型）
"""
from __future__ import annotations
import argparse
import json
import math
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple
from urllib.parse import quote

import pandas as pd

from tsfe_common.config import RESULT_DIR, DATA_DIR, default_grid
from tsfe_common.errors import InsufficientData, SearchExhausted, TrainingFailure
from tsfe_common.metric_logger import log_metric, sync_all_metrics
from tsfe_common.minio_helper import save_csv
from tsfe_common.profiler import time_block
from tsfe_common.store import get_store
from tsfe_forecasting.dataset import as_series, load_series_csv
from tsfe_forecasting.models import Metrics, RegressorConfig, grid_from_dicts
from tsfe_forecasting.regressor import train_series

ProgressSink = Callable[[int, int, RegressorConfig, Optional[Metrics]], None]

DEFAULT_GRID: List[RegressorConfig] = grid_from_dicts(default_grid())


@dataclass
class SearchReport:
    subject_key: str
    best_index: int
    best_config: RegressorConfig
    best_metrics: Metrics
    rows: List[dict] = field(default_factory=list)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.rows)


def _notify(progress: Optional[ProgressSink], idx: int, total: int, cfg: RegressorConfig,
            metrics: Optional[Metrics]) -> None:
    if progress is None:
        return
    try:
        progress(idx, total, cfg, metrics)
    except Exception as ex:
        # sink 出错不影响搜索
        print(f"[hpsearch] WARN: progress sink raised {type(ex).__name__}: {ex}", flush=True)


def run_search(series: Sequence, grid: Sequence[RegressorConfig], progress: Optional[ProgressSink] = None,
               subject_key: str = "", verbose: bool = False) -> SearchReport:
    series = as_series(series)
    total = len(grid)
    if total == 0:
        raise ValueError("hyperparameter grid is empty")
    print(f"[hpsearch] start subject='{subject_key}' points={len(series)} candidates={total}", flush=True)

    rows: List[dict] = []
    failures: List[Tuple[int, str]] = []
    best: Optional[Tuple[float, int, RegressorConfig, Metrics]] = None

    for i, cfg in enumerate(grid):
        try:
            with time_block("hpsearch", "candidate", {"index": i, "subject_key": subject_key}) as tb:
                artifact = train_series(series, cfg, subject_key=subject_key, verbose=verbose)
                tb["val_loss"] = artifact.metrics.val_loss
            mets = artifact.metrics
            rows.append({"index": i, **cfg.to_dict(), **mets.to_dict(), "error": ""})
            # 严格小于：平手保留更早的候选
            if math.isfinite(mets.val_loss) and (best is None or mets.val_loss < best[0]):
                best = (mets.val_loss, i, cfg, mets)
            print(f"  - {i + 1}/{total} {cfg.short()} | val_loss={mets.val_loss:.6f} "
                  f"acc={mets.accuracy:.2f}%{' (*)' if best and best[1] == i else ''}", flush=True)
            _notify(progress, i, total, cfg, mets)
        except (TrainingFailure, InsufficientData) as ex:
            failures.append((i, str(ex)))
            rows.append({"index": i, **cfg.to_dict(), "val_loss": float("inf"), "error": str(ex)[:200]})
            print(f"  - {i + 1}/{total} {cfg.short()} | FAILED: {ex}", flush=True)
            log_metric(component="hpsearch", event="candidate_failed", index=i, subject_key=subject_key,
                       error=type(ex).__name__)
            _notify(progress, i, total, cfg, None)

    if best is None:
        raise SearchExhausted(subject_key, failures)

    _, best_i, best_cfg, best_mets = best
    log_metric(component="hpsearch", event="summary", subject_key=subject_key, candidates=total,
               failed=len(failures), best_index=best_i, best_val_loss=best_mets.val_loss,
               best_accuracy=round(best_mets.accuracy, 2))
    print(f"[hpsearch] BEST #{best_i + 1}: {best_cfg.short()} val_loss={best_mets.val_loss:.6f}", flush=True)
    return SearchReport(subject_key, best_i, best_cfg, best_mets, rows)


def search(series: Sequence, grid: Sequence[RegressorConfig], progress: Optional[ProgressSink] = None,
           subject_key: str = "") -> Tuple[RegressorConfig, Metrics]:
    report = run_search(series, grid, progress=progress, subject_key=subject_key)
    return report.best_config, report.best_metrics


def train_with_tuning(series: Sequence, subject_key: str, manager,
                      grid: Optional[Sequence[RegressorConfig]] = None,
                      progress: Optional[ProgressSink] = None,
                      display_name: Optional[str] = None) -> Tuple[str, Metrics, RegressorConfig]:
    """search → retrain the winning config on the full series → persist."""
    if not subject_key:
        raise ValueError("subject_key must be a non-empty string")
    grid = list(grid) if grid is not None else DEFAULT_GRID
    report = run_search(series, grid, progress=progress, subject_key=subject_key)
    artifact = train_series(series, report.best_config, subject_key=subject_key)
    model_id = manager.persist(subject_key, artifact, display_name=display_name)
    return model_id, artifact.metrics, report.best_config


# --------- 主流程 ---------
def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser("mlp hpsearch")
    ap.add_argument("--subject", type=str, required=True, help="subject key, e.g. destination:UnitedStates")
    ap.add_argument("--data_key", type=str, default=f"{DATA_DIR}/series.csv")
    ap.add_argument("--year_col", type=str, default="year")
    ap.add_argument("--value_col", type=str, default="value")
    ap.add_argument("--grid_json", type=str, default="", help="JSON list of partial configs; default grid if empty")
    ap.add_argument("--epochs", type=int, default=0, help="override epochs for every candidate (>0)")
    args = ap.parse_args(argv)

    from tsfe_forecasting.registry import ModelLifecycleManager

    store = get_store()
    print(f"[hpsearch] input={store!r}/{args.data_key}", flush=True)
    series = load_series_csv(store, args.data_key, args.year_col, args.value_col)

    items = json.loads(args.grid_json) if args.grid_json else default_grid()
    if args.epochs > 0:
        items = [{**p, "epochs": args.epochs} for p in items]
    grid = grid_from_dicts(items)

    manager = ModelLifecycleManager(store)
    report = run_search(series, grid, subject_key=args.subject)
    csv_key = f"{RESULT_DIR}/hpsearch/{quote(args.subject, safe='')}/grid_results.csv"
    save_csv(store, csv_key, report.to_frame())
    print(f"[hpsearch] wrote results -> {csv_key}", flush=True)

    artifact = train_series(series, report.best_config, subject_key=args.subject)
    model_id = manager.persist(args.subject, artifact)
    print(f"[hpsearch] saved best model {model_id} accuracy={artifact.metrics.accuracy:.2f}%", flush=True)
    sync_all_metrics(store)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
