# tsfe_forecasting/dataset.py
# -*- coding: utf-8 -*-
from __future__ import annotations
import math
from typing import Iterable, List, NamedTuple, Sequence, Tuple

import numpy as np
import pandas as pd

from tsfe_common.errors import InsufficientData
from tsfe_common.minio_helper import load_csv
from .models import NormalizationState


class SeriesPoint(NamedTuple):
    year: int
    value: float


class WindowedDataset(NamedTuple):
    inputs: np.ndarray    # (n, W) float32
    targets: np.ndarray   # (n,)   float32

    def __len__(self) -> int:
        return int(self.targets.shape[0])


def as_series(points: Iterable) -> List[SeriesPoint]:
    """
    Accepts (year, value) pairs or {"year", "value"} dicts; returns a new list sorted
    by year. Duplicate years, negative or non-finite values are rejected.
    """
    out: List[SeriesPoint] = []
    for p in points:
        if isinstance(p, dict):
            year, value = p["year"], p["value"]
        else:
            year, value = p[0], p[1]
        value = float(value)
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"series value for year {year} must be finite and >= 0, got {value}")
        out.append(SeriesPoint(int(year), value))
    out.sort(key=lambda sp: sp.year)
    for a, b in zip(out, out[1:]):
        if a.year == b.year:
            raise ValueError(f"duplicate year in series: {a.year}")
    return out


def series_values(series: Sequence) -> np.ndarray:
    return np.asarray([float(p[1]) for p in series], dtype=np.float64)


def series_from_frame(df: pd.DataFrame, year_col: str = "year", value_col: str = "value") -> List[SeriesPoint]:
    for c in (year_col, value_col):
        if c not in df.columns:
            raise RuntimeError(f"column '{c}' not found; have {list(df.columns)}")
    sub = df[[year_col, value_col]].copy()
    sub[year_col] = pd.to_numeric(sub[year_col], errors="coerce")
    sub[value_col] = pd.to_numeric(sub[value_col], errors="coerce")
    sub = sub.dropna().reset_index(drop=True)
    return as_series(zip(sub[year_col].astype(int), sub[value_col].astype(float)))


def load_series_csv(store, key: str, year_col: str = "year", value_col: str = "value") -> List[SeriesPoint]:
    return series_from_frame(load_csv(store, key), year_col, value_col)


# ---- min-max ----
def normalize(values) -> Tuple[np.ndarray, NormalizationState]:
    """Linear min-max scaling to [0, 1]; a constant input maps to all zeros."""
    arr = np.asarray([float(v[1]) if isinstance(v, tuple) else float(v) for v in values], dtype=np.float64)
    if arr.size == 0:
        raise InsufficientData(0, 0, 1)
    lo, hi = float(arr.min()), float(arr.max())
    state = NormalizationState(lo, hi)
    if state.degenerate:
        return np.zeros_like(arr), state
    return (arr - lo) / (hi - lo), state


def denormalize(values, state: NormalizationState) -> np.ndarray:
    arr = np.asarray(values, dtype=np.float64)
    if state.degenerate:
        return np.full_like(arr, state.min_value)
    return arr * (state.max_value - state.min_value) + state.min_value


# ---- 滑窗 ----
def build_windows(normalized, window_size: int) -> WindowedDataset:
    """
    Stride-1 windows of ``window_size`` inputs; target = next value.
      inputs  shape: (L - W, W)
      targets shape: (L - W,)
    """
    arr = np.asarray(normalized, dtype=np.float32).ravel()
    W = int(window_size)
    L = len(arr)
    if W < 1:
        raise ValueError(f"window_size must be >= 1, got {W}")
    if L < W + 1:
        raise InsufficientData(L, W, W + 1)
    n = L - W
    X = np.stack([arr[i:i + W] for i in range(n)], axis=0)
    Y = arr[W:W + n].copy()
    return WindowedDataset(X, Y)


def require_trainable(n_points: int, window_size: int, subject_key: str = "") -> None:
    """At least W + 2 points so that both train and validation splits are non-empty."""
    need = int(window_size) + 2
    if int(n_points) < need:
        raise InsufficientData(n_points, window_size, need, subject_key)
