# tsfe_forecasting/metrics.py
from __future__ import annotations
import numpy as np
from sklearn.metrics import mean_absolute_error, mean_squared_error

from tsfe_common.config import MAPE_EPS
from .models import Metrics

def mae(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    return float(mean_absolute_error(np.ravel(y_true), np.ravel(y_pred)))

def rmse(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    return float(np.sqrt(mean_squared_error(np.ravel(y_true), np.ravel(y_pred))))

def mape(y_true: np.ndarray, y_pred: np.ndarray, eps: float = MAPE_EPS) -> float:
    """Fraction, not percent. Zero targets use ``eps`` as denominator."""
    yt = np.asarray(y_true, dtype=np.float64).ravel()
    yp = np.asarray(y_pred, dtype=np.float64).ravel()
    denom = np.maximum(np.abs(yt), eps)
    return float(np.mean(np.abs(yp - yt) / denom))

def r2(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    # 单点或常数目标时 sklearn 的 r2_score 会给 nan；这里：完全命中 = 1，否则 0
    yt = np.asarray(y_true, dtype=np.float64).ravel()
    yp = np.asarray(y_pred, dtype=np.float64).ravel()
    ss_res = float(np.sum((yp - yt) ** 2))
    ss_tot = float(np.sum((yt - float(np.mean(yt))) ** 2))
    if ss_tot <= 0.0:
        return 1.0 if ss_res == 0.0 else 0.0
    return 1.0 - ss_res / ss_tot

def accuracy_from_mape(m: float) -> float:
    if not np.isfinite(m):
        return 0.0
    return float(min(100.0, max(0.0, (1.0 - m) * 100.0)))

def evaluate_metrics(y_true: np.ndarray, y_pred: np.ndarray, *, train_time_ms: float = 0.0,
                     loss: float = float("nan"), val_loss: float = float("nan")) -> Metrics:
    """All error metrics in the original (denormalized) scale."""
    m = mape(y_true, y_pred)
    return Metrics(
        mae=mae(y_true, y_pred),
        rmse=rmse(y_true, y_pred),
        mape=m,
        r2=r2(y_true, y_pred),
        accuracy=accuracy_from_mape(m),
        train_time_ms=float(train_time_ms),
        loss=float(loss),
        val_loss=float(val_loss),
    )
