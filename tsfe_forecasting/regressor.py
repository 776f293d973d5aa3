#!/usr/bin/env python3
# tsfe_forecasting/regressor.py
"""
Regressor = MLPRegressor + its optimizer loop, with an explicit lifecycle:

    UNBUILT --build()--> BUILT --train()/load_weights()--> TRAINED
       \\_____________________ dispose() ____________________/--> DISPOSED

Any call on a disposed instance raises ``DisposedError``. The class is a context
manager; leaving the ``with`` block disposes the network on success and failure.
"""
from __future__ import annotations
import math
import threading
import time
from enum import Enum
from typing import Optional, Sequence

import numpy as np
import torch
import torch.nn as nn
from torch.utils.data import DataLoader, TensorDataset

from tsfe_common.config import LOG_EVERY, get_device
from tsfe_common.errors import CorruptArtifact, DisposedError, InsufficientData, TrainingFailure
from tsfe_common.metric_logger import log_metric
from .dataset import WindowedDataset, as_series, build_windows, denormalize, normalize, require_trainable, series_values
from .metrics import evaluate_metrics
from .models import Metrics, NormalizationState, RegressorConfig, TrainedArtifact
from .network import MLPRegressor, bytes_to_state, count_params, state_to_bytes


# fork_rng + manual_seed 作用于进程级 CPU RNG；有种子的代码段串行执行
_SEED_LOCK = threading.Lock()


class RegressorState(str, Enum):
    UNBUILT = "unbuilt"
    BUILT = "built"
    TRAINED = "trained"
    DISPOSED = "disposed"


def split_train_val(n: int, validation_fraction: float) -> int:
    """Number of trailing windows held out for validation (>= 1, leaves >= 1 for training)."""
    return min(max(1, int(n * float(validation_fraction))), n - 1)


class Regressor:
    def __init__(self, config: RegressorConfig, device: Optional[str] = None, verbose: bool = True,
                 subject_key: str = ""):
        self.config = config
        self.subject_key = subject_key
        self.device = device or get_device()
        self.verbose = verbose
        self.state = RegressorState.UNBUILT
        self.net: Optional[nn.Module] = None
        self.normalization: Optional[NormalizationState] = None
        self.metrics: Optional[Metrics] = None

    # ---- lifecycle ----
    def _alive(self) -> None:
        if self.state is RegressorState.DISPOSED:
            raise DisposedError(f"regressor ({self.config.short()}) has been disposed")

    def _where(self) -> str:
        return f" for '{self.subject_key}'" if self.subject_key else ""

    def _require(self, *states: RegressorState) -> None:
        self._alive()
        if self.state not in states:
            want = "/".join(s.value for s in states)
            raise RuntimeError(f"regressor is {self.state.value}, expected {want}")

    def build(self) -> "Regressor":
        self._require(RegressorState.UNBUILT)
        cfg = self.config
        # 固定种子初始化，不扰动全局 RNG
        with _SEED_LOCK, torch.random.fork_rng(devices=[]):
            torch.manual_seed(cfg.seed)
            net = MLPRegressor(cfg.window_size, hidden=cfg.hidden_layers, act=cfg.activation)
        self.net = net.to(self.device)
        self.state = RegressorState.BUILT
        return self

    def dispose(self) -> None:
        if self.state is RegressorState.DISPOSED:
            return
        on_cuda = str(self.device).startswith("cuda")
        self.net = None
        self.state = RegressorState.DISPOSED
        if on_cuda and torch.cuda.is_available():
            torch.cuda.empty_cache()

    def __enter__(self) -> "Regressor":
        self._alive()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    # ---- fit ----
    def _forward_np(self, X: np.ndarray) -> np.ndarray:
        self.net.eval()
        with torch.no_grad():
            out = self.net(torch.from_numpy(np.asarray(X, dtype=np.float32)).to(self.device))
        return out.cpu().numpy().ravel().astype(np.float64)

    def train(self, dataset: WindowedDataset, normalization: NormalizationState) -> Metrics:
        if self.state is RegressorState.UNBUILT:
            self.build()
        self._require(RegressorState.BUILT)
        cfg = self.config

        X = np.asarray(dataset.inputs, dtype=np.float32)
        Y = np.asarray(dataset.targets, dtype=np.float32).reshape(-1, 1)
        n = len(X)
        if n < 2:
            raise InsufficientData(n + cfg.window_size, cfg.window_size, cfg.window_size + 2)
        if X.shape[1] != cfg.window_size:
            raise ValueError(f"dataset window width {X.shape[1]} != window_size {cfg.window_size}")

        v = split_train_val(n, cfg.validation_fraction)
        Xtr, Ytr = X[:-v], Y[:-v]
        Xva, Yva = X[-v:], Y[-v:]

        gen = torch.Generator().manual_seed(cfg.seed)
        dl = DataLoader(TensorDataset(torch.from_numpy(Xtr), torch.from_numpy(Ytr)),
                        batch_size=cfg.batch_size, shuffle=True, drop_last=False, generator=gen)
        opt = torch.optim.Adam(self.net.parameters(), lr=cfg.learning_rate)
        lossf = nn.MSELoss()

        t0 = time.perf_counter()
        train_loss = float("nan"); val_loss = float("nan")
        with _SEED_LOCK, torch.random.fork_rng(devices=[]):
            torch.manual_seed(cfg.seed)   # dropout masks
            for ep in range(1, cfg.epochs + 1):
                self.net.train()
                running, seen = 0.0, 0
                for xb, yb in dl:
                    xb, yb = xb.to(self.device), yb.to(self.device)
                    opt.zero_grad(set_to_none=True)
                    loss = lossf(self.net(xb), yb)
                    if not torch.isfinite(loss):
                        raise TrainingFailure(
                            f"non-finite training loss at epoch {ep}{self._where()} ({cfg.short()})", config=cfg, epoch=ep)
                    loss.backward(); opt.step()
                    running += float(loss.item()) * len(xb); seen += len(xb)
                train_loss = running / max(1, seen)

                pv = self._forward_np(Xva)
                val_loss = float(np.mean((pv - Yva.ravel().astype(np.float64)) ** 2))
                if not math.isfinite(val_loss):
                    raise TrainingFailure(
                        f"non-finite validation loss at epoch {ep}{self._where()} ({cfg.short()})", config=cfg, epoch=ep)
                if self.verbose and (ep == 1 or ep % LOG_EVERY == 0 or ep == cfg.epochs):
                    print(f"[train] epoch {ep:03d}/{cfg.epochs} | loss={train_loss:.6f} val_loss={val_loss:.6f}", flush=True)
        train_ms = round((time.perf_counter() - t0) * 1000.0, 3)

        # 验证集指标在原始尺度上计算
        y_pred = denormalize(self._forward_np(Xva), normalization)
        y_true = denormalize(Yva.ravel(), normalization)
        metrics = evaluate_metrics(y_true, y_pred, train_time_ms=train_ms, loss=train_loss, val_loss=val_loss)

        self.normalization = normalization
        self.metrics = metrics
        self.state = RegressorState.TRAINED
        log_metric(component="train", event="done", train_rows=int(n - v), val_rows=int(v),
                   val_loss=round(val_loss, 8), mae=round(metrics.mae, 4), accuracy=round(metrics.accuracy, 2),
                   train_time_ms=train_ms, window_size=cfg.window_size, hidden=list(cfg.hidden_layers),
                   activation=cfg.activation, params=count_params(self.net))
        return metrics

    # ---- inference / weights ----
    def predict(self, inputs) -> np.ndarray:
        self._require(RegressorState.TRAINED)
        X = np.asarray(inputs, dtype=np.float32)
        if X.ndim == 1:
            X = X.reshape(1, -1)
        if X.shape[1] != self.config.window_size:
            raise ValueError(f"expected {self.config.window_size} inputs per row, got {X.shape[1]}")
        return self._forward_np(X)

    def weights_bytes(self) -> bytes:
        self._require(RegressorState.TRAINED)
        return state_to_bytes(self.net)

    def load_weights(self, blob: bytes) -> "Regressor":
        if self.state is RegressorState.UNBUILT:
            self.build()
        self._require(RegressorState.BUILT)
        try:
            state = bytes_to_state(blob)
            self.net.load_state_dict(state, strict=True)
        except Exception as e:
            raise CorruptArtifact(
                f"weights do not fit topology W={self.config.window_size} "
                f"hidden={list(self.config.hidden_layers)}: {e}") from e
        self.net.to(self.device).eval()
        self.state = RegressorState.TRAINED
        return self

    @staticmethod
    def from_artifact(artifact: TrainedArtifact, device: Optional[str] = None) -> "Regressor":
        reg = Regressor(artifact.config, device=device)
        try:
            reg.load_weights(artifact.weights)
        except BaseException:
            reg.dispose()
            raise
        reg.normalization = artifact.normalization
        reg.metrics = artifact.metrics
        return reg

    def __repr__(self) -> str:
        return f"Regressor({self.config.short()}, state={self.state.value})"


def train_series(series: Sequence, config: RegressorConfig, subject_key: str = "",
                 verbose: bool = True) -> TrainedArtifact:
    """normalize -> windows -> build -> train; the regressor never outlives this call."""
    values = series_values(as_series(series))
    require_trainable(len(values), config.window_size, subject_key)
    normed, state = normalize(values)
    ds = build_windows(normed, config.window_size)
    with Regressor(config, verbose=verbose, subject_key=subject_key) as reg:
        reg.build()
        metrics = reg.train(ds, state)
        weights = reg.weights_bytes()
    return TrainedArtifact(
        config=config,
        weights=weights,
        normalization=state,
        tail_window=tuple(float(v) for v in normed[-config.window_size:]),
        metrics=metrics,
    )
