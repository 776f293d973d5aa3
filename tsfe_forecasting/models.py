#!/usr/bin/env python3
# tsfe_forecasting/models.py
from __future__ import annotations
import math
from dataclasses import dataclass, asdict, replace
from typing import Any, Dict, Optional, Sequence, Tuple

from tsfe_common import config as _cfg

ACTIVATIONS = ("relu", "elu", "tanh", "sigmoid")

# ======================
# 配置
# ======================
@dataclass(frozen=True)
class RegressorConfig:
    window_size: int = _cfg.DEFAULT_WINDOW_SIZE
    hidden_layers: Tuple[int, ...] = _cfg.DEFAULT_HIDDEN_LAYERS
    activation: str = _cfg.DEFAULT_ACTIVATION
    learning_rate: float = _cfg.DEFAULT_LR
    epochs: int = _cfg.DEFAULT_EPOCHS
    batch_size: int = _cfg.DEFAULT_BATCH_SIZE
    validation_fraction: float = _cfg.DEFAULT_VAL_FRAC
    seed: int = _cfg.DEFAULT_SEED

    def __post_init__(self):
        for k in ("window_size", "epochs", "batch_size", "seed"):
            object.__setattr__(self, k, int(getattr(self, k)))
        for k in ("learning_rate", "validation_fraction"):
            object.__setattr__(self, k, float(getattr(self, k)))
        object.__setattr__(self, "hidden_layers", tuple(int(h) for h in self.hidden_layers))
        object.__setattr__(self, "activation", str(self.activation).lower())
        if int(self.window_size) < 1:
            raise ValueError(f"window_size must be >= 1, got {self.window_size}")
        if not self.hidden_layers or any(h <= 0 for h in self.hidden_layers):
            raise ValueError(f"hidden_layers must be non-empty positive widths, got {list(self.hidden_layers)}")
        if self.activation not in ACTIVATIONS:
            raise ValueError(f"unsupported activation: {self.activation}")
        if not (math.isfinite(float(self.learning_rate)) and float(self.learning_rate) > 0):
            raise ValueError(f"learning_rate must be a positive number, got {self.learning_rate}")
        if int(self.epochs) < 1 or int(self.batch_size) < 1:
            raise ValueError(f"epochs/batch_size must be positive, got {self.epochs}/{self.batch_size}")
        if not (0.0 < float(self.validation_fraction) < 1.0):
            raise ValueError(f"validation_fraction must be in (0, 1), got {self.validation_fraction}")

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["hidden_layers"] = list(self.hidden_layers)
        return d

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "RegressorConfig":
        known = {k: d[k] for k in RegressorConfig.__dataclass_fields__ if k in d}
        return RegressorConfig(**known)

    def merged(self, overrides: Dict[str, Any]) -> "RegressorConfig":
        return replace(self, **overrides)

    def short(self) -> str:
        return (f"W={self.window_size} hidden={list(self.hidden_layers)} act={self.activation} "
                f"lr={self.learning_rate:g} ep={self.epochs} bs={self.batch_size}")


@dataclass(frozen=True)
class NormalizationState:
    min_value: float
    max_value: float

    def __post_init__(self):
        if not (self.min_value <= self.max_value):
            raise ValueError(f"normalization bounds out of order: min={self.min_value} max={self.max_value}")

    @property
    def degenerate(self) -> bool:
        return self.min_value == self.max_value

    def to_dict(self) -> Dict[str, float]:
        return {"min": float(self.min_value), "max": float(self.max_value)}

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "NormalizationState":
        return NormalizationState(float(d["min"]), float(d["max"]))


@dataclass(frozen=True)
class Metrics:
    mae: float
    rmse: float
    mape: float
    r2: float
    accuracy: float
    train_time_ms: float
    loss: float = float("nan")
    val_loss: float = float("nan")

    def to_dict(self) -> Dict[str, float]:
        return {k: float(v) for k, v in asdict(self).items()}

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "Metrics":
        return Metrics(**{k: (float("nan") if d[k] is None else float(d[k]))
                          for k in Metrics.__dataclass_fields__ if k in d})


@dataclass(frozen=True)
class TrainedArtifact:
    config: RegressorConfig
    weights: bytes
    normalization: NormalizationState
    tail_window: Tuple[float, ...]
    metrics: Metrics

    def __post_init__(self):
        object.__setattr__(self, "tail_window", tuple(float(v) for v in self.tail_window))

    def meta_dict(self) -> Dict[str, Any]:
        # weights 单独存放
        return {
            "config": self.config.to_dict(),
            "normalization": self.normalization.to_dict(),
            "tail_window": list(self.tail_window),
            "metrics": self.metrics.to_dict(),
        }

    @staticmethod
    def from_meta(meta: Dict[str, Any], weights: bytes) -> "TrainedArtifact":
        return TrainedArtifact(
            config=RegressorConfig.from_dict(meta["config"]),
            weights=bytes(weights),
            normalization=NormalizationState.from_dict(meta["normalization"]),
            tail_window=tuple(meta["tail_window"]),
            metrics=Metrics.from_dict(meta["metrics"]),
        )


@dataclass
class ModelRecord:
    id: str
    display_name: str
    subject_key: str
    artifact: TrainedArtifact
    created_at: str
    last_used_at: Optional[str] = None
    name: str = ""

    @property
    def accuracy(self) -> float:
        return self.artifact.metrics.accuracy

    def meta_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "subject_key": self.subject_key,
            "created_at": self.created_at,
            "last_used_at": self.last_used_at,
            **self.artifact.meta_dict(),
        }

    @staticmethod
    def from_meta(meta: Dict[str, Any], weights: bytes) -> "ModelRecord":
        return ModelRecord(
            id=str(meta["id"]),
            name=str(meta.get("name") or ""),
            display_name=str(meta["display_name"]),
            subject_key=str(meta["subject_key"]),
            created_at=str(meta["created_at"]),
            last_used_at=meta.get("last_used_at"),
            artifact=TrainedArtifact.from_meta(meta, weights),
        )


def grid_from_dicts(items: Sequence[Dict[str, Any]], base: Optional[RegressorConfig] = None) -> list:
    """Partial dicts merged over ``base`` (the regressor defaults)."""
    base = base or RegressorConfig()
    out = []
    for p in items:
        unknown = set(p) - set(RegressorConfig.__dataclass_fields__)
        if unknown:
            raise ValueError(f"unknown hyperparameter(s): {sorted(unknown)}")
        out.append(base.merged(dict(p)))
    return out
