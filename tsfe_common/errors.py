# tsfe_common/errors.py
"""Error taxonomy shared by the forecasting engine and the model store."""
from __future__ import annotations
from typing import List, Optional, Tuple


class TsfeError(Exception):
    """Base class for every engine error."""


class InsufficientData(TsfeError, ValueError):
    """Too few points for the requested window / validation split."""

    def __init__(self, n_points: int, window_size: int, required: int, subject_key: str = ""):
        self.n_points = int(n_points)
        self.window_size = int(window_size)
        self.required = int(required)
        self.subject_key = subject_key
        where = f" for '{subject_key}'" if subject_key else ""
        super().__init__(
            f"not enough data{where}: got {self.n_points} points, "
            f"window_size={self.window_size} needs at least {self.required}"
        )


class TrainingFailure(TsfeError, RuntimeError):
    """Loss became non-finite while fitting."""

    def __init__(self, message: str, config=None, epoch: Optional[int] = None):
        self.config = config
        self.epoch = epoch
        super().__init__(message)


class SearchExhausted(TsfeError, RuntimeError):
    """No candidate of a hyperparameter grid trained successfully."""

    def __init__(self, subject_key: str, failures: List[Tuple[int, str]]):
        self.subject_key = subject_key
        self.failures = list(failures)
        detail = "; ".join(f"#{i}: {msg}" for i, msg in self.failures[:5])
        super().__init__(
            f"hyperparameter search for '{subject_key or '?'}' exhausted: "
            f"all {len(self.failures)} candidates failed ({detail})"
        )


class NotFound(TsfeError, FileNotFoundError):
    """Key or model id absent from the store."""


class CorruptArtifact(TsfeError, ValueError):
    """Stored artifact / bundle cannot be reconstituted."""


class UnsupportedBundle(CorruptArtifact):
    """Export bundle with an unknown format name or version."""


class DisposedError(TsfeError, RuntimeError):
    """Use of a regressor after dispose()."""


class ForecastError(TsfeError, RuntimeError):
    """Autoregressive loop produced a non-finite prediction."""
