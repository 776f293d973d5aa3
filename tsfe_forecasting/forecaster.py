# tsfe_forecasting/forecaster.py
"""
Autoregressive multi-step forecast.

Each step predicts one normalized value from the rolling window, denormalizes and
clamps it to a non-negative integer for the output, then slides the window with the
*raw* normalized prediction. Error compounds with the horizon because every input
after the first step contains earlier predictions.
"""
from __future__ import annotations
import math
from collections import deque
from typing import List, NamedTuple, Optional

from tsfe_common.errors import CorruptArtifact, ForecastError
from tsfe_common.metric_logger import log_metric
from tsfe_common.utils import round_half_up
from .dataset import denormalize
from .models import TrainedArtifact
from .regressor import Regressor


class ForecastPoint(NamedTuple):
    year: int
    value: int


def _check(artifact: TrainedArtifact, horizon: int) -> None:
    if int(horizon) < 0:
        raise ValueError(f"horizon must be >= 0, got {horizon}")
    W = artifact.config.window_size
    if len(artifact.tail_window) != W:
        raise CorruptArtifact(f"tail_window has {len(artifact.tail_window)} values, window_size is {W}")


def forecast_with(regressor, artifact: TrainedArtifact, horizon: int, start_year: int) -> List[ForecastPoint]:
    """Runs the loop on a caller-owned regressor (anything with ``predict(window)``)."""
    _check(artifact, horizon)
    window = deque((float(v) for v in artifact.tail_window), maxlen=artifact.config.window_size)
    out: List[ForecastPoint] = []
    for step in range(int(horizon)):
        raw = float(regressor.predict([list(window)])[0])
        if not math.isfinite(raw):
            raise ForecastError(f"non-finite prediction at step {step} (year {int(start_year) + step})")
        value = float(denormalize([raw], artifact.normalization)[0])
        out.append(ForecastPoint(int(start_year) + step, max(0, round_half_up(value))))
        window.append(raw)   # maxlen 自动丢掉最旧的值
    return out


def forecast(artifact: TrainedArtifact, horizon: int, start_year: int,
             regressor: Optional[Regressor] = None) -> List[ForecastPoint]:
    """
    Rehydrates the network from ``artifact`` (unless a trained ``regressor`` is given)
    and disposes it before returning, also on failure.
    """
    _check(artifact, horizon)
    if regressor is not None:
        points = forecast_with(regressor, artifact, horizon, start_year)
    else:
        with Regressor.from_artifact(artifact) as reg:
            points = forecast_with(reg, artifact, horizon, start_year)
    log_metric(component="forecast", event="done", horizon=int(horizon), start_year=int(start_year),
               window_size=artifact.config.window_size)
    return points
