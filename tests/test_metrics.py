"""Unit tests for accuracy metrics in the original scale."""

import math

import numpy as np
import pytest

from tsfe_forecasting.metrics import accuracy_from_mape, evaluate_metrics, mape, r2


class TestAccuracy:

    def test_clamped_to_0_100(self):
        assert accuracy_from_mape(0.0) == 100.0
        assert accuracy_from_mape(0.25) == pytest.approx(75.0)
        assert accuracy_from_mape(3.0) == 0.0
        assert accuracy_from_mape(float("nan")) == 0.0

    def test_mape_is_a_fraction(self):
        assert mape(np.array([100.0, 200.0]), np.array([110.0, 180.0])) == pytest.approx(0.1)

    def test_mape_zero_target_stays_finite(self):
        assert math.isfinite(mape(np.array([0.0, 1.0]), np.array([1.0, 1.0])))


class TestR2:

    def test_perfect_fit(self):
        y = np.array([1.0, 2.0, 3.0])
        assert r2(y, y) == 1.0

    def test_constant_target(self):
        y = np.array([5.0, 5.0])
        assert r2(y, y) == 1.0
        assert r2(y, np.array([4.0, 6.0])) == 0.0


class TestEvaluate:

    def test_fields(self):
        m = evaluate_metrics(np.array([10.0, 20.0]), np.array([12.0, 18.0]), train_time_ms=3.5,
                             loss=0.1, val_loss=0.2)
        assert m.mae == pytest.approx(2.0)
        assert m.rmse == pytest.approx(2.0)
        assert m.mape == pytest.approx(0.15)
        assert m.accuracy == pytest.approx(85.0)
        assert (m.train_time_ms, m.loss, m.val_loss) == (3.5, 0.1, 0.2)
