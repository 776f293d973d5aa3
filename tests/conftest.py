"""Pytest configuration and shared fixtures.

Everything runs on CPU against a directory-backed model store under tmp_path.
"""

import pytest

from tsfe_common import config
from tsfe_common import metric_logger
from tsfe_common.store import LocalObjectStore
from tsfe_forecasting.models import RegressorConfig
from tsfe_forecasting.regressor import train_series
from tsfe_forecasting.registry import ModelLifecycleManager

config.set_device("cpu")


@pytest.fixture(autouse=True)
def _clean_metrics():
    metric_logger._reset_for_tests()
    yield
    metric_logger._reset_for_tests()


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(str(tmp_path / "store"))


@pytest.fixture
def manager(store):
    return ModelLifecycleManager(store)


@pytest.fixture
def tiny_config():
    """Small enough to train in well under a second."""
    return RegressorConfig(window_size=2, hidden_layers=(8, 4), activation="relu",
                           learning_rate=1e-2, epochs=5, batch_size=4, validation_fraction=0.2, seed=0)


@pytest.fixture
def sample_series():
    """12 yearly points, 2000..2011, trending upward with a wobble."""
    return [(2000 + i, 100.0 + 10.0 * i + (5.0 if i % 2 else 0.0)) for i in range(12)]


@pytest.fixture(scope="session")
def trained_artifact():
    """One real trained artifact shared by the store / registry / bundle tests."""
    cfg = RegressorConfig(window_size=2, hidden_layers=(8, 4), epochs=5, batch_size=4, learning_rate=1e-2)
    series = [(2000 + i, 100.0 + 10.0 * i + (5.0 if i % 2 else 0.0)) for i in range(12)]
    return train_series(series, cfg, subject_key="destination:UnitedStates", verbose=False)


@pytest.fixture
def built_regressors(monkeypatch):
    """Records every Regressor constructed while the test runs."""
    from tsfe_forecasting.regressor import Regressor

    created = []
    original_init = Regressor.__init__

    def tracking_init(self, *args, **kwargs):
        original_init(self, *args, **kwargs)
        created.append(self)

    monkeypatch.setattr(Regressor, "__init__", tracking_init)
    return created
