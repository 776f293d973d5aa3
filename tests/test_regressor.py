"""Unit tests for the Regressor lifecycle and train_series."""

import math

import numpy as np
import pytest
import torch

from tsfe_common.errors import CorruptArtifact, DisposedError, InsufficientData, TrainingFailure
from tsfe_common.metric_logger import buffered
from tsfe_forecasting.dataset import build_windows, normalize
from tsfe_forecasting.network import bytes_to_state
from tsfe_forecasting.regressor import Regressor, RegressorState, split_train_val, train_series


def _dataset(values, w):
    normed, state = normalize(values)
    return build_windows(normed, w), state


class TestLifecycle:

    def test_states(self, tiny_config, sample_series):
        ds, state = _dataset([v for _, v in sample_series], tiny_config.window_size)
        reg = Regressor(tiny_config, verbose=False)
        assert reg.state is RegressorState.UNBUILT
        reg.build()
        assert reg.state is RegressorState.BUILT
        reg.train(ds, state)
        assert reg.state is RegressorState.TRAINED
        assert reg.predict(ds.inputs[:2]).shape == (2,)
        reg.dispose()
        assert reg.state is RegressorState.DISPOSED

    def test_disposed_rejects_calls(self, tiny_config):
        reg = Regressor(tiny_config).build()
        reg.dispose()
        reg.dispose()   # idempotent
        with pytest.raises(DisposedError):
            reg.predict([[0.1, 0.2]])
        with pytest.raises(DisposedError):
            reg.build()

    def test_context_manager_disposes_on_error(self, tiny_config):
        with pytest.raises(RuntimeError):
            with Regressor(tiny_config).build() as reg:
                raise RuntimeError("boom")
        assert reg.state is RegressorState.DISPOSED

    def test_predict_before_train(self, tiny_config):
        with Regressor(tiny_config).build() as reg:
            with pytest.raises(RuntimeError, match="expected trained"):
                reg.predict([[0.1, 0.2]])

    def test_global_rng_untouched(self, tiny_config):
        torch.manual_seed(123)
        expected = torch.rand(3)
        torch.manual_seed(123)
        with Regressor(tiny_config).build():
            pass
        assert torch.equal(torch.rand(3), expected)


class TestTrain:

    def test_validation_split(self):
        assert split_train_val(10, 0.2) == 2
        assert split_train_val(2, 0.2) == 1
        assert split_train_val(3, 0.9) == 2

    def test_metric_bounds(self, tiny_config, sample_series):
        art = train_series(sample_series, tiny_config, verbose=False)
        m = art.metrics
        assert 0.0 <= m.accuracy <= 100.0
        assert m.mae >= 0.0 and m.rmse >= m.mae - 1e-9 and m.mape >= 0.0
        assert math.isfinite(m.loss) and math.isfinite(m.val_loss)
        assert m.train_time_ms >= 0.0
        assert len(art.tail_window) == tiny_config.window_size
        assert all(0.0 <= v <= 1.0 for v in art.tail_window)
        assert buffered("train")[-1]["event"] == "done"

    def test_deterministic(self, tiny_config, sample_series):
        a = train_series(sample_series, tiny_config, verbose=False)
        b = train_series(sample_series, tiny_config, verbose=False)
        assert a.metrics.val_loss == b.metrics.val_loss
        sa, sb = bytes_to_state(a.weights), bytes_to_state(b.weights)
        assert sa.keys() == sb.keys()
        assert all(torch.equal(sa[k], sb[k]) for k in sa)

    def test_constant_series_is_perfect(self, tiny_config):
        art = train_series([(2000 + i, 50.0) for i in range(8)], tiny_config, verbose=False)
        assert art.normalization.degenerate
        assert art.metrics.accuracy == 100.0
        assert art.metrics.mae == 0.0

    def test_minimum_length(self, tiny_config):
        w = tiny_config.window_size
        train_series([(2000 + i, float(i)) for i in range(w + 2)], tiny_config, verbose=False)
        with pytest.raises(InsufficientData):
            train_series([(2000 + i, float(i)) for i in range(w + 1)], tiny_config, verbose=False)

    def test_diverging_learning_rate(self, tiny_config, sample_series):
        cfg = tiny_config.merged({"learning_rate": 1e30, "activation": "tanh", "batch_size": 2})
        with pytest.raises(TrainingFailure) as ei:
            train_series(sample_series, cfg, verbose=False)
        assert ei.value.config == cfg

    def test_rejects_bad_config(self, tiny_config):
        with pytest.raises(ValueError):
            tiny_config.merged({"activation": "swish"})
        with pytest.raises(ValueError):
            tiny_config.merged({"learning_rate": float("inf")})


class TestWeights:

    def test_rehydrated_copies_agree(self, trained_artifact):
        x = np.array([list(trained_artifact.tail_window)])
        with Regressor.from_artifact(trained_artifact) as r1, Regressor.from_artifact(trained_artifact) as r2:
            np.testing.assert_allclose(r1.predict(x), r2.predict(x))

    def test_topology_mismatch(self, trained_artifact):
        other = trained_artifact.config.merged({"window_size": 3})
        reg = Regressor(other)
        with pytest.raises(CorruptArtifact):
            reg.load_weights(trained_artifact.weights)
        reg.dispose()

    def test_garbage_weights(self, tiny_config):
        with Regressor(tiny_config) as reg:
            with pytest.raises(CorruptArtifact):
                reg.load_weights(b"not a state dict")


class TestDisposal:

    def test_enter_after_dispose(self, tiny_config):
        reg = Regressor(tiny_config).build()
        reg.dispose()
        with pytest.raises(DisposedError):
            with reg:
                pass

    def test_train_series_disposes_on_success(self, tiny_config, sample_series, built_regressors):
        train_series(sample_series, tiny_config, verbose=False)
        assert len(built_regressors) == 1
        assert built_regressors[0].state is RegressorState.DISPOSED

    def test_train_series_disposes_on_training_failure(self, tiny_config, sample_series, built_regressors):
        cfg = tiny_config.merged({"learning_rate": 1e30, "activation": "tanh", "batch_size": 2})
        with pytest.raises(TrainingFailure):
            train_series(sample_series, cfg, subject_key="destination:Chile", verbose=False)
        assert len(built_regressors) == 1
        assert built_regressors[0].state is RegressorState.DISPOSED
        assert built_regressors[0].net is None

    def test_training_failure_names_subject(self, tiny_config, sample_series):
        cfg = tiny_config.merged({"learning_rate": 1e30, "activation": "tanh", "batch_size": 2})
        with pytest.raises(TrainingFailure, match="destination:Chile"):
            train_series(sample_series, cfg, subject_key="destination:Chile", verbose=False)

    def test_from_artifact_disposes_on_corrupt_weights(self, trained_artifact, built_regressors):
        from dataclasses import replace
        with pytest.raises(CorruptArtifact):
            Regressor.from_artifact(replace(trained_artifact, weights=b"garbage"))
        assert [r.state for r in built_regressors] == [RegressorState.DISPOSED]


class TestConcurrentTraining:

    def test_threads_match_sequential_runs(self, tiny_config, sample_series):
        from concurrent.futures import ThreadPoolExecutor

        configs = [tiny_config.merged({"seed": s}) for s in (1, 2, 3, 4)]

        def weights(cfg):
            return bytes_to_state(train_series(sample_series, cfg, verbose=False).weights)

        expected = [weights(c) for c in configs]
        for _ in range(3):
            with ThreadPoolExecutor(max_workers=4) as pool:
                got = list(pool.map(weights, configs))
            for exp, state in zip(expected, got):
                assert all(torch.equal(exp[k], state[k]) for k in exp)
