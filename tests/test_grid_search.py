"""Unit tests for the hyperparameter grid search."""

import json

import pandas as pd
import pytest

from tsfe_common.errors import SearchExhausted
from tsfe_common.minio_helper import load_csv, save_csv
from tsfe_forecasting.models import grid_from_dicts
from tsfe_hpsearch import grid_search
from tsfe_hpsearch.grid_search import run_search, search, train_with_tuning


def _grid(*overrides):
    base = dict(window_size=2, hidden_layers=[8, 4], epochs=4, batch_size=4, learning_rate=1e-2)
    return grid_from_dicts([{**base, **o} for o in overrides])


class TestRunSearch:

    def test_deterministic(self, sample_series):
        grid = _grid({}, {"window_size": 3}, {"activation": "tanh"})
        a = run_search(sample_series, grid)
        b = run_search(sample_series, grid)
        assert a.best_index == b.best_index
        assert a.best_metrics.val_loss == b.best_metrics.val_loss

    def test_best_has_lowest_val_loss(self, sample_series):
        grid = _grid({}, {"window_size": 3}, {"hidden_layers": [4]})
        report = run_search(sample_series, grid)
        losses = [r["val_loss"] for r in report.rows]
        assert report.best_metrics.val_loss == min(losses)
        assert report.best_config == grid[report.best_index]

    def test_tie_keeps_earliest(self, sample_series):
        grid = _grid({}, {})
        report = run_search(sample_series, grid)
        assert report.rows[0]["val_loss"] == report.rows[1]["val_loss"]
        assert report.best_index == 0

    def test_failed_candidate_is_isolated(self, sample_series):
        # window_size=20 有 12 个点不可训练
        grid = _grid({"window_size": 20}, {})
        cfg, metrics = search(sample_series, grid)
        assert cfg == grid[1]
        assert metrics.accuracy >= 0.0

    def test_exhausted(self, sample_series):
        grid = _grid({"window_size": 20}, {"learning_rate": 1e30, "activation": "tanh", "batch_size": 2})
        with pytest.raises(SearchExhausted) as ei:
            run_search(sample_series, grid, subject_key="destination:Peru")
        assert [i for i, _ in ei.value.failures] == [0, 1]
        assert "destination:Peru" in str(ei.value)

    def test_empty_grid(self, sample_series):
        with pytest.raises(ValueError):
            run_search(sample_series, [])


class TestProgressSink:

    def test_called_once_per_candidate(self, sample_series):
        calls = []
        grid = _grid({"window_size": 20}, {}, {"window_size": 3})
        run_search(sample_series, grid, progress=lambda i, n, c, m: calls.append((i, n, c, m)))
        assert [(i, n) for i, n, _, _ in calls] == [(0, 3), (1, 3), (2, 3)]
        assert calls[0][3] is None
        assert calls[1][3] is not None and calls[2][2] == grid[2]

    def test_sink_errors_are_ignored(self, sample_series):
        def bad_sink(*args):
            raise RuntimeError("sink down")
        report = run_search(sample_series, _grid({}, {"window_size": 3}), progress=bad_sink)
        assert report.best_index in (0, 1)


class TestTrainWithTuning:

    def test_persists_best(self, sample_series, manager):
        model_id, metrics, cfg = train_with_tuning(sample_series, "destination:Japan", manager,
                                                   grid=_grid({}, {"window_size": 3}))
        rec = manager.get(model_id)
        assert rec.subject_key == "destination:Japan"
        assert rec.artifact.config == cfg
        assert rec.artifact.metrics == metrics

    def test_cli(self, store, monkeypatch, sample_series):
        monkeypatch.setattr(grid_search, "get_store", lambda: store)
        df = pd.DataFrame({"year": [y for y, _ in sample_series], "value": [v for _, v in sample_series]})
        save_csv(store, "datasets/japan.csv", df)
        items = [{"window_size": 2, "hidden_layers": [4], "batch_size": 4}, {"window_size": 3, "hidden_layers": [4]}]
        rc = grid_search.main(["--subject", "destination:Japan", "--data_key", "datasets/japan.csv",
                               "--grid_json", json.dumps(items), "--epochs", "3"])
        assert rc == 0
        results = load_csv(store, "results/hpsearch/destination%3AJapan/grid_results.csv")
        assert len(results) == 2
        assert list(results["epochs"]) == [3, 3]
        from tsfe_forecasting.registry import ModelLifecycleManager
        assert len(ModelLifecycleManager(store).list_for("destination:Japan")) == 1
        assert store.list("results/metrics/")


class TestDefaultGrid:

    def test_eight_valid_configs(self):
        assert len(grid_search.DEFAULT_GRID) == 8
        assert len(set(grid_search.DEFAULT_GRID)) == 8
        assert {c.window_size for c in grid_search.DEFAULT_GRID} == {3, 5, 7}


class TestCandidateDisposal:

    def test_every_candidate_is_disposed(self, sample_series, built_regressors):
        from tsfe_forecasting.regressor import RegressorState
        # 成功 / 数据不足（不会建网络）/ 训练发散
        grid = _grid({}, {"window_size": 20}, {"learning_rate": 1e30, "activation": "tanh", "batch_size": 2},
                     {"window_size": 3})
        report = run_search(sample_series, grid)
        assert report.best_index in (0, 3)
        assert len(built_regressors) == 3
        assert all(r.state is RegressorState.DISPOSED for r in built_regressors)

    def test_disposed_when_search_exhausted(self, sample_series, built_regressors):
        from tsfe_forecasting.regressor import RegressorState
        grid = _grid({"learning_rate": 1e30, "activation": "tanh", "batch_size": 2})
        with pytest.raises(SearchExhausted):
            run_search(sample_series, grid)
        assert [r.state for r in built_regressors] == [RegressorState.DISPOSED]

    def test_empty_subject_rejected_before_search(self, sample_series, manager, built_regressors):
        with pytest.raises(ValueError, match="subject_key"):
            train_with_tuning(sample_series, "", manager, grid=_grid({}))
        assert built_regressors == []
