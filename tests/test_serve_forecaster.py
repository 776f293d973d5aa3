"""Test for the forecast CLI writing CSV/JSON results to the store."""

import pytest

from tsfe_common.errors import NotFound
from tsfe_common.minio_helper import load_csv, load_json
from tsfe_forecasting import serve_forecaster


class TestServeForecaster:

    def test_best_model_for_subject(self, store, manager, trained_artifact, monkeypatch):
        monkeypatch.setattr(serve_forecaster, "get_store", lambda: store)
        model_id = manager.persist("destination:Chile", trained_artifact)
        assert serve_forecaster.main(["--subject", "destination:Chile", "--start_year", "2012",
                                      "--horizon", "3"]) == 0

        keys = store.list("results/forecasting/")
        csv_key = [k for k in keys if k.endswith(".csv")][0]
        json_key = [k for k in keys if k.endswith(".json")][0]
        assert list(load_csv(store, csv_key)["year"]) == [2012, 2013, 2014]
        out = load_json(store, json_key)
        assert out["model_id"] == model_id and len(out["forecast"]) == 3
        assert manager.get(model_id).last_used_at is not None

    def test_no_model(self, store, monkeypatch):
        monkeypatch.setattr(serve_forecaster, "get_store", lambda: store)
        with pytest.raises(NotFound):
            serve_forecaster.main(["--subject", "destination:Nowhere", "--start_year", "2012"])
