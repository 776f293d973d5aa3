#!/usr/bin/env python3
# tsfe_forecasting/api_server.py
from __future__ import annotations
import math
import os
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from tsfe_common.config import DEFAULT_HORIZON
from tsfe_common.errors import CorruptArtifact, InsufficientData, NotFound, SearchExhausted, TsfeError
from tsfe_hpsearch.grid_search import train_with_tuning
from .forecaster import forecast_with
from .models import ModelRecord, grid_from_dicts
from .registry import ModelLifecycleManager


class SeriesPointIn(BaseModel):
    year: int
    value: float


class TrainIn(BaseModel):
    subject_key: str
    series: List[SeriesPointIn]
    display_name: Optional[str] = None
    grid: Optional[List[Dict[str, Any]]] = None     # 缺省用默认网格


class ForecastIn(BaseModel):
    model_id: str
    start_year: int
    horizon: int = Field(default=DEFAULT_HORIZON, ge=0)


def _finite(x: float) -> Optional[float]:
    # JSON 不支持 NaN / inf
    x = float(x)
    return x if math.isfinite(x) else None


def record_summary(rec: ModelRecord) -> Dict[str, Any]:
    art = rec.artifact
    return {
        "id": rec.id,
        "name": rec.name,
        "display_name": rec.display_name,
        "subject_key": rec.subject_key,
        "created_at": rec.created_at,
        "last_used_at": rec.last_used_at,
        "accuracy": _finite(rec.accuracy),
        "config": art.config.to_dict(),
        "metrics": {k: _finite(v) for k, v in art.metrics.to_dict().items()},
    }


def _error(status: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": type(exc).__name__, "detail": str(exc)})


def create_app(manager: Optional[ModelLifecycleManager] = None) -> FastAPI:
    app = FastAPI(title="TSFE Forecast API", version="1.0.0")
    _state: Dict[str, Any] = {"manager": manager}

    def _mgr() -> ModelLifecycleManager:
        if _state["manager"] is None:
            _state["manager"] = ModelLifecycleManager()
        return _state["manager"]

    @app.exception_handler(NotFound)
    async def _not_found(request: Request, exc: NotFound):
        return _error(404, exc)

    @app.exception_handler(SearchExhausted)
    async def _exhausted(request: Request, exc: SearchExhausted):
        return _error(409, exc)

    @app.exception_handler(CorruptArtifact)
    async def _corrupt(request: Request, exc: CorruptArtifact):
        return _error(422, exc)

    @app.exception_handler(InsufficientData)
    async def _insufficient(request: Request, exc: InsufficientData):
        return _error(422, exc)

    @app.exception_handler(ValueError)
    async def _bad_value(request: Request, exc: ValueError):
        return _error(422, exc)

    @app.exception_handler(TsfeError)
    async def _other(request: Request, exc: TsfeError):
        return _error(500, exc)

    @app.get("/")
    def health():
        return {"ok": True}

    @app.get("/models/{subject_key}")
    def list_models(subject_key: str):
        return [record_summary(r) for r in _mgr().list_for(subject_key)]

    @app.get("/models/{subject_key}/best")
    def best_model(subject_key: str):
        best = _mgr().best_for(subject_key)
        if best is None:
            raise NotFound(f"no model stored for subject '{subject_key}'")
        return record_summary(best)

    @app.post("/train")
    def train(inp: TrainIn):
        series = [(p.year, p.value) for p in inp.series]
        grid = grid_from_dicts(inp.grid) if inp.grid else None
        model_id, metrics, config = train_with_tuning(series, inp.subject_key, _mgr(), grid=grid,
                                                      display_name=inp.display_name)
        return {
            "model_id": model_id,
            "config": config.to_dict(),
            "metrics": {k: _finite(v) for k, v in metrics.to_dict().items()},
        }

    @app.post("/forecast")
    def forecast(inp: ForecastIn):
        regressor, record = _mgr().load(inp.model_id)
        with regressor:
            points = forecast_with(regressor, record.artifact, inp.horizon, inp.start_year)
        return {
            "model_id": record.id,
            "subject_key": record.subject_key,
            "forecast": [p._asdict() for p in points],
        }

    @app.delete("/model/{model_id}")
    def delete_model(model_id: str):
        _mgr().delete(model_id)
        return {"deleted": model_id}

    @app.get("/model/{model_id}/export")
    def export_model(model_id: str):
        bundle = _mgr().export(model_id)
        bundle["artifact"]["metrics"] = {k: _finite(v) for k, v in bundle["artifact"]["metrics"].items()}
        return bundle

    @app.post("/model/import")
    def import_model(bundle: Dict[str, Any]):
        model_id = _mgr().import_bundle(bundle)
        return {"model_id": model_id}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=os.getenv("TSFE_API_HOST", "0.0.0.0"), port=int(os.getenv("TSFE_API_PORT", "8000")))
