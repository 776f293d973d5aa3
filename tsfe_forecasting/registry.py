# tsfe_forecasting/registry.py
"""
Model Lifecycle Manager.

Owns a namespaced key space in the Model Store; there is no in-memory list of
models, every call reads and writes through the store:

  <prefix>/records/<id>.json             record + config/metrics/normalization/tail window
  <prefix>/weights/<id>.pt               torch state_dict bytes
  <prefix>/subjects/<quoted key>/<id>    empty marker, one per model of a subject
"""
from __future__ import annotations
import json
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from tsfe_common.config import FORECAST_PREFIX
from tsfe_common.errors import CorruptArtifact, NotFound
from tsfe_common.metric_logger import log_metric
from tsfe_common.store import ObjectStore, get_store
from tsfe_common.utils import new_model_id, now_iso
from . import bundle as _bundle
from .models import ModelRecord, TrainedArtifact
from .regressor import Regressor


class ModelLifecycleManager:
    def __init__(self, store: Optional[ObjectStore] = None, prefix: str = FORECAST_PREFIX):
        self.store = store if store is not None else get_store()
        self.prefix = prefix.rstrip("/")

    # ---- keys ----
    def _record_key(self, model_id: str) -> str:
        return f"{self.prefix}/records/{model_id}.json"

    def _weights_key(self, model_id: str) -> str:
        return f"{self.prefix}/weights/{model_id}.pt"

    def _subject_prefix(self, subject_key: str) -> str:
        return f"{self.prefix}/subjects/{quote(subject_key, safe='')}/"

    # ---- read / write ----
    def _write(self, record: ModelRecord) -> None:
        # 先写权重，再写 record，最后写 subject 标记：标记可见时记录已完整
        self.store.put(self._weights_key(record.id), record.artifact.weights, "application/octet-stream")
        self.store.put(self._record_key(record.id),
                       json.dumps(record.meta_dict(), ensure_ascii=False, indent=2).encode("utf-8"),
                       "application/json")
        self.store.put(self._subject_prefix(record.subject_key) + record.id, b"", "text/plain")

    def _read_meta(self, model_id: str) -> Dict[str, Any]:
        raw = self.store.get(self._record_key(model_id))   # NotFound 直接抛出
        try:
            meta = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptArtifact(f"record {model_id} is not valid JSON: {e}") from e
        if not isinstance(meta, dict):
            raise CorruptArtifact(f"record {model_id} is not a JSON object")
        return meta

    def get(self, model_id: str) -> ModelRecord:
        meta = self._read_meta(model_id)
        try:
            weights = self.store.get(self._weights_key(model_id))
        except NotFound as e:
            raise CorruptArtifact(f"weights for {model_id} are missing") from e
        try:
            return ModelRecord.from_meta(meta, weights)
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptArtifact(f"record {model_id} is malformed: {e}") from e

    def _mint_id(self, prefix: str = "model") -> str:
        while True:
            model_id = new_model_id(prefix)
            if not self.store.exists(self._record_key(model_id)):
                return model_id

    # ---- operations ----
    def persist(self, subject_key: str, artifact: TrainedArtifact, display_name: Optional[str] = None,
                name: Optional[str] = None) -> str:
        if not subject_key:
            # 空 key 的 subject 标记无法被 list_for 找到
            raise ValueError("subject_key must be a non-empty string")
        model_id = self._mint_id()
        created = now_iso()
        record = ModelRecord(
            id=model_id,
            name=name or f"model_{subject_key}_{model_id}",
            display_name=display_name or f"{subject_key} ({created[:10]})",
            subject_key=subject_key,
            artifact=artifact,
            created_at=created,
        )
        self._write(record)
        print(f"[registry] persisted {model_id} for '{subject_key}' "
              f"(accuracy={artifact.metrics.accuracy:.2f}%)", flush=True)
        log_metric(component="registry", event="persist", model_id=model_id, subject_key=subject_key,
                   accuracy=round(artifact.metrics.accuracy, 4))
        return model_id

    def list_for(self, subject_key: str) -> List[ModelRecord]:
        out: List[ModelRecord] = []
        for key in self.store.list(self._subject_prefix(subject_key)):
            model_id = key.rsplit("/", 1)[-1]
            try:
                out.append(self.get(model_id))
            except NotFound:
                # 并发删除：标记尚在、记录已删
                continue
        out.sort(key=lambda r: r.created_at)
        return out

    def list_all(self) -> List[ModelRecord]:
        out: List[ModelRecord] = []
        for key in self.store.list(f"{self.prefix}/records/"):
            if not key.endswith(".json"):
                continue
            model_id = key.rsplit("/", 1)[-1][:-len(".json")]
            try:
                out.append(self.get(model_id))
            except NotFound:
                continue
        out.sort(key=lambda r: r.created_at)
        return out

    def best_for(self, subject_key: str) -> Optional[ModelRecord]:
        best: Optional[ModelRecord] = None
        for rec in self.list_for(subject_key):
            if best is None or rec.accuracy > best.accuracy:
                best = rec
        return best

    def load(self, model_id: str) -> Tuple[Regressor, ModelRecord]:
        record = self.get(model_id)
        regressor = Regressor.from_artifact(record.artifact)
        record.last_used_at = now_iso()
        try:
            self.store.put(self._record_key(model_id),
                           json.dumps(record.meta_dict(), ensure_ascii=False, indent=2).encode("utf-8"),
                           "application/json")
        except BaseException:
            regressor.dispose()
            raise
        log_metric(component="registry", event="load", model_id=model_id, subject_key=record.subject_key)
        return regressor, record

    def delete(self, model_id: str) -> None:
        try:
            subject_key = str(self._read_meta(model_id).get("subject_key", ""))
        except NotFound:
            return
        except CorruptArtifact:
            subject_key = None
        if subject_key is not None:
            self.store.delete(self._subject_prefix(subject_key) + model_id)
        else:
            for key in self.store.list(f"{self.prefix}/subjects/"):
                if key.endswith("/" + model_id):
                    self.store.delete(key)
        self.store.delete(self._weights_key(model_id))
        self.store.delete(self._record_key(model_id))
        print(f"[registry] deleted {model_id}", flush=True)
        log_metric(component="registry", event="delete", model_id=model_id)

    def export(self, model_id: str) -> Dict[str, Any]:
        return _bundle.to_bundle(self.get(model_id))

    def import_bundle(self, bundle: Dict[str, Any]) -> str:
        artifact, meta = _bundle.from_bundle(bundle)
        # 权重必须能装进 config 描述的网络
        Regressor.from_artifact(artifact).dispose()
        subject_key = str(meta.get("subject_key") or "")
        if not subject_key:
            raise CorruptArtifact("bundle has no subject_key")
        model_id = self._mint_id("model_imported")
        record = ModelRecord(
            id=model_id,
            name=str(meta.get("name") or f"model_{subject_key}_{model_id}"),
            display_name=f"{meta.get('display_name') or subject_key} (Imported)",
            subject_key=subject_key,
            artifact=artifact,
            created_at=now_iso(),
            last_used_at=None,
        )
        self._write(record)
        print(f"[registry] imported {meta.get('id')} as {model_id} for '{subject_key}'", flush=True)
        log_metric(component="registry", event="import", model_id=model_id, source_id=str(meta.get("id")))
        return model_id
