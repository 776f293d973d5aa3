# tsfe_forecasting/bundle.py
"""
Portable export bundle: one JSON document carrying everything needed to forecast.

{
  "format": "tsfe-model-bundle", "version": 1, "exported_at": "...Z",
  "record":   {"id", "name", "display_name", "subject_key", "created_at", "last_used_at"},
  "artifact": {"config", "metrics", "normalization", "tail_window"},
  "topology": {"class_name", "input_dim", "layers": [...]},
  "weights":  {"encoding": "torch-state-dict+base64", "specs": [...], "data": "<base64>"}
}
"""
from __future__ import annotations
import base64
import binascii
from typing import Any, Dict

from tsfe_common.config import BUNDLE_FORMAT, BUNDLE_VERSION
from tsfe_common.errors import CorruptArtifact, UnsupportedBundle
from tsfe_common.utils import now_iso
from .models import ModelRecord, TrainedArtifact
from .network import describe_topology, weight_specs

WEIGHTS_ENCODING = "torch-state-dict+base64"

def topology_of(artifact: TrainedArtifact) -> Dict[str, Any]:
    cfg = artifact.config
    return describe_topology(cfg.window_size, cfg.hidden_layers, cfg.activation)

def to_bundle(record: ModelRecord) -> Dict[str, Any]:
    art = record.artifact
    return {
        "format": BUNDLE_FORMAT,
        "version": BUNDLE_VERSION,
        "exported_at": now_iso(),
        "record": {
            "id": record.id,
            "name": record.name,
            "display_name": record.display_name,
            "subject_key": record.subject_key,
            "created_at": record.created_at,
            "last_used_at": record.last_used_at,
        },
        "artifact": art.meta_dict(),
        "topology": topology_of(art),
        "weights": {
            "encoding": WEIGHTS_ENCODING,
            "specs": weight_specs(art.weights),
            "data": base64.b64encode(art.weights).decode("ascii"),
        },
    }

def check_header(bundle: Any) -> None:
    if not isinstance(bundle, dict):
        raise UnsupportedBundle(f"bundle must be a JSON object, got {type(bundle).__name__}")
    fmt = bundle.get("format")
    if fmt != BUNDLE_FORMAT:
        raise UnsupportedBundle(f"unknown bundle format: {fmt!r}")
    ver = bundle.get("version")
    if not isinstance(ver, int) or isinstance(ver, bool) or ver != BUNDLE_VERSION:
        raise UnsupportedBundle(f"unsupported bundle version {ver!r} (this build reads version {BUNDLE_VERSION})")

def from_bundle(bundle: Dict[str, Any]):
    """Returns ``(artifact, record_meta)``; raises CorruptArtifact / UnsupportedBundle."""
    check_header(bundle)
    try:
        meta = bundle["record"]
        w = bundle["weights"]
        if w.get("encoding") != WEIGHTS_ENCODING:
            raise UnsupportedBundle(f"unknown weights encoding: {w.get('encoding')!r}")
        blob = base64.b64decode(w["data"].encode("ascii"), validate=True)
        artifact = TrainedArtifact.from_meta(bundle["artifact"], blob)
    except UnsupportedBundle:
        raise
    except (KeyError, TypeError, ValueError, AttributeError, binascii.Error) as e:
        raise CorruptArtifact(f"malformed bundle: {e}") from e
    if bundle.get("topology") != topology_of(artifact):
        raise CorruptArtifact("bundle topology does not match its config")
    return artifact, dict(meta)
