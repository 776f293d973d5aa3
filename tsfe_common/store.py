# tsfe_common/store.py
"""
Model Store abstraction.

Every engine component talks to persistence through four calls:
``put(key, blob)``, ``get(key)``, ``delete(key)`` and ``list(prefix)``.
Keys are "/"-separated paths; ``get`` raises ``NotFound`` for an absent key and
``delete`` of an absent key is a no-op.
"""
from __future__ import annotations
import os
from pathlib import Path
from typing import List, Optional, Protocol

from . import config as _cfg
from .errors import NotFound


class ObjectStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str = ...) -> None: ...
    def get(self, key: str) -> bytes: ...
    def exists(self, key: str) -> bool: ...
    def delete(self, key: str) -> None: ...
    def list(self, prefix: str) -> List[str]: ...


class LocalObjectStore:
    """Directory-backed store; one file per key."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or _cfg.LOCAL_STORE_ROOT)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        parts = [p for p in key.split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise ValueError(f"invalid store key: {key!r}")
        return self.root.joinpath(*parts)

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise NotFound(f"{self.root}/{key} not found")
        return path.read_bytes()

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass

    def list(self, prefix: str) -> List[str]:
        keys: List[str] = []
        for p in self.root.rglob("*"):
            if not p.is_file() or p.name.endswith(".tmp"):
                continue
            key = p.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    def __repr__(self) -> str:
        return f"LocalObjectStore(root={str(self.root)!r})"


def get_store(backend: Optional[str] = None) -> ObjectStore:
    backend = (backend or _cfg.STORE_BACKEND).lower()
    if backend == "local":
        return LocalObjectStore()
    if backend in ("s3", "minio"):
        from .minio_helper import S3ObjectStore
        return S3ObjectStore()
    raise ValueError(f"unknown store backend: {backend}")
