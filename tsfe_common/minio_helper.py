#!/usr/bin/env python3
# tsfe_common/minio_helper.py
from __future__ import annotations
import os
import io
import json
import time
from typing import List, Optional

import pandas as pd
import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from . import config as _cfg
from .errors import NotFound

MINIO_ACCESS = os.getenv("MINIO_ACCESS_KEY", "minio")
MINIO_SECRET = os.getenv("MINIO_SECRET_KEY", "minio123")

_endpoint_url = os.getenv("MINIO_ENDPOINT_URL") or f"{_cfg.MINIO_SCHEME}://{_cfg.MINIO_ENDPOINT}".rstrip("/")

_NOT_FOUND_CODES = ("NoSuchKey", "404", "NotFound", "NoSuchBucket")

def make_client():
    return boto3.client(
        "s3",
        endpoint_url=_endpoint_url,
        aws_access_key_id=MINIO_ACCESS,
        aws_secret_access_key=MINIO_SECRET,
        region_name=_cfg.MINIO_REGION,
        config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
    )

def _is_not_found(e: ClientError) -> bool:
    code = str(e.response.get("Error", {}).get("Code", ""))
    return code in _NOT_FOUND_CODES

# ---- 轻量重试；NoSuchKey 不重试 ----
def _retry(fn, *, tries: int = 3, delay: float = 0.5):
    last = None
    for _ in range(max(1, tries)):
        try:
            return fn()
        except ClientError as e:
            if _is_not_found(e):
                raise
            last = e
            time.sleep(delay)
        except BotoCoreError as e:
            last = e
            time.sleep(delay)
    if last:
        raise last


class S3ObjectStore:
    """ObjectStore over an S3-compatible bucket (MinIO in the cluster)."""

    def __init__(self, bucket: Optional[str] = None, client=None, tries: int = 3, delay: float = 0.5):
        self.bucket = str(bucket or _cfg.BUCKET)
        self.client = client if client is not None else make_client()
        self.tries = tries
        self.delay = delay

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        def _put():
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        _retry(_put, tries=self.tries, delay=self.delay)

    def get(self, key: str) -> bytes:
        try:
            obj = _retry(lambda: self.client.get_object(Bucket=self.bucket, Key=key),
                         tries=self.tries, delay=self.delay)
        except ClientError as e:
            if _is_not_found(e):
                raise NotFound(f"s3://{self.bucket}/{key} not found") from e
            raise
        return obj["Body"].read()

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise

    def delete(self, key: str) -> None:
        # S3 DeleteObject 本身幂等
        _retry(lambda: self.client.delete_object(Bucket=self.bucket, Key=key),
               tries=self.tries, delay=self.delay)

    def list(self, prefix: str) -> List[str]:
        keys: List[str] = []
        token: Optional[str] = None
        while True:
            kwargs = {"Bucket": self.bucket, "Prefix": prefix}
            if token:
                kwargs["ContinuationToken"] = token
            resp = _retry(lambda: self.client.list_objects_v2(**kwargs), tries=self.tries, delay=self.delay)
            for o in (resp.get("Contents") or []):
                keys.append(o["Key"])
            if not resp.get("IsTruncated"):
                break
            token = resp.get("NextContinuationToken")
        return sorted(keys)

    def __repr__(self) -> str:
        return f"S3ObjectStore(bucket={self.bucket!r}, endpoint={_endpoint_url!r})"


def load_csv(store, key: str) -> pd.DataFrame:
    df = pd.read_csv(io.BytesIO(store.get(key)))
    for c in list(df.columns):
        if str(c).startswith("Unnamed:"):
            df = df.drop(columns=[c])
    return df

def save_csv(store, key: str, df: pd.DataFrame) -> None:
    bio = io.BytesIO(); df.to_csv(bio, index=False)
    store.put(key, bio.getvalue(), "text/csv")

def save_json(store, key: str, obj) -> None:
    store.put(key, json.dumps(obj, ensure_ascii=False, indent=2).encode("utf-8"), "application/json")

def load_json(store, key: str):
    return json.loads(store.get(key).decode("utf-8"))

# ---- 调试信息 ----
def _debug_dump_config() -> dict:
    return {
        "endpoint_url": _endpoint_url,
        "bucket": _cfg.BUCKET,
        "have_env_access": bool(MINIO_ACCESS),
        "have_env_secret": bool(MINIO_SECRET),
    }

if __name__ == "__main__":
    print(json.dumps(_debug_dump_config(), indent=2))
