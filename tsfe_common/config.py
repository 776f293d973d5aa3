# tsfe_common/config.py
#!/usr/bin/env python3
# -*- coding: utf-8 -*-
from __future__ import annotations
from typing import Dict, List, Optional
import os

"""
TSFE 的唯一显式配置入口：
- 对象存储 (S3/MinIO 或本地目录)、训练默认参数、网格、导出格式版本都在这里定义
- 其余代码通过导入本文件读取配置；每一项都可用同名环境变量覆盖
- 仅 DEVICE 允许在运行期用 set_device() 覆盖
"""

def _env_int(name: str, default: int) -> int:
    try:
        return int(float(str(os.getenv(name, default))))
    except Exception:
        return default

def _env_float(name: str, default: float) -> float:
    try:
        return float(str(os.getenv(name, default)))
    except Exception:
        return default

# ===== Model Store =====
STORE_BACKEND    = os.getenv("TSFE_STORE_BACKEND", "s3")   # s3 | local
LOCAL_STORE_ROOT = os.getenv("TSFE_LOCAL_STORE_ROOT", "/tmp/tsfe_store")

MINIO_SCHEME     = os.getenv("MINIO_SCHEME", "http")
MINIO_ENDPOINT   = os.getenv("MINIO_ENDPOINT", "minio-service.kubeflow.svc.cluster.local:9000")
BUCKET           = os.getenv("MINIO_BUCKET", "tsfe-models")
MINIO_REGION     = os.getenv("MINIO_REGION", "us-east-1")

# 目录（S3 前缀）
MODEL_DIR  = "models"
RESULT_DIR = "results"
DATA_DIR   = "datasets"

FORECAST_PREFIX = f"{MODEL_DIR}/forecast"
METRICS_PREFIX  = f"{RESULT_DIR}/metrics"

# ===== Regressor defaults =====
DEFAULT_WINDOW_SIZE   = _env_int("TSFE_WINDOW_SIZE", 5)
DEFAULT_HIDDEN_LAYERS = (64, 32, 16)
DEFAULT_ACTIVATION    = os.getenv("TSFE_ACTIVATION", "relu")
DEFAULT_LR            = _env_float("TSFE_LR", 1e-3)
DEFAULT_EPOCHS        = _env_int("TSFE_EPOCHS", 100)
DEFAULT_BATCH_SIZE    = _env_int("TSFE_BATCH_SIZE", 8)
DEFAULT_VAL_FRAC      = _env_float("TSFE_VAL_FRAC", 0.2)
DEFAULT_SEED          = _env_int("TSFE_SEED", 0)

DROPOUT_RATE   = 0.2
LOG_EVERY      = _env_int("TSFE_LOG_EVERY", 10)   # 每多少个 epoch 打印一次
MAPE_EPS       = 1e-8

# ===== Forecast =====
DEFAULT_HORIZON = _env_int("TSFE_HORIZON", 10)

# ===== Export bundle =====
BUNDLE_FORMAT  = "tsfe-model-bundle"
BUNDLE_VERSION = 1

# ===== 默认超参网格 =====
def default_grid() -> List[Dict]:
    """Eight candidates, small to extra-large; merged over the regressor defaults."""
    return [
        {"window_size": 3, "hidden_layers": [32, 16],        "activation": "relu", "learning_rate": 1e-3},
        {"window_size": 3, "hidden_layers": [64, 32, 16],    "activation": "relu", "learning_rate": 1e-3},
        {"window_size": 5, "hidden_layers": [64, 32, 16],    "activation": "relu", "learning_rate": 1e-3},
        {"window_size": 5, "hidden_layers": [64, 32, 16],    "activation": "elu",  "learning_rate": 1e-3},
        {"window_size": 5, "hidden_layers": [128, 64, 32],   "activation": "relu", "learning_rate": 1e-3},
        {"window_size": 7, "hidden_layers": [64, 32, 16],    "activation": "relu", "learning_rate": 1e-3},
        {"window_size": 7, "hidden_layers": [128, 64, 32],   "activation": "relu", "learning_rate": 5e-4},
        {"window_size": 5, "hidden_layers": [256, 128, 64],  "activation": "relu", "learning_rate": 5e-4},
    ]

# ===== 计算设备（仅此项允许运行期覆盖）=====
_DEVICE_OVERRIDE: Optional[str] = None

def set_device(value: Optional[str]) -> None:
    """在当前进程内覆盖设备；传 None 取消覆盖。"""
    global _DEVICE_OVERRIDE
    _DEVICE_OVERRIDE = value

def get_device() -> str:
    """
    优先级：set_device 覆盖 > 环境变量 TSFE_DEVICE > 自动探测 (cuda / cpu)
    """
    if _DEVICE_OVERRIDE:
        return _DEVICE_OVERRIDE
    env = os.getenv("TSFE_DEVICE")
    if env:
        return env
    import torch
    return "cuda" if torch.cuda.is_available() else "cpu"
