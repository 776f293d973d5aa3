#!/usr/bin/env python3
# tsfe_forecasting/network.py
from __future__ import annotations
import io
from typing import Any, Dict, List, Sequence

import torch
import torch.nn as nn

from tsfe_common.config import DROPOUT_RATE

def _act_layer(name: str) -> nn.Module:
    name = (name or "relu").lower()
    if name == "relu": return nn.ReLU()
    if name == "elu": return nn.ELU()
    if name == "tanh": return nn.Tanh()
    if name == "sigmoid": return nn.Sigmoid()
    raise ValueError(f"unsupported activation: {name}")

class MLPRegressor(nn.Module):
    """W inputs -> [Linear, act, Dropout] per hidden width -> Linear(1)."""

    def __init__(self, in_dim: int, hidden: Sequence[int] = (64, 32, 16), act: str = "relu",
                 dropout: float = DROPOUT_RATE):
        super().__init__()
        self.config = {"in_dim": int(in_dim), "hidden": list(hidden), "act": act, "dropout": float(dropout)}
        layers: List[nn.Module] = []
        last = int(in_dim)
        for h in hidden:
            lin = nn.Linear(last, int(h))
            nn.init.kaiming_normal_(lin.weight, nonlinearity="relu")
            nn.init.zeros_(lin.bias)
            layers += [lin, _act_layer(act)]
            if dropout and dropout > 0: layers.append(nn.Dropout(p=dropout))
            last = int(h)
        layers.append(nn.Linear(last, 1))
        self.net = nn.Sequential(*layers)

    def forward(self, x: torch.Tensor) -> torch.Tensor:      # (N, W) → (N, 1)
        return self.net(x)

def describe_topology(in_dim: int, hidden: Sequence[int], act: str, dropout: float = DROPOUT_RATE) -> Dict[str, Any]:
    layers: List[Dict[str, Any]] = []
    for h in hidden:
        layers.append({"type": "dense", "units": int(h), "activation": str(act)})
        if dropout and dropout > 0:
            layers.append({"type": "dropout", "rate": float(dropout)})
    layers.append({"type": "dense", "units": 1, "activation": "linear"})
    return {"class_name": "MLPRegressor", "input_dim": int(in_dim), "layers": layers}

def count_params(m: nn.Module) -> int:
    return sum(p.numel() for p in m.parameters() if p.requires_grad)

# ---- 权重序列化（state_dict，不 pickle 整个模块）----
def state_to_bytes(model: nn.Module) -> bytes:
    state = {k: v.detach().cpu().clone() for k, v in model.state_dict().items()}
    bio = io.BytesIO()
    torch.save(state, bio)
    return bio.getvalue()

def bytes_to_state(blob: bytes) -> Dict[str, torch.Tensor]:
    return torch.load(io.BytesIO(blob), map_location="cpu", weights_only=True)

def weight_specs(blob: bytes) -> List[Dict[str, Any]]:
    state = bytes_to_state(blob)
    return [{"name": k, "shape": list(v.shape), "dtype": str(v.dtype).replace("torch.", "")}
            for k, v in state.items()]
