# tsfe_forecasting/__init__.py
"""
Forecasting package (preprocess -> train -> forecast -> model lifecycle).

Artifacts layout (under the model store):
- models/forecast/records/<id>.json      config / metrics / normalization / tail window
- models/forecast/weights/<id>.pt        torch state_dict
- models/forecast/subjects/<key>/<id>    per-subject index
- results/forecasting/** (forecast CSV / JSON)
"""
