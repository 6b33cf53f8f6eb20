import json
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict

@dataclass(frozen=True)
class MatchWeights:
    bgi: int = 100                     # explicit or extracted BGI equals invoice id
    invoice_in_text: int = 80          # invoice id appears verbatim in label/references
    bgpmt: int = 90                    # BGPMT token equals invoice BGPMT
    guarantee: int = 50                # guarantee id equals invoice business case
    official_ref: int = 40             # reference token equals invoice sender reference
    amount_exact: int = 30
    amount_opposite: int = 25
    date_max: int = 20                 # linear decay over date_horizon_days
    fuzzy_ref: int = 10                # rapidfuzz partial match of references in label
    currency: int = 5                  # guarantee currency, only on top of another signal

@dataclass(frozen=True)
class ReconConfig:
    ambre_path: str = "data/sample/ambre.csv"
    invoices_path: str = "data/sample/dwings_invoices.csv"
    guarantees_path: str = "data/sample/dwings_guarantees.csv"
    rules_path: str = "config/truth_rules.json"
    column_map_path: str = "config/column_map.json"
    outputs_dir: str = "outputs"

    country_id: str = "FR"
    pivot_account_id: str = "PIVOT001"
    receivable_account_id: str = "RECV001"

    peer_amount_tolerance: float = 0.01  # relative to max(1, |a|, |b|)
    peer_date_window_days: int = 7
    peer_max_results: int = 100
    min_similarity: int = 85             # 0-100 RapidFuzz threshold
    date_horizon_days: int = 30

    weights: MatchWeights = field(default_factory=MatchWeights)

def load_config(path: str = "config/recon_config.json") -> ReconConfig:
    cfg = ReconConfig()
    if not os.path.exists(path):
        return cfg

    with open(path, "r") as f:
        raw: Dict[str, Any] = json.load(f)

    known = {f.name for f in fields(ReconConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown keys in {path}: {unknown}")

    weights_raw = dict(raw.pop("weights", {}))
    weight_names = {f.name for f in fields(MatchWeights)}
    bad_weights = sorted(set(weights_raw) - weight_names)
    if bad_weights:
        raise ValueError(f"Unknown weights in {path}: {bad_weights}")

    types = {f.name: f.type for f in fields(ReconConfig)}
    try:
        values = {k: types[k](v) for k, v in raw.items()}
        weights = replace(cfg.weights, **{k: int(v) for k, v in weights_raw.items()})
    except (TypeError, ValueError) as ex:
        raise ValueError(f"Bad value in {path}: {ex}")
    return replace(cfg, weights=weights, **values)
