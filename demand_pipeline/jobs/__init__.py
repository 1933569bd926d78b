"""Jobs module for demand pipeline."""

from .aggregate_demand import aggregate_demand, record_demand_signal
from .apply_auto_rules import apply_auto_rules

__all__ = [
    "aggregate_demand",
    "apply_auto_rules",
    "record_demand_signal",
]
