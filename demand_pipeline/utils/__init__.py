"""Utils module for demand pipeline."""

from .monitoring import AlertLevel, JobStatus, PipelineMonitor, get_pipeline_monitor
from .validators import validate_data, validate_signal_counters

__all__ = [
    "AlertLevel",
    "JobStatus",
    "PipelineMonitor",
    "get_pipeline_monitor",
    "validate_data",
    "validate_signal_counters",
]
