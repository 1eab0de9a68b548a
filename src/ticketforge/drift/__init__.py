"""
ticketforge — drift detection

Purpose
- Detect tickets whose code or API snapshot went stale after the ticket was
  marked ready, and move them to ``drifted``.
"""

from ticketforge.drift.detector import DriftDetector, DriftFailure, DriftKind, DriftReport
from ticketforge.drift.triggers import (
    ApiDriftTrigger,
    CodeDriftTrigger,
    DriftTrigger,
    load_drift_triggers,
    parse_drift_trigger,
)

__all__ = [
    "ApiDriftTrigger",
    "CodeDriftTrigger",
    "DriftDetector",
    "DriftFailure",
    "DriftKind",
    "DriftReport",
    "DriftTrigger",
    "load_drift_triggers",
    "parse_drift_trigger",
]
