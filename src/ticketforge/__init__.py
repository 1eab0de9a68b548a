"""
ticketforge — package root

Purpose
- Ticket lifecycle aggregate with workflow-exclusive locking, weighted readiness
  scoring, and snapshot drift detection.

Import boundary rules
- No side effects at import time (no config loading, no logging init).
- Heavy submodules (persistence, CLI) are imported explicitly by callers.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
