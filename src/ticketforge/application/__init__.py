"""
ticketforge — application services

Purpose
- Orchestration-facing entry points that load, mutate, and persist tickets.
"""

from ticketforge.application.commands import (
    StaleGenerationSweep,
    SweepFailure,
    TicketCommandService,
)

__all__ = ["StaleGenerationSweep", "SweepFailure", "TicketCommandService"]
