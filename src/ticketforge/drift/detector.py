"""
ticketforge — drift detector

Purpose
- Flag open tickets whose stored code or API snapshot no longer matches the
  latest observed commit SHA or spec hash for their repository.

Functional requirements
- Candidates come from ``TicketRepository.find_open_by_workspace_and_repository``.
- Each drifted ticket is saved on its own; a failure on one ticket is logged,
  published as ``DriftCheckFailed``, recorded on the report, and the scan
  continues with the next ticket.
- A ticket in a non-open status is never mutated, whatever the repository returns.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Final

import structlog

from ticketforge.constants import DEFAULT_DRIFT_MAX_CONCURRENCY
from ticketforge.domain._fields import JSONValue, utc_now
from ticketforge.domain.events import EventType
from ticketforge.domain.ids import generate_drift_scan_id
from ticketforge.domain.ports import TicketRepository
from ticketforge.domain.snapshots import short_sha
from ticketforge.domain.ticket import Ticket
from ticketforge.drift.triggers import ApiDriftTrigger, CodeDriftTrigger, DriftTrigger
from ticketforge.observability.events import EventBus
from ticketforge.observability.logging import correlation_scope
from ticketforge.utils.concurrency import CancellationToken, map_in_threads


class DriftKind(StrEnum):
    CODE = "code"
    API = "api"


class _Outcome(StrEnum):
    DRIFTED = "drifted"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


_REASON_PREFIX: Final[dict[DriftKind, str]] = {
    DriftKind.CODE: "Code snapshot changed",
    DriftKind.API: "API spec changed",
}


@dataclass(frozen=True, slots=True)
class DriftFailure:
    ticket_id: str
    error_type: str
    message: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"ticket_id": self.ticket_id, "error_type": self.error_type, "message": self.message}


@dataclass(frozen=True, slots=True)
class DriftReport:
    """Outcome of one drift scan over a workspace/repository pair."""

    scan_id: str
    workspace_id: str
    repository_full_name: str
    kind: DriftKind
    current: str
    checked: int = 0
    drifted: tuple[str, ...] = ()
    unchanged: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    failures: tuple[DriftFailure, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "scan_id": self.scan_id,
            "workspace_id": self.workspace_id,
            "repository_full_name": self.repository_full_name,
            "kind": self.kind.value,
            "current": self.current,
            "checked": self.checked,
            "drifted": list(self.drifted),
            "unchanged": list(self.unchanged),
            "skipped": list(self.skipped),
            "failures": [failure.to_dict() for failure in self.failures],
            "ok": self.ok,
        }


@dataclass(frozen=True, slots=True)
class _TicketResult:
    ticket_id: str
    outcome: _Outcome
    reason: str | None = None
    failure: DriftFailure | None = None


@dataclass(slots=True)
class _Scan:
    scan_id: str
    workspace_id: str
    repository_full_name: str
    kind: DriftKind
    current: str
    now: datetime
    results: list[_TicketResult] = field(default_factory=list)


class DriftDetector:
    """Batch process that marks tickets drifted when their snapshots go stale."""

    def __init__(
        self,
        repository: TicketRepository,
        *,
        event_bus: EventBus | None = None,
        logger: Any | None = None,
        max_concurrency: int = DEFAULT_DRIFT_MAX_CONCURRENCY,
    ) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self._repository = repository
        self._event_bus = event_bus
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._max_concurrency = max_concurrency

    def detect_code_drift(
        self,
        workspace_id: str,
        repository_full_name: str,
        commit_sha: str,
        *,
        now: datetime | None = None,
    ) -> DriftReport:
        trigger = CodeDriftTrigger(workspace_id, repository_full_name, commit_sha)
        return self.detect(trigger, now=now)

    def detect_api_drift(
        self,
        workspace_id: str,
        repository_full_name: str,
        spec_hash: str,
        *,
        now: datetime | None = None,
    ) -> DriftReport:
        trigger = ApiDriftTrigger(workspace_id, repository_full_name, spec_hash)
        return self.detect(trigger, now=now)

    def detect(self, trigger: DriftTrigger, *, now: datetime | None = None) -> DriftReport:
        scan = self._new_scan(trigger, now)
        with correlation_scope(workspace_id=scan.workspace_id, correlation_id=scan.scan_id):
            candidates = self._repository.find_open_by_workspace_and_repository(
                scan.workspace_id, scan.repository_full_name
            )
            for ticket in candidates:
                scan.results.append(self._evaluate(scan, ticket))
            return self._finish(scan)

    async def adetect_code_drift(
        self,
        workspace_id: str,
        repository_full_name: str,
        commit_sha: str,
        *,
        now: datetime | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> DriftReport:
        trigger = CodeDriftTrigger(workspace_id, repository_full_name, commit_sha)
        return await self.adetect(trigger, now=now, cancel_token=cancel_token)

    async def adetect_api_drift(
        self,
        workspace_id: str,
        repository_full_name: str,
        spec_hash: str,
        *,
        now: datetime | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> DriftReport:
        trigger = ApiDriftTrigger(workspace_id, repository_full_name, spec_hash)
        return await self.adetect(trigger, now=now, cancel_token=cancel_token)

    async def adetect(
        self,
        trigger: DriftTrigger,
        *,
        now: datetime | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> DriftReport:
        """Same semantics as ``detect``; repository calls run in bounded worker threads."""

        scan = self._new_scan(trigger, now)
        with correlation_scope(workspace_id=scan.workspace_id, correlation_id=scan.scan_id):
            candidates = await asyncio.to_thread(
                self._repository.find_open_by_workspace_and_repository,
                scan.workspace_id,
                scan.repository_full_name,
            )
            scan.results.extend(
                await map_in_threads(
                    lambda ticket: self._evaluate(scan, ticket),
                    candidates,
                    max_concurrency=self._max_concurrency,
                    cancel_token=cancel_token,
                )
            )
            return self._finish(scan)

    def detect_many(
        self, triggers: Sequence[DriftTrigger], *, now: datetime | None = None
    ) -> list[DriftReport]:
        return [self.detect(trigger, now=now) for trigger in triggers]

    def _new_scan(self, trigger: DriftTrigger, now: datetime | None) -> _Scan:
        if isinstance(trigger, CodeDriftTrigger):
            kind, current = DriftKind.CODE, trigger.commit_sha
        elif isinstance(trigger, ApiDriftTrigger):
            kind, current = DriftKind.API, trigger.spec_hash
        else:
            raise TypeError(f"unsupported drift trigger: {type(trigger).__name__}")
        return _Scan(
            scan_id=generate_drift_scan_id(),
            workspace_id=trigger.workspace_id,
            repository_full_name=trigger.repository_full_name,
            kind=kind,
            current=current,
            now=utc_now() if now is None else now,
        )

    def _evaluate(self, scan: _Scan, ticket: Ticket) -> _TicketResult:
        ticket_id = ticket.id
        try:
            previous = _stored_identifier(ticket, scan)
            if previous is None:
                return _TicketResult(ticket_id, _Outcome.SKIPPED)
            if previous == scan.current:
                return _TicketResult(ticket_id, _Outcome.UNCHANGED)

            reason = (
                f"{_REASON_PREFIX[scan.kind]}: "
                f"{short_sha(previous)} → {short_sha(scan.current)}"
            )
            if not ticket.mark_drifted(reason, now=scan.now):
                return _TicketResult(ticket_id, _Outcome.SKIPPED)
            self._repository.save(ticket)
            return _TicketResult(ticket_id, _Outcome.DRIFTED, reason=reason)
        except Exception as exc:  # noqa: BLE001
            failure = DriftFailure(
                ticket_id=ticket_id, error_type=exc.__class__.__name__, message=str(exc)
            )
            return _TicketResult(ticket_id, _Outcome.FAILED, failure=failure)

    def _finish(self, scan: _Scan) -> DriftReport:
        buckets: dict[_Outcome, list[str]] = {outcome: [] for outcome in _Outcome}
        failures: list[DriftFailure] = []
        base_payload: dict[str, object] = {
            "scan_id": scan.scan_id,
            "workspace_id": scan.workspace_id,
            "repository_full_name": scan.repository_full_name,
            "kind": scan.kind.value,
        }

        for result in scan.results:
            buckets[result.outcome].append(result.ticket_id)
            if result.outcome is _Outcome.DRIFTED:
                self._logger.info(
                    "drift_ticket_flagged",
                    ticket_id=result.ticket_id,
                    kind=scan.kind.value,
                    reason=result.reason,
                )
                self._publish(
                    EventType.TICKET_DRIFTED,
                    {**base_payload, "ticket_id": result.ticket_id, "reason": result.reason},
                    scan,
                )
            elif result.failure is not None:
                failures.append(result.failure)
                self._logger.warning(
                    "drift_check_failed",
                    ticket_id=result.ticket_id,
                    kind=scan.kind.value,
                    error_type=result.failure.error_type,
                    error=result.failure.message,
                )
                self._publish(
                    EventType.DRIFT_CHECK_FAILED,
                    {**base_payload, **result.failure.to_dict()},
                    scan,
                )

        report = DriftReport(
            scan_id=scan.scan_id,
            workspace_id=scan.workspace_id,
            repository_full_name=scan.repository_full_name,
            kind=scan.kind,
            current=scan.current,
            checked=len(scan.results),
            drifted=tuple(buckets[_Outcome.DRIFTED]),
            unchanged=tuple(buckets[_Outcome.UNCHANGED]),
            skipped=tuple(buckets[_Outcome.SKIPPED]),
            failures=tuple(failures),
        )
        self._logger.info(
            "drift_scan_completed",
            repository_full_name=scan.repository_full_name,
            kind=scan.kind.value,
            checked=report.checked,
            drifted=len(report.drifted),
            failed=len(report.failures),
        )
        self._publish(
            EventType.DRIFT_SCAN_COMPLETED,
            {
                **base_payload,
                "checked": report.checked,
                "drifted": len(report.drifted),
                "unchanged": len(report.unchanged),
                "skipped": len(report.skipped),
                "failed": len(report.failures),
            },
            scan,
        )
        return report

    def _publish(self, event_type: EventType, payload: dict[str, object], scan: _Scan) -> None:
        if self._event_bus is None:
            return
        self._event_bus.emit(event_type, payload, correlation_id=scan.scan_id, timestamp=scan.now)


def _stored_identifier(ticket: Ticket, scan: _Scan) -> str | None:
    if not ticket.is_open or not ticket.references_repository(scan.repository_full_name):
        return None
    if scan.kind is DriftKind.CODE:
        snapshot = ticket.code_snapshot
        return None if snapshot is None else snapshot.commit_sha
    api_snapshot = ticket.api_snapshot
    return None if api_snapshot is None else api_snapshot.hash


__all__ = [
    "DriftDetector",
    "DriftFailure",
    "DriftKind",
    "DriftReport",
]
