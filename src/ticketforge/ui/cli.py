"""Command-line interface router for ticketforge."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import structlog

from ticketforge.application import TicketCommandService
from ticketforge.config import TicketforgeConfig, load_config
from ticketforge.domain.ids import generate_prefixed_id
from ticketforge.drift import (
    ApiDriftTrigger,
    CodeDriftTrigger,
    DriftDetector,
    DriftReport,
    DriftTrigger,
    load_drift_triggers,
)
from ticketforge.observability import (
    EventBus,
    LoggingConfig,
    setup_structured_logging,
    shutdown_logging,
)
from ticketforge.persistence import StateDB, TicketEventRepo, TicketRepo


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class _Runtime:
    config: TicketforgeConfig
    tickets: TicketRepo
    events: TicketEventRepo
    event_bus: EventBus


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="ticketforge",
        description=(
            "ticketforge — ticket lifecycle and drift detection.\n\n"
            "Common workflows:\n"
            "  ticketforge drift code --workspace W --repo o/r --commit SHA\n"
            "  ticketforge drift manifest triggers.yaml\n"
            "  ticketforge ticket show aec-... --workspace W\n"
            "  ticketforge ticket force-unlock aec-... --workspace W\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to ticketforge TOML config (default: ./ticketforge.toml if present).",
    )
    common.add_argument(
        "--state-db",
        dest="state_db",
        default=None,
        help="Override persistence.state_db_path.",
    )
    common.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        default=False,
        help="Emit machine-readable JSON on stdout.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # -- drift ---------------------------------------------------------------
    drift_parser = subparsers.add_parser("drift", help="Run drift scans.")
    drift_sub = drift_parser.add_subparsers(dest="drift_command", required=True)

    code_parser = drift_sub.add_parser(
        "code", parents=[common], help="Flag tickets whose commit snapshot is stale."
    )
    _add_scope_arguments(code_parser)
    code_parser.add_argument("--commit", dest="commit_sha", required=True)
    code_parser.set_defaults(handler=_cmd_drift_code)

    api_parser = drift_sub.add_parser(
        "api", parents=[common], help="Flag tickets whose API spec snapshot is stale."
    )
    _add_scope_arguments(api_parser)
    api_parser.add_argument("--spec-hash", dest="spec_hash", required=True)
    api_parser.set_defaults(handler=_cmd_drift_api)

    manifest_parser = drift_sub.add_parser(
        "manifest", parents=[common], help="Run every trigger listed in a YAML manifest."
    )
    manifest_parser.add_argument("manifest_path", help="YAML file with a 'triggers' list.")
    manifest_parser.set_defaults(handler=_cmd_drift_manifest)

    # -- ticket --------------------------------------------------------------
    ticket_parser = subparsers.add_parser("ticket", help="Inspect and recover tickets.")
    ticket_sub = ticket_parser.add_subparsers(dest="ticket_command", required=True)

    show_parser = ticket_sub.add_parser("show", parents=[common], help="Print a ticket record.")
    show_parser.add_argument("ticket_id")
    show_parser.add_argument("--workspace", dest="workspace_id", required=True)
    show_parser.set_defaults(handler=_cmd_ticket_show)

    unlock_parser = ticket_sub.add_parser(
        "force-unlock", parents=[common], help="Drop a stuck workflow lock."
    )
    unlock_parser.add_argument("ticket_id")
    unlock_parser.add_argument("--workspace", dest="workspace_id", required=True)
    unlock_parser.set_defaults(handler=_cmd_ticket_force_unlock)

    stale_parser = ticket_sub.add_parser(
        "fail-stale",
        parents=[common],
        help="Fail generations whose lock outlived workflow.lock_timeout_seconds.",
    )
    stale_parser.add_argument("ticket_ids", nargs="+")
    stale_parser.add_argument("--workspace", dest="workspace_id", required=True)
    stale_parser.set_defaults(handler=_cmd_ticket_fail_stale)

    return parser


def _add_scope_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--workspace", dest="workspace_id", required=True)
    parser.add_argument("--repo", dest="repository_full_name", required=True)


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_drift_code(args: argparse.Namespace) -> int:
    trigger = CodeDriftTrigger(
        workspace_id=_require_str(args.workspace_id, "workspace"),
        repository_full_name=_require_str(args.repository_full_name, "repo"),
        commit_sha=_require_str(args.commit_sha, "commit"),
    )
    return _run_drift(args, [trigger])


def _cmd_drift_api(args: argparse.Namespace) -> int:
    trigger = ApiDriftTrigger(
        workspace_id=_require_str(args.workspace_id, "workspace"),
        repository_full_name=_require_str(args.repository_full_name, "repo"),
        spec_hash=_require_str(args.spec_hash, "spec-hash"),
    )
    return _run_drift(args, [trigger])


def _cmd_drift_manifest(args: argparse.Namespace) -> int:
    manifest_path = Path(_require_str(args.manifest_path, "manifest_path"))
    if not manifest_path.is_file():
        raise CLIError(f"manifest not found: {manifest_path}", exit_code=2)
    return _run_drift(args, load_drift_triggers(manifest_path))


def _run_drift(args: argparse.Namespace, triggers: Sequence[DriftTrigger]) -> int:
    with _open_runtime(args) as runtime:
        detector = DriftDetector(
            runtime.tickets,
            event_bus=runtime.event_bus,
            max_concurrency=runtime.config["drift"]["max_concurrency"],
        )
        reports = detector.detect_many(triggers)

    if _flag(args, "json_output"):
        _emit_json({"reports": [report.to_dict() for report in reports]})
    else:
        for report in reports:
            _print_report(report)
    return 0 if all(report.ok for report in reports) else 1


def _cmd_ticket_show(args: argparse.Namespace) -> int:
    ticket_id = _require_str(args.ticket_id, "ticket_id")
    workspace_id = _require_str(args.workspace_id, "workspace")
    with _open_runtime(args) as runtime:
        ticket = runtime.tickets.get(ticket_id, workspace_id)
        events = runtime.events.list_for_ticket(ticket.id, limit=20)

    if _flag(args, "json_output"):
        _emit_json(
            {"ticket": ticket.to_dict(), "events": [event.to_dict() for event in events]}
        )
        return 0

    print(f"{ticket.id}  {ticket.status.value}  {ticket.title}")
    print(f"  workspace:  {ticket.workspace_id}")
    print(f"  repository: {ticket.repository_full_name or '-'}")
    print(f"  locked by:  {ticket.locked_by or '-'}")
    print(f"  readiness:  {ticket.readiness_score}")
    print(f"  revision:   {ticket.revision}")
    if ticket.failure_reason:
        print(f"  failure:    {ticket.failure_reason}")
    if ticket.drift_reason:
        print(f"  drift:      {ticket.drift_reason}")
    for event in events:
        print(f"  - {event.event_type.value} {event.event_id}")
    return 0


def _cmd_ticket_force_unlock(args: argparse.Namespace) -> int:
    ticket_id = _require_str(args.ticket_id, "ticket_id")
    workspace_id = _require_str(args.workspace_id, "workspace")
    with _open_runtime(args) as runtime:
        service = _command_service(runtime)
        previous = service.force_unlock(ticket_id, workspace_id)

    if _flag(args, "json_output"):
        _emit_json({"ticket_id": ticket_id, "previous_holder": previous})
    elif previous is None:
        print(f"{ticket_id} was not locked")
    else:
        print(f"{ticket_id} unlocked (was held by {previous})")
    return 0


def _cmd_ticket_fail_stale(args: argparse.Namespace) -> int:
    workspace_id = _require_str(args.workspace_id, "workspace")
    ticket_ids = [_require_str(item, "ticket_id") for item in args.ticket_ids]
    with _open_runtime(args) as runtime:
        service = _command_service(runtime)
        sweep = service.fail_stale_generations(workspace_id, ticket_ids)

    if _flag(args, "json_output"):
        _emit_json({**sweep.to_dict(), "timeout_seconds": service.lock_timeout_seconds})
    else:
        if not sweep.failed and sweep.ok:
            print("no stale generations")
        for ticket_id in sweep.failed:
            print(f"{ticket_id} failed (lock older than {service.lock_timeout_seconds}s)")
        for failure in sweep.failures:
            print(f"{failure.ticket_id} not checked: {failure.error_type}: {failure.message}")
    return 0 if sweep.ok else 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _open_runtime(args: argparse.Namespace) -> Iterator[_Runtime]:
    """Load config, start the JSON-lines log sink, and open the state DB."""

    config = load_config(
        getattr(args, "config_path", None),
        cli_overrides={"persistence.state_db_path": getattr(args, "state_db", None)},
    )
    observability = config["observability"]
    handle = setup_structured_logging(
        LoggingConfig(
            run_id=generate_prefixed_id("cli"),
            base_log_dir=observability["log_dir"],
            level=observability["log_level"],
            log_to_stdout=observability["log_to_stdout"],
            redact_secrets=observability["redact_secrets"],
        )
    )
    try:
        persistence = config["persistence"]
        db_path = Path(persistence["state_db_path"])
        state_db = StateDB(
            db_path,
            busy_timeout_ms=persistence["busy_timeout_ms"],
            busy_retry_limit=persistence["busy_retry_limit"],
        )
        events = TicketEventRepo(state_db)
        yield _Runtime(
            config=config,
            tickets=TicketRepo(state_db),
            events=events,
            event_bus=EventBus(persist_event=events),
        )
    finally:
        shutdown_logging(handle)
        structlog.reset_defaults()


def _command_service(runtime: _Runtime) -> TicketCommandService:
    return TicketCommandService(
        runtime.tickets,
        event_bus=runtime.event_bus,
        lock_timeout_seconds=runtime.config["workflow"]["lock_timeout_seconds"],
    )


def _print_report(report: DriftReport) -> None:
    status = "ok" if report.ok else "FAILURES"
    print(
        f"[{report.kind.value}] {report.repository_full_name} @ {report.current}: "
        f"checked={report.checked} drifted={len(report.drifted)} "
        f"unchanged={len(report.unchanged)} skipped={len(report.skipped)} "
        f"failed={len(report.failures)} ({status})"
    )
    for ticket_id in report.drifted:
        print(f"  drifted  {ticket_id}")
    for failure in report.failures:
        print(f"  failed   {failure.ticket_id}: {failure.error_type}: {failure.message}")


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise CLIError(f"invalid {name}: expected string", exit_code=2)
    cleaned = value.strip()
    if not cleaned:
        raise CLIError(f"invalid {name}: value cannot be empty", exit_code=2)
    return cleaned


def _flag(args: argparse.Namespace, name: str) -> bool:
    value = getattr(args, name, False)
    return bool(value)


__all__ = ["CLIError", "build_parser", "run_cli"]
