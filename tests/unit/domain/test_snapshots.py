from __future__ import annotations

from datetime import datetime

import pytest

from ticketforge.domain import ids
from ticketforge.domain.snapshots import (
    ApiSnapshot,
    CodeSnapshot,
    RepositoryContext,
    as_branch_name,
    short_sha,
)
from ticketforge.utils.hashing import sha256_text

from .. import BASE_TS, SHA_NEW, SHA_OLD, api_snapshot, code_snapshot, repository_context


def test_code_snapshot_normalizes_sha_and_abbreviates() -> None:
    snapshot = code_snapshot(commit_sha=SHA_OLD.upper())

    assert snapshot.commit_sha == SHA_OLD
    assert snapshot.short_sha == "3f2c1a9"
    assert snapshot.matches(f"  {SHA_OLD.upper()} ")
    assert not snapshot.matches(SHA_NEW)


@pytest.mark.parametrize("sha", ["abc12", "g" * 40, "a" * 41])
def test_code_snapshot_rejects_malformed_sha(sha: str) -> None:
    with pytest.raises(ValueError, match="CodeSnapshot.commit_sha"):
        code_snapshot(commit_sha=sha)


@pytest.mark.parametrize("repository", ["payments", "acme/", "/payments", "acme/pay/ments"])
def test_repository_name_must_be_owner_slash_repo(repository: str) -> None:
    with pytest.raises(ValueError, match="owner/repo"):
        code_snapshot(repository=repository)


@pytest.mark.parametrize("branch", ["main", "feature/pay-42", "release/1.4.x", "user_x/fix"])
def test_branch_names_accept_common_shapes(branch: str) -> None:
    assert as_branch_name(branch, "branch") == branch


@pytest.mark.parametrize("branch", ["has space", "feat~1", "a:b"])
def test_branch_names_reject_unsafe_characters(branch: str) -> None:
    with pytest.raises(ValueError, match="invalid branch name"):
        as_branch_name(branch, "branch")


def test_snapshots_require_timezone_aware_timestamps() -> None:
    with pytest.raises(ValueError, match="timezone-aware"):
        CodeSnapshot(
            repository_full_name="acme/payments",
            branch_name="main",
            commit_sha=SHA_OLD,
            captured_at=datetime(2026, 2, 1, 12, 0, 0),
        )


def test_api_snapshot_from_spec_text_hashes_content() -> None:
    text = "openapi: 3.1.0\ninfo:\n  title: Payments\n"

    snapshot = ApiSnapshot.from_spec_text(
        "https://api.acme.test/openapi.yaml", text, captured_at=BASE_TS
    )

    assert snapshot.hash == sha256_text(text)
    assert len(snapshot.hash) == 64
    assert snapshot.short_hash == snapshot.hash[:7]
    assert snapshot.matches(sha256_text(text))
    assert not snapshot.matches(sha256_text(text + "\n"))


def test_repository_context_drift_compares_normalized_sha() -> None:
    context = repository_context()

    assert context.owner == "acme"
    assert context.repo == "payments"
    assert not context.has_drifted(SHA_OLD.upper())
    assert context.has_drifted(SHA_NEW)


@pytest.mark.parametrize(
    "value",
    [code_snapshot(), api_snapshot(), repository_context()],
    ids=["code", "api", "context"],
)
def test_snapshot_records_round_trip(value: CodeSnapshot | ApiSnapshot | RepositoryContext) -> None:
    record = value.to_dict()

    assert type(value).from_dict(record) == value
    assert "2026-02-01T12:00:00Z" in record.values()


def test_short_sha_length_is_configurable() -> None:
    assert short_sha(SHA_NEW) == "9a8b7c6"
    assert short_sha(SHA_NEW, 10) == "9a8b7c6d5e"


def test_ticket_ids_are_prefixed_ulids() -> None:
    first = ids.generate_ticket_id(timestamp_ms=1_000, randbytes=lambda size: b"\x00" * size)
    second = ids.generate_ticket_id(timestamp_ms=2_000, randbytes=lambda size: b"\x00" * size)

    ids.validate_ticket_id(first)
    assert first.startswith("aec-")
    assert len(first) == len("aec-") + ids.ULID_LENGTH
    assert first < second
    assert ids.parse_ulid_timestamp_ms(first[len("aec-") :]) == 1_000


def test_prefixed_id_validation_rejects_wrong_prefix() -> None:
    event_id = ids.generate_event_id()

    with pytest.raises(ValueError, match="expected prefix 'aec-'"):
        ids.validate_ticket_id(event_id)
    ids.validate_event_id(event_id)


def test_randbytes_must_provide_exact_length() -> None:
    with pytest.raises(ValueError, match="exactly 10 bytes"):
        ids.generate_ticket_id(randbytes=lambda size: b"\x00")
