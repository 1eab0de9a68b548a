"""Immutable fingerprints of external state captured when a ticket becomes actionable."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Final

from ticketforge.constants import SHORT_SHA_LENGTH
from ticketforge.domain._fields import (
    as_bool,
    as_commit_sha,
    as_datetime,
    as_str,
    datetime_to_iso8601z,
    expect_object,
    fail,
    utc_now,
)
from ticketforge.utils.hashing import sha256_text

_REPOSITORY_FULL_NAME_RE: Final[re.Pattern[str]] = re.compile(
    r"^[a-zA-Z0-9_-]+/[a-zA-Z0-9_.-]+$"
)
_BRANCH_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^[a-zA-Z0-9/_.-]+$")


def short_sha(value: str, length: int = SHORT_SHA_LENGTH) -> str:
    """Abbreviate a commit SHA or content hash for human-readable messages."""

    return value[:length]


def as_repository_full_name(value: object, path: str) -> str:
    parsed = as_str(value, path, max_len=256)
    if not _REPOSITORY_FULL_NAME_RE.fullmatch(parsed):
        fail(path, "must be in format 'owner/repo'")
    return parsed


def as_branch_name(value: object, path: str) -> str:
    parsed = as_str(value, path, max_len=256)
    if not _BRANCH_NAME_RE.fullmatch(parsed):
        fail(path, f"invalid branch name {parsed!r}")
    return parsed


@dataclass(frozen=True, slots=True)
class CodeSnapshot:
    repository_full_name: str
    branch_name: str
    commit_sha: str
    captured_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "repository_full_name",
            as_repository_full_name(self.repository_full_name, "CodeSnapshot.repository_full_name"),
        )
        object.__setattr__(
            self, "branch_name", as_branch_name(self.branch_name, "CodeSnapshot.branch_name")
        )
        object.__setattr__(
            self, "commit_sha", as_commit_sha(self.commit_sha, "CodeSnapshot.commit_sha")
        )
        object.__setattr__(
            self, "captured_at", as_datetime(self.captured_at, "CodeSnapshot.captured_at")
        )

    @property
    def short_sha(self) -> str:
        return short_sha(self.commit_sha)

    def matches(self, commit_sha: str) -> bool:
        return self.commit_sha == commit_sha.strip().lower()

    def to_dict(self) -> dict[str, object]:
        return {
            "repository_full_name": self.repository_full_name,
            "branch_name": self.branch_name,
            "commit_sha": self.commit_sha,
            "captured_at": datetime_to_iso8601z(self.captured_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> CodeSnapshot:
        parsed = expect_object(
            data,
            "CodeSnapshot",
            required={"repository_full_name", "branch_name", "commit_sha", "captured_at"},
        )
        return cls(
            repository_full_name=as_str(
                parsed["repository_full_name"], "CodeSnapshot.repository_full_name"
            ),
            branch_name=as_str(parsed["branch_name"], "CodeSnapshot.branch_name"),
            commit_sha=as_str(parsed["commit_sha"], "CodeSnapshot.commit_sha"),
            captured_at=as_datetime(parsed["captured_at"], "CodeSnapshot.captured_at"),
        )


@dataclass(frozen=True, slots=True)
class ApiSnapshot:
    spec_url: str
    hash: str
    captured_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "spec_url", as_str(self.spec_url, "ApiSnapshot.spec_url", max_len=2048)
        )
        object.__setattr__(self, "hash", as_str(self.hash, "ApiSnapshot.hash", max_len=256))
        object.__setattr__(
            self, "captured_at", as_datetime(self.captured_at, "ApiSnapshot.captured_at")
        )

    @classmethod
    def from_spec_text(
        cls, spec_url: str, spec_text: str, *, captured_at: datetime | None = None
    ) -> ApiSnapshot:
        return cls(
            spec_url=spec_url,
            hash=sha256_text(spec_text),
            captured_at=captured_at or utc_now(),
        )

    @property
    def short_hash(self) -> str:
        return short_sha(self.hash)

    def matches(self, spec_hash: str) -> bool:
        return self.hash == spec_hash.strip()

    def to_dict(self) -> dict[str, object]:
        return {
            "spec_url": self.spec_url,
            "hash": self.hash,
            "captured_at": datetime_to_iso8601z(self.captured_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ApiSnapshot:
        parsed = expect_object(data, "ApiSnapshot", required={"spec_url", "hash", "captured_at"})
        return cls(
            spec_url=as_str(parsed["spec_url"], "ApiSnapshot.spec_url", max_len=2048),
            hash=as_str(parsed["hash"], "ApiSnapshot.hash", max_len=256),
            captured_at=as_datetime(parsed["captured_at"], "ApiSnapshot.captured_at"),
        )


@dataclass(frozen=True, slots=True)
class RepositoryContext:
    """Repository and branch selected for a ticket at draft time."""

    repository_full_name: str
    branch_name: str
    commit_sha: str
    is_default_branch: bool
    selected_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "repository_full_name",
            as_repository_full_name(
                self.repository_full_name, "RepositoryContext.repository_full_name"
            ),
        )
        object.__setattr__(
            self, "branch_name", as_branch_name(self.branch_name, "RepositoryContext.branch_name")
        )
        object.__setattr__(
            self, "commit_sha", as_commit_sha(self.commit_sha, "RepositoryContext.commit_sha")
        )
        object.__setattr__(
            self,
            "is_default_branch",
            as_bool(self.is_default_branch, "RepositoryContext.is_default_branch"),
        )
        object.__setattr__(
            self, "selected_at", as_datetime(self.selected_at, "RepositoryContext.selected_at")
        )

    @property
    def owner(self) -> str:
        return self.repository_full_name.split("/", 1)[0]

    @property
    def repo(self) -> str:
        return self.repository_full_name.split("/", 1)[1]

    def has_drifted(self, current_commit_sha: str) -> bool:
        return self.commit_sha != current_commit_sha.strip().lower()

    def to_dict(self) -> dict[str, object]:
        return {
            "repository_full_name": self.repository_full_name,
            "branch_name": self.branch_name,
            "commit_sha": self.commit_sha,
            "is_default_branch": self.is_default_branch,
            "selected_at": datetime_to_iso8601z(self.selected_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> RepositoryContext:
        parsed = expect_object(
            data,
            "RepositoryContext",
            required={
                "repository_full_name",
                "branch_name",
                "commit_sha",
                "is_default_branch",
                "selected_at",
            },
        )
        return cls(
            repository_full_name=as_str(
                parsed["repository_full_name"], "RepositoryContext.repository_full_name"
            ),
            branch_name=as_str(parsed["branch_name"], "RepositoryContext.branch_name"),
            commit_sha=as_str(parsed["commit_sha"], "RepositoryContext.commit_sha"),
            is_default_branch=as_bool(
                parsed["is_default_branch"], "RepositoryContext.is_default_branch"
            ),
            selected_at=as_datetime(parsed["selected_at"], "RepositoryContext.selected_at"),
        )


__all__ = [
    "ApiSnapshot",
    "CodeSnapshot",
    "RepositoryContext",
    "as_branch_name",
    "as_repository_full_name",
    "short_sha",
]
