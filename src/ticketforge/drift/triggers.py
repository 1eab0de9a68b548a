"""Drift trigger inputs and the YAML trigger-manifest loader."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Final, TypeAlias, cast

import yaml

from ticketforge.domain._fields import as_commit_sha, as_str, expect_object, fail
from ticketforge.domain.snapshots import as_repository_full_name

PathLike: TypeAlias = str | os.PathLike[str]

_MANIFEST_KEYS: Final[set[str]] = {"triggers"}


@dataclass(frozen=True, slots=True)
class CodeDriftTrigger:
    """New commit observed on a repository (push webhook or scheduled poll)."""

    workspace_id: str
    repository_full_name: str
    commit_sha: str

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "workspace_id",
            as_str(self.workspace_id, "CodeDriftTrigger.workspace_id", max_len=256),
        )
        object.__setattr__(
            self,
            "repository_full_name",
            as_repository_full_name(
                self.repository_full_name, "CodeDriftTrigger.repository_full_name"
            ),
        )
        object.__setattr__(
            self, "commit_sha", as_commit_sha(self.commit_sha, "CodeDriftTrigger.commit_sha")
        )


@dataclass(frozen=True, slots=True)
class ApiDriftTrigger:
    """New API spec hash observed for a repository."""

    workspace_id: str
    repository_full_name: str
    spec_hash: str

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "workspace_id",
            as_str(self.workspace_id, "ApiDriftTrigger.workspace_id", max_len=256),
        )
        object.__setattr__(
            self,
            "repository_full_name",
            as_repository_full_name(
                self.repository_full_name, "ApiDriftTrigger.repository_full_name"
            ),
        )
        object.__setattr__(
            self, "spec_hash", as_str(self.spec_hash, "ApiDriftTrigger.spec_hash", max_len=256)
        )


DriftTrigger: TypeAlias = CodeDriftTrigger | ApiDriftTrigger


def parse_drift_trigger(payload: object, path: str) -> DriftTrigger:
    """Parse one manifest entry; exactly one of ``commit_sha``/``spec_hash`` must be set."""

    parsed = expect_object(
        payload,
        path,
        required={"workspace_id", "repository_full_name"},
        optional={"commit_sha", "spec_hash"},
    )
    has_commit = parsed.get("commit_sha") is not None
    has_spec = parsed.get("spec_hash") is not None
    if has_commit == has_spec:
        fail(path, "set exactly one of commit_sha or spec_hash")

    workspace_id = parsed["workspace_id"]
    repository_full_name = parsed["repository_full_name"]
    try:
        if has_commit:
            return CodeDriftTrigger(
                workspace_id=cast("str", workspace_id),
                repository_full_name=cast("str", repository_full_name),
                commit_sha=cast("str", parsed["commit_sha"]),
            )
        return ApiDriftTrigger(
            workspace_id=cast("str", workspace_id),
            repository_full_name=cast("str", repository_full_name),
            spec_hash=cast("str", parsed["spec_hash"]),
        )
    except ValueError as exc:
        raise ValueError(f"{path}: {exc}") from exc


def load_drift_triggers(path: PathLike) -> list[DriftTrigger]:
    """Load a trigger manifest of the form ``triggers: [{...}, ...]``."""

    manifest_path = Path(path)
    try:
        with manifest_path.open("r", encoding="utf-8") as handle:
            loaded = cast("object", yaml.safe_load(handle))
    except yaml.YAMLError as exc:
        raise ValueError(f"{manifest_path}: invalid YAML ({exc})") from exc

    if loaded is None:
        return []
    if not isinstance(loaded, Mapping):
        raise ValueError(
            f"{manifest_path}: expected top-level YAML mapping, got {type(loaded).__name__}"
        )
    document = expect_object(loaded, str(manifest_path), required=_MANIFEST_KEYS)
    entries = document["triggers"]
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ValueError(f"{manifest_path}: 'triggers' must be a sequence")

    return [
        parse_drift_trigger(item, f"{manifest_path.name}.triggers[{index}]")
        for index, item in enumerate(entries)
    ]


__all__ = [
    "ApiDriftTrigger",
    "CodeDriftTrigger",
    "DriftTrigger",
    "load_drift_triggers",
    "parse_drift_trigger",
]
