"""Validation results and the weighted readiness scoring built on top of them."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final

from ticketforge.constants import VALIDATION_PASS_THRESHOLD
from ticketforge.domain._fields import (
    as_bool,
    as_enum,
    as_str,
    as_str_tuple,
    as_unit_interval,
    expect_object,
)


class ValidatorType(StrEnum):
    COMPLETENESS = "completeness"
    CLARITY = "clarity"
    TESTABILITY = "testability"
    FEASIBILITY = "feasibility"
    CONSISTENCY = "consistency"
    CONTEXT_ALIGNMENT = "context_alignment"
    SCOPE = "scope"


_RESULT_REQUIRED: Final[set[str]] = {"criterion", "passed", "score", "weight"}
_RESULT_OPTIONAL: Final[set[str]] = {"issues", "blockers", "message"}


def default_message(criterion: ValidatorType) -> str:
    return f"Validation check for {criterion.value}"


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """One weighted pass/fail judgment about ticket content.

    ``score`` and ``weight`` are clamped into ``[0, 1]`` at construction. Legacy
    inputs above 1 are read as percentages (``85`` becomes ``0.85``). A missing
    or blank message falls back to ``"Validation check for <criterion>"``.
    """

    criterion: ValidatorType
    passed: bool
    score: float
    weight: float
    issues: tuple[str, ...] = field(default_factory=tuple)
    blockers: tuple[str, ...] = field(default_factory=tuple)
    message: str = ""

    def __post_init__(self) -> None:
        criterion = as_enum(ValidatorType, self.criterion, "ValidationResult.criterion")
        object.__setattr__(self, "criterion", criterion)
        object.__setattr__(self, "passed", as_bool(self.passed, "ValidationResult.passed"))
        object.__setattr__(
            self,
            "score",
            as_unit_interval(self.score, "ValidationResult.score", legacy_percent=True),
        )
        object.__setattr__(
            self,
            "weight",
            as_unit_interval(self.weight, "ValidationResult.weight", legacy_percent=True),
        )
        object.__setattr__(
            self, "issues", as_str_tuple(self.issues, "ValidationResult.issues")
        )
        object.__setattr__(
            self, "blockers", as_str_tuple(self.blockers, "ValidationResult.blockers")
        )

        message = self.message
        if not isinstance(message, str):
            raise ValueError(
                f"ValidationResult.message: expected string, got {type(message).__name__}"
            )
        message = message.strip()
        object.__setattr__(self, "message", message or default_message(criterion))

    @property
    def weighted_score(self) -> float:
        return self.score * self.weight

    @property
    def has_critical_issues(self) -> bool:
        return len(self.blockers) > 0

    def to_dict(self) -> dict[str, object]:
        return {
            "criterion": self.criterion.value,
            "passed": self.passed,
            "score": self.score,
            "weight": self.weight,
            "issues": list(self.issues),
            "blockers": list(self.blockers),
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ValidationResult:
        parsed = expect_object(
            data, "ValidationResult", required=_RESULT_REQUIRED, optional=_RESULT_OPTIONAL
        )
        raw_message = parsed.get("message")
        message = ""
        if raw_message is not None:
            message = as_str(raw_message, "ValidationResult.message", min_len=0)
        return cls(
            criterion=as_enum(ValidatorType, parsed["criterion"], "ValidationResult.criterion"),
            passed=as_bool(parsed["passed"], "ValidationResult.passed"),
            score=parsed["score"],  # type: ignore[arg-type]
            weight=parsed["weight"],  # type: ignore[arg-type]
            issues=as_str_tuple(parsed.get("issues", ()), "ValidationResult.issues"),
            blockers=as_str_tuple(parsed.get("blockers", ()), "ValidationResult.blockers"),
            message=message,
        )


def overall_validation_score(results: Iterable[ValidationResult]) -> float:
    """Weighted mean of ``score`` by ``weight``; ``0.0`` when empty or weightless."""

    total_weight = 0.0
    weighted_sum = 0.0
    for result in results:
        total_weight += result.weight
        weighted_sum += result.score * result.weight
    if total_weight == 0:
        return 0.0
    return weighted_sum / total_weight


def calculate_readiness_score(results: Iterable[ValidationResult]) -> int:
    """Readiness on a 0..100 scale, rounding halves upwards."""

    overall = overall_validation_score(results)
    return max(0, min(100, math.floor(overall * 100 + 0.5)))


def validation_passed(results: Iterable[ValidationResult]) -> bool:
    return overall_validation_score(results) >= VALIDATION_PASS_THRESHOLD


def has_critical_blockers(results: Iterable[ValidationResult]) -> bool:
    return any(result.has_critical_issues for result in results)


def parse_validation_results(
    value: object, path: str, *, drop_invalid: bool = False
) -> tuple[ValidationResult, ...]:
    """Parse persisted validation results.

    With ``drop_invalid`` set, malformed legacy entries are skipped instead of
    rejecting the whole record.
    """

    if not isinstance(value, (list, tuple)):
        raise ValueError(f"{path}: expected array, got {type(value).__name__}")
    parsed: list[ValidationResult] = []
    for index, item in enumerate(value):
        if isinstance(item, ValidationResult):
            parsed.append(item)
            continue
        try:
            if not isinstance(item, Mapping):
                raise ValueError(f"{path}[{index}]: expected object, got {type(item).__name__}")
            parsed.append(ValidationResult.from_dict(item))
        except ValueError:
            if drop_invalid:
                continue
            raise
    return tuple(parsed)


__all__ = [
    "ValidationResult",
    "ValidatorType",
    "calculate_readiness_score",
    "default_message",
    "has_critical_blockers",
    "overall_validation_score",
    "parse_validation_results",
    "validation_passed",
]
