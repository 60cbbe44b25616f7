"""Typed results for expected business outcomes."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class Outcome(str, Enum):
    """Expected outcomes of hold and payment operations."""
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_RESOLVED = "ALREADY_RESOLVED"
    INSUFFICIENT_AVAILABILITY = "INSUFFICIENT_AVAILABILITY"
    INVALID_TRANSITION = "INVALID_TRANSITION"


@dataclass
class OperationResult(Generic[T]):
    """
    Result of a hold or payment operation.

    ``value`` carries the entity whenever one exists, including for
    ALREADY_RESOLVED and INVALID_TRANSITION. ``changed`` is False for
    idempotent no-ops. ``detail`` holds outcome-specific context such as the
    available quantity.
    """

    outcome: Outcome
    value: Optional[T] = None
    changed: bool = False
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.OK

    @classmethod
    def success(cls, value: T, changed: bool = True) -> "OperationResult[T]":
        return cls(Outcome.OK, value, changed)

    @classmethod
    def not_found(cls, **detail: Any) -> "OperationResult[T]":
        return cls(Outcome.NOT_FOUND, detail=detail)

    @classmethod
    def already_resolved(cls, value: T) -> "OperationResult[T]":
        return cls(Outcome.ALREADY_RESOLVED, value)

    @classmethod
    def insufficient(cls, **detail: Any) -> "OperationResult[T]":
        return cls(Outcome.INSUFFICIENT_AVAILABILITY, detail=detail)

    @classmethod
    def invalid(cls, value: T, **detail: Any) -> "OperationResult[T]":
        return cls(Outcome.INVALID_TRANSITION, value, detail=detail)
