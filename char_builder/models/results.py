"""
Result Objects
==============
Data-path outcomes. User actions and validation checks report through these
instead of raising; exceptions are kept for wiring mistakes.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "not_found"
    WRONG_TYPE = "wrong_type"
    DUPLICATE = "duplicate"
    LIMIT_REACHED = "limit_reached"
    NOT_ALLOWED = "not_allowed"
    PROTECTED = "protected"
    PREREQUISITES_UNMET = "prerequisites_unmet"
    NO_SELECTION = "no_selection"
    STALE = "stale"
    INCOMPLETE = "incomplete"


class ActionResult(BaseModel):
    """Outcome of one step action."""

    success: bool
    error: Optional[ErrorKind] = None
    message: str = ""
    warnings: List[str] = Field(default_factory=list)
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "", warnings: Optional[List[str]] = None, **data: Any) -> "ActionResult":
        return cls(success=True, message=message, warnings=warnings or [], data=data)

    @classmethod
    def fail(cls, error: ErrorKind, message: str, warnings: Optional[List[str]] = None) -> "ActionResult":
        return cls(success=False, error=error, message=message, warnings=warnings or [])

    def __bool__(self) -> bool:
        return self.success


class ValidationResult(BaseModel):
    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)

    @property
    def can_proceed(self) -> bool:
        return self.is_valid

    @property
    def can_access(self) -> bool:
        return self.is_valid

    @property
    def can_select(self) -> bool:
        return self.is_valid

    @classmethod
    def passed(cls, warnings: Optional[List[str]] = None) -> "ValidationResult":
        return cls(is_valid=True, warnings=warnings or [])

    @classmethod
    def failed(cls, *errors: str) -> "ValidationResult":
        return cls(is_valid=False, errors=list(errors))

    def absorb(self, other: "ValidationResult") -> None:
        """Fold another result into this one."""
        if not other.is_valid:
            self.is_valid = False
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)


class BudgetStatus(BaseModel):
    total: float = 0
    spent: float = 0
    remaining: float = 0
    is_valid: bool = True
    is_over: bool = False

    @classmethod
    def of(cls, total: float, spent: float) -> "BudgetStatus":
        remaining = total - spent
        is_over = remaining < 0
        return cls(total=total, spent=spent, remaining=remaining, is_over=is_over, is_valid=not is_over)


class Budgets(BaseModel):
    stats: BudgetStatus
    spells: BudgetStatus
    gear: BudgetStatus


class PrerequisiteCheck(BaseModel):
    met: bool = True
    missing: List[str] = Field(default_factory=list)
