"""Compliance result shared by the Ségur validators."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ValidationSeverity(Enum):
    """Validation issue severity levels."""

    ERROR = "error"  # Content is invalid
    WARNING = "warning"  # Content could be improved


@dataclass
class ComplianceResult:
    """Outcome of one compliance check.

    Only the first failing rule is reported in ``error``; warnings never
    affect ``valid``.
    """

    valid: bool
    error: Optional[str] = None
    error_code: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def success(cls, warnings: Optional[List[str]] = None) -> "ComplianceResult":
        """Build a passing result."""
        return cls(valid=True, warnings=list(warnings or []))

    @classmethod
    def failure(
        cls, error: str, error_code: str, warnings: Optional[List[str]] = None
    ) -> "ComplianceResult":
        """Build a failing result."""
        return cls(
            valid=False,
            error=error,
            error_code=error_code,
            warnings=list(warnings or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        result: Dict[str, Any] = {"valid": self.valid}
        if self.error:
            result["error"] = self.error
            result["errorCode"] = self.error_code
        if self.warnings:
            result["warnings"] = list(self.warnings)
        return result
