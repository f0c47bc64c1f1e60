"""CDA R2 clinical document generation and validation."""

from .cda_generator import (
    AuthorOptions,
    CDAGenerator,
    CDAGeneratorOptions,
    CustodianOptions,
    create_document_reference,
    generate_cr_bio,
)
from .cda_validator import (
    CriticalElementsCheck,
    ValidationIssue,
    ValidationResult,
    format_validation_report,
    quick_validate_critical_elements,
    validate_and_report,
    validate_cda_structure,
)

__all__ = [
    "AuthorOptions",
    "CDAGenerator",
    "CDAGeneratorOptions",
    "CustodianOptions",
    "CriticalElementsCheck",
    "ValidationIssue",
    "ValidationResult",
    "create_document_reference",
    "format_validation_report",
    "generate_cr_bio",
    "quick_validate_critical_elements",
    "validate_and_report",
    "validate_cda_structure",
]
