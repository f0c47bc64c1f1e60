"""Ségur compliance validators for FHIR resources."""

from .compliance import ComplianceResult, ValidationSeverity
from .diagnostic_report_validator import validate_diagnostic_report
from .patient_validator import validate_patient
from .semantic_validator import validate_resource_semantics, validate_semantic_code

__all__ = [
    "ComplianceResult",
    "ValidationSeverity",
    "validate_diagnostic_report",
    "validate_patient",
    "validate_resource_semantics",
    "validate_semantic_code",
]
