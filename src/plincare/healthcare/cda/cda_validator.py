"""CDA Structural Validator.

Checks a clinical document for the fixed list of elements and identifier
authorities the ANS CI-SIS framework requires before a document may be sent
to the DMP. This is a marker checklist, not a schema validation: each check
runs independently so that one missing block reports every rule it breaks.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from plincare.healthcare.identifier_systems import FINESS_OID, INS_OID, RPPS_OID, CdaOid
from plincare.healthcare.validation.compliance import ValidationSeverity
from plincare.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ValidationIssue:
    """One validation finding."""

    code: str
    message: str
    severity: ValidationSeverity
    xpath: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        issue: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
        }
        if self.xpath:
            issue["xpath"] = self.xpath
        return issue


@dataclass
class ValidationResult:
    """Outcome of a document validation; valid iff there are no errors."""

    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """True when no error was found. Warnings do not count."""
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        return {
            "isValid": self.is_valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
        }


@dataclass
class CriticalElementsCheck:
    """Fast presence check of the three mandatory header blocks."""

    has_record_target: bool
    has_author: bool
    has_custodian: bool

    @property
    def all_present(self) -> bool:
        """True when the patient, author and custodian blocks are all there."""
        return self.has_record_target and self.has_author and self.has_custodian

    def to_dict(self) -> Dict[str, bool]:
        """Convert to a JSON-ready dictionary."""
        return {
            "hasRecordTarget": self.has_record_target,
            "hasAuthor": self.has_author,
            "hasCustodian": self.has_custodian,
            "allPresent": self.all_present,
        }


@dataclass(frozen=True)
class RequiredElement:
    """A required element, optionally with the ``root`` it must declare."""

    element: str
    xpath: str
    error_code: str
    message: str
    required_root: Optional[str] = None


REQUIRED_ELEMENTS = [
    RequiredElement(
        "typeId",
        "/ClinicalDocument/typeId",
        "CDA-001",
        "typeId missing or invalid",
        CdaOid.HL7_CDA_TYPE.value,
    ),
    RequiredElement(
        "templateId",
        "/ClinicalDocument/templateId",
        "CDA-002",
        "CI-SIS templateId missing or invalid",
        CdaOid.CI_SIS_CDA.value,
    ),
    RequiredElement(
        "recordTarget",
        "/ClinicalDocument/recordTarget",
        "CDA-003",
        "recordTarget (patient) missing",
    ),
    RequiredElement(
        "recordTarget",
        "/ClinicalDocument/recordTarget/patientRole/id",
        "CDA-004",
        f"Qualified INS missing, required OID: {INS_OID}",
        INS_OID,
    ),
    RequiredElement(
        "author",
        "/ClinicalDocument/author",
        "CDA-005",
        "author (health professional) missing",
    ),
    RequiredElement(
        "author",
        "/ClinicalDocument/author/assignedAuthor/id",
        "CDA-006",
        f"RPPS missing, required OID: {RPPS_OID}",
        RPPS_OID,
    ),
    RequiredElement(
        "custodian",
        "/ClinicalDocument/custodian",
        "CDA-007",
        "custodian (facility) missing",
    ),
    RequiredElement(
        "custodian",
        "/ClinicalDocument/custodian/assignedCustodian/representedCustodianOrganization/id",
        "CDA-008",
        f"FINESS missing, required OID: {FINESS_OID}",
        FINESS_OID,
    ),
    RequiredElement(
        "component",
        "/ClinicalDocument/component",
        "CDA-009",
        "component (document body) missing",
    ),
]

LOINC_CODE_SYSTEM_LITERAL = f'codeSystem="{CdaOid.LOINC.value}"'


def _has_element(document: str, element: str) -> bool:
    return re.search(rf"<{element}[\s>/]", document, re.IGNORECASE) is not None


def _has_root(document: str, root: str) -> bool:
    return re.search(rf"root=[\"']{re.escape(root)}[\"']", document, re.IGNORECASE) is not None


def validate_cda_structure(document: str) -> ValidationResult:
    """Validate a CDA document against the CI-SIS required elements.

    Args:
        document: CDA document text

    Returns:
        ValidationResult with CDA-000 to CDA-010 errors and CDA-W001/W002
        warnings
    """
    result = ValidationResult()

    if "<?xml" not in document:
        result.errors.append(
            ValidationIssue(
                "CDA-000",
                "Malformed XML document: XML declaration missing",
                ValidationSeverity.ERROR,
            )
        )

    if "<ClinicalDocument" not in document:
        result.errors.append(
            ValidationIssue(
                "CDA-000",
                "ClinicalDocument root element missing",
                ValidationSeverity.ERROR,
            )
        )
        logger.info("cda_validation_complete", is_valid=False, error_count=len(result.errors))
        return result

    for requirement in REQUIRED_ELEMENTS:
        if not _has_element(document, requirement.element):
            result.errors.append(
                ValidationIssue(
                    requirement.error_code,
                    requirement.message,
                    ValidationSeverity.ERROR,
                    requirement.xpath,
                )
            )
            continue

        if requirement.required_root and not _has_root(document, requirement.required_root):
            result.errors.append(
                ValidationIssue(
                    f"{requirement.error_code}-ATTR",
                    f"{requirement.message}: incorrect root attribute",
                    ValidationSeverity.ERROR,
                    requirement.xpath,
                )
            )

    if LOINC_CODE_SYSTEM_LITERAL not in document:
        result.warnings.append(
            ValidationIssue(
                "CDA-W001",
                "No LOINC code detected in the document",
                ValidationSeverity.WARNING,
            )
        )

    if "<nonXMLBody" not in document and "<structuredBody" not in document:
        result.errors.append(
            ValidationIssue(
                "CDA-010",
                "Document body missing (neither nonXMLBody nor structuredBody)",
                ValidationSeverity.ERROR,
            )
        )

    if not re.search(r"<languageCode\s+code=[\"']fr", document):
        result.warnings.append(
            ValidationIssue(
                "CDA-W002",
                "French language code not specified",
                ValidationSeverity.WARNING,
            )
        )

    logger.info(
        "cda_validation_complete",
        is_valid=result.is_valid,
        error_count=len(result.errors),
        warning_count=len(result.warnings),
    )
    return result


def quick_validate_critical_elements(document: str) -> CriticalElementsCheck:
    """Check only the patient, author and custodian blocks."""
    return CriticalElementsCheck(
        has_record_target=_has_element(document, "recordTarget"),
        has_author=_has_element(document, "author"),
        has_custodian=_has_element(document, "custodian"),
    )


def format_validation_report(result: ValidationResult) -> str:
    """Format a validation result as a human-readable text report."""

    lines = [
        "=== CDA Validation Report (ANS CI-SIS) ===",
        f"Status: {'VALID' if result.is_valid else 'INVALID'}",
        "",
    ]

    if result.errors:
        lines.append(f"ERRORS ({len(result.errors)}):")
        for issue in result.errors:
            lines.append(f"  [{issue.code}] {issue.message}")
            if issue.xpath:
                lines.append(f"    XPath: {issue.xpath}")
        lines.append("")

    if result.warnings:
        lines.append(f"WARNINGS ({len(result.warnings)}):")
        for issue in result.warnings:
            lines.append(f"  [{issue.code}] {issue.message}")

    return "\n".join(lines) + "\n"


def validate_and_report(document: str) -> str:
    """Validate a document and format the result as a text report."""
    return format_validation_report(validate_cda_structure(document))
