"""DiagnosticReport compliance validation."""

from typing import Any, Dict

from plincare.utils.logging import get_logger

from .compliance import ComplianceResult

logger = get_logger(__name__)

ORPHAN_REPORT = "ORPHAN_REPORT"
MISSING_STATUS = "MISSING_STATUS"


def validate_diagnostic_report(resource: Dict[str, Any]) -> ComplianceResult:
    """Validate a DiagnosticReport.

    The report must reference a Patient as its subject and carry a status.
    A missing effective time is reported as a warning only.

    Args:
        resource: FHIR DiagnosticReport as a dictionary

    Returns:
        ComplianceResult

    Raises:
        ValueError: If the resource is not a DiagnosticReport
    """
    if resource.get("resourceType") != "DiagnosticReport":
        raise ValueError("Invalid resource type: Expected DiagnosticReport")

    warnings = []
    if not resource.get("effectiveDateTime") and not resource.get("effectivePeriod"):
        logger.warning("diagnostic_report_missing_effective_time", resource_id=resource.get("id"))
        warnings.append("DiagnosticReport missing effective time (recommended)")

    reference = (resource.get("subject") or {}).get("reference") or ""
    if not reference.startswith("Patient/"):
        logger.error("compliance_orphan_report", resource_id=resource.get("id"))
        return ComplianceResult.failure(
            "DiagnosticReport must be linked to a Patient", ORPHAN_REPORT, warnings
        )

    if not resource.get("status"):
        logger.error("compliance_missing_status", resource_id=resource.get("id"))
        return ComplianceResult.failure("Missing status", MISSING_STATUS, warnings)

    return ComplianceResult.success(warnings)
