"""Semantic validation of clinical codes.

LOINC is the coding system used for document and observation types; its
codes have the form ``NNNNN-N``.
"""

import re
from typing import Any, Dict, Optional

from plincare.healthcare.identifier_systems import LOINC_SYSTEM, UCUM_SYSTEM
from plincare.utils.logging import get_logger

from .compliance import ComplianceResult

logger = get_logger(__name__)

LOINC_PATTERN = re.compile(r"^\d{3,7}-\d$")

# Codes worth flagging in the audit trail when they pass through
CRITICAL_LOINC_CODES = {"2339-0": "Glucose [Mass/volume] in Blood"}

MISSING_CODING = "MISSING_CODING"
INVALID_LOINC_FORMAT = "INVALID_LOINC_FORMAT"


def validate_semantic_code(coding: Optional[Dict[str, Any]]) -> ComplianceResult:
    """Validate one Coding.

    Args:
        coding: FHIR Coding with ``system`` and ``code``

    Returns:
        ComplianceResult naming the offending code on failure
    """
    if not coding or not coding.get("system") or not coding.get("code"):
        return ComplianceResult.failure("Missing system or code in coding", MISSING_CODING)

    code = coding["code"]
    if coding["system"] == LOINC_SYSTEM:
        if not LOINC_PATTERN.match(code):
            logger.error("semantic_invalid_loinc", code=code)
            return ComplianceResult.failure(
                f"Invalid LOINC code format: {code}", INVALID_LOINC_FORMAT
            )
        if code in CRITICAL_LOINC_CODES:
            logger.info("semantic_critical_loinc", code=code, display=CRITICAL_LOINC_CODES[code])

    return ComplianceResult.success()


def validate_resource_semantics(resource: Dict[str, Any]) -> ComplianceResult:
    """Validate every coding of a DiagnosticReport or Observation.

    The main ``code`` is checked first, then contained Observations of a
    DiagnosticReport, stopping at the first failure. Observations whose
    quantity is not expressed in UCUM get a warning.

    Args:
        resource: FHIR resource as a dictionary

    Returns:
        ComplianceResult
    """
    warnings = []
    for coding in (resource.get("code") or {}).get("coding") or []:
        result = validate_semantic_code(coding)
        if not result.valid:
            return result

    quantity = resource.get("valueQuantity")
    if quantity and quantity.get("system") != UCUM_SYSTEM:
        warnings.append(
            f"Observation {resource.get('id', '')} quantity unit is not coded in UCUM"
        )

    if resource.get("resourceType") == "DiagnosticReport":
        for contained in resource.get("contained") or []:
            if contained.get("resourceType") != "Observation":
                continue
            result = validate_resource_semantics(contained)
            if not result.valid:
                return result
            warnings.extend(result.warnings)

    return ComplianceResult.success(warnings)
