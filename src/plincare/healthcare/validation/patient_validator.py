"""Patient compliance validation.

Checks the identity rules every Patient must satisfy before it is shared:
an official name, a qualified national identifier (INS) and an upper-case
legal family name.
"""

from typing import Any, Dict, Optional

from plincare.healthcare.identifier_systems import INS_SYSTEM, is_qualified_ins
from plincare.utils.logging import get_logger

from .compliance import ComplianceResult

logger = get_logger(__name__)

MISSING_OFFICIAL_NAME = "MISSING_OFFICIAL_NAME"
MISSING_INS = "MISSING_INS"
NAME_NOT_UPPERCASE = "NAME_NOT_UPPERCASE"


def find_official_name(resource: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the first name marked ``use=official``, if any."""
    for name in resource.get("name") or []:
        if name.get("use") == "official":
            return name
    return None


def validate_patient(resource: Dict[str, Any]) -> ComplianceResult:
    """Validate a Patient against the identity rules.

    The checks run in a fixed order and the first failure is returned:
    official name, then INS, then upper-case family name.

    Args:
        resource: FHIR Patient as a dictionary

    Returns:
        ComplianceResult

    Raises:
        ValueError: If the resource is not a Patient
    """
    if resource.get("resourceType") != "Patient":
        raise ValueError("Invalid resource type: Expected Patient")

    official_name = find_official_name(resource)
    if not official_name or not official_name.get("family"):
        logger.error("compliance_missing_official_name", resource_id=resource.get("id"))
        return ComplianceResult.failure(
            "Missing official family name", MISSING_OFFICIAL_NAME
        )

    ins_identifier = next(
        (
            identifier
            for identifier in resource.get("identifier") or []
            if identifier.get("system") == INS_SYSTEM
            and is_qualified_ins(identifier.get("value"))
        ),
        None,
    )
    if ins_identifier is None:
        logger.error("compliance_missing_ins", resource_id=resource.get("id"))
        return ComplianceResult.failure("Missing INS identifier", MISSING_INS)

    family = official_name["family"]
    if family != family.upper():
        logger.error("compliance_name_not_uppercase", resource_id=resource.get("id"))
        return ComplianceResult.failure(
            "Official family name not in uppercase", NAME_NOT_UPPERCASE
        )

    return ComplianceResult.success()
