"""Identifier System Definitions.

This module defines the identifier authorities shared by the HL7 mapper, the
compliance validators and the CDA generator: the national patient identity
(INS), the practitioner register (RPPS) and the facility register (FINESS),
plus the coding systems used for document and observation types.
"""

import re
from enum import Enum
from typing import Any, Dict, List, Optional

# FHIR resource type for this module
__fhir_type__ = "Identifier"


class CdaOid(str, Enum):
    """Official OIDs used in CI-SIS documents."""

    # Patient identifiers
    INS = "1.2.250.1.213.1.4.5"  # Qualified INS (NIR)
    INS_NIR = "1.2.250.1.213.1.4.8"
    IPP = "1.2.250.1.213.1.4.2"

    # Practitioner identifiers
    RPPS = "1.2.250.1.71.4.2.1"
    ADELI = "1.2.250.1.71.4.2.2"

    # Facility identifiers
    FINESS = "1.2.250.1.71.4.2.2"  # same root as ADELI
    SIRET = "1.2.250.1.71.4.2.3"

    # Templates and HL7 code systems
    CI_SIS_CDA = "1.2.250.1.213.1.1.1.1"
    HL7_CDA_TYPE = "2.16.840.1.113883.1.3"
    LOINC = "2.16.840.1.113883.6.1"
    CONFIDENTIALITY = "2.16.840.1.113883.5.25"
    ADMINISTRATIVE_GENDER = "2.16.840.1.113883.5.1"


# Enum members sharing a value become aliases; keep plain constants too.
INS_OID = CdaOid.INS.value
RPPS_OID = CdaOid.RPPS.value
FINESS_OID = "1.2.250.1.71.4.2.2"

# Authorities accepted in PID-3.4 to flag an identifier as INS
INS_AUTHORITY_LABEL = "INS"
INS_AUTHORITIES = frozenset({INS_AUTHORITY_LABEL, INS_OID})

# FHIR systems
INS_SYSTEM = f"urn:oid:{INS_OID}"
# Identifier systems accepted for the INS, matched exactly
INS_SYSTEMS = frozenset({INS_SYSTEM, INS_OID})
LOCAL_PATIENT_SYSTEM = "https://plincare.io/id/local"
LOINC_SYSTEM = "http://loinc.org"
UCUM_SYSTEM = "http://unitsofmeasure.org"
V2_0203_SYSTEM = "http://terminology.hl7.org/CodeSystem/v2-0203"
IDENTITY_STATUS_EXTENSION_URL = (
    "http://interopsante.org/fhir/StructureDefinition/FrPatientIdentStatus"
)
IDENTITY_STATUS_VALIDATED = "VALIDATED"

INS_PATTERN = re.compile(r"^\d{15}$")


def is_ins_authority(authority: str) -> bool:
    """Check whether a PID-3 assigning authority designates the INS."""
    return authority in INS_AUTHORITIES


def is_qualified_ins(value: Optional[str]) -> bool:
    """Check that an INS value has the 15-digit qualified form."""
    return bool(value) and bool(INS_PATTERN.match(value or ""))


def is_ins_system(system: Optional[str]) -> bool:
    """Check whether a FHIR identifier system denotes the INS."""
    return system in INS_SYSTEMS


def find_ins_identifier(
    identifiers: Optional[List[Dict[str, Any]]],
) -> Optional[Dict[str, Any]]:
    """Return the first INS identifier carrying a value, if any."""
    for identifier in identifiers or []:
        if is_ins_system(identifier.get("system")) and identifier.get("value"):
            return identifier
    return None


def find_local_identifier(
    identifiers: Optional[List[Dict[str, Any]]],
) -> Optional[Dict[str, Any]]:
    """Return the first identifier that is not an INS."""
    for identifier in identifiers or []:
        if not is_ins_system(identifier.get("system")) and identifier.get("value"):
            return identifier
    return None


def build_ins_identifier(value: str) -> Dict[str, Any]:
    """Build the FHIR Identifier for an INS value."""
    return {
        "system": INS_SYSTEM,
        "value": value,
        "type": {"coding": [{"system": V2_0203_SYSTEM, "code": "INS-NIR"}]},
    }


def build_local_identifier(value: str) -> Dict[str, Any]:
    """Build the FHIR Identifier for a site-local patient number."""
    return {"system": LOCAL_PATIENT_SYSTEM, "value": value}
