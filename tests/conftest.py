"""Test configuration for the Plincare integration engine.

Provides sample HL7 messages and FHIR resources shared by the unit tests.
Sample identities are synthetic.
"""

from typing import Any, Dict

import pytest

from plincare.config import Settings
from plincare.healthcare.identifier_systems import INS_SYSTEM

SAMPLE_INS = "123456789012345"


def hl7(*segments: str) -> str:
    """Join segment lines with the HL7 segment terminator."""
    return "\r".join(segments)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "segur_compliance: mark test as covering a Ségur compliance rule"
    )


@pytest.fixture
def adt_message() -> str:
    """ADT^A01 for a patient with a qualified INS."""
    return hl7(
        "MSH|^~\\&|HIS|HOSP|PFI|PHARMACIE|20240115103000||ADT^A01|MSG00001|P|2.5",
        "EVN|A01|20240115103000",
        f"PID|1||{SAMPLE_INS}^^^INS~IPP-778^^^HOSP||DUBOIS^JEAN PIERRE||19800115|M",
        "PV1|1|I",
    )


@pytest.fixture
def oru_message() -> str:
    """ORU^R01 with one numeric result and one embedded PDF."""
    return hl7(
        "MSH|^~\\&|LAB|HOSP|PFI|PHARMACIE|20240115110000||ORU^R01|MSG00002|P|2.5",
        f"PID|1||{SAMPLE_INS}^^^INS||DUBOIS^JEAN||19800115|M",
        "OBR|1|ORD-1|RES-42|24331-1^Lipid panel^LN|||202401151030",
        "OBX|1|NM|2339-0^Glucose^LN||5.5|mmol/L^mmol/L^UCUM|3.9-6.1||||F",
        "OBX|2|ED|PDF^Report||^application^pdf^Base64^JVBERi0xLjQK||||||F",
    )


@pytest.fixture
def siu_message() -> str:
    """SIU^S12 booking a 45 minute consultation."""
    return hl7(
        "MSH|^~\\&|HIS|HOSP|PFI|PHARMACIE|20240115090000||SIU^S12|MSG00003|P|2.5",
        "SCH|APT-100||||||ROUTINE^Suivi diabète|NORMAL|45|min|^^^202412151030||||||||||||||Booked",
        f"PID|1||{SAMPLE_INS}^^^INS||DUBOIS^JEAN||19800115|M",
    )


@pytest.fixture
def fhir_patient() -> Dict[str, Any]:
    """Compliant FHIR Patient."""
    return {
        "resourceType": "Patient",
        "id": f"pat-{SAMPLE_INS}",
        "identifier": [
            {"system": INS_SYSTEM, "value": SAMPLE_INS},
            {"system": "https://plincare.io/id/local", "value": "IPP-778"},
        ],
        "name": [{"use": "official", "family": "DUBOIS", "given": ["Jean"]}],
        "gender": "male",
        "birthDate": "1980-01-15",
    }


@pytest.fixture
def fhir_appointment() -> Dict[str, Any]:
    """Booked FHIR Appointment with a practitioner and a room."""
    return {
        "resourceType": "Appointment",
        "id": "apt-100",
        "status": "booked",
        "description": "Suivi diabète",
        "start": "2024-12-15T10:30:00Z",
        "end": "2024-12-15T11:15:00Z",
        "participant": [
            {"actor": {"reference": f"Patient/pat-{SAMPLE_INS}"}, "status": "accepted"},
            {"actor": {"reference": "Practitioner/dr-martin"}, "status": "accepted"},
            {"actor": {"reference": "Location/room-3"}, "status": "accepted"},
        ],
    }


@pytest.fixture
def fhir_report() -> Dict[str, Any]:
    """Final laboratory DiagnosticReport."""
    return {
        "resourceType": "DiagnosticReport",
        "id": "dr-RES-42",
        "status": "final",
        "code": {
            "coding": [
                {"system": "http://loinc.org", "code": "24331-1", "display": "Lipid panel"}
            ]
        },
        "subject": {"reference": f"Patient/pat-{SAMPLE_INS}"},
        "effectiveDateTime": "2024-01-15T10:30:00Z",
        "result": [{"reference": "Observation/obs-RES-42-0"}],
    }


@pytest.fixture
def fhir_observation() -> Dict[str, Any]:
    """Numeric glucose Observation in UCUM units."""
    return {
        "resourceType": "Observation",
        "id": "obs-RES-42-0",
        "status": "final",
        "code": {
            "coding": [
                {"system": "http://loinc.org", "code": "2339-0", "display": "Glucose"}
            ]
        },
        "subject": {"reference": f"Patient/pat-{SAMPLE_INS}"},
        "effectiveDateTime": "2024-01-15T10:30:00Z",
        "valueQuantity": {
            "value": 5.5,
            "unit": "mmol/L",
            "system": "http://unitsofmeasure.org",
            "code": "mmol/L",
        },
        "referenceRange": [
            {"low": {"value": 3.9, "unit": "mmol/L"}, "high": {"value": 6.1, "unit": "mmol/L"}}
        ],
    }


@pytest.fixture
def settings() -> Settings:
    """Settings for an ephemeral listener and no HIS endpoint."""
    return Settings(
        mllp_host="127.0.0.1",
        mllp_port=0,
        gateway_url="http://gateway.test",
        his_mllp_host=None,
        delivery_timeout_seconds=1.0,
        writeback_timeout_seconds=1.0,
    )
