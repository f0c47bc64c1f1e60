"""HL7 ADT Message Mapping.

This module maps the patient identification of ADT (Admit, Discharge,
Transfer) messages to a FHIR Patient. The same PID mapping is reused by the
ORU and SIU mappers, which always carry the patient as well.
"""

import uuid
from typing import Any, Dict, List, Optional, Tuple

from plincare.healthcare.fhir_types import FHIRPatient
from plincare.healthcare.identifier_systems import (
    IDENTITY_STATUS_EXTENSION_URL,
    IDENTITY_STATUS_VALIDATED,
    build_ins_identifier,
    build_local_identifier,
    is_ins_authority,
    is_qualified_ins,
)
from plincare.utils.exceptions import DecodeError
from plincare.utils.logging import get_logger

from .hl7_message import HL7Message, HL7Segment, hl7_to_fhir_datetime

logger = get_logger(__name__)

# FHIR resource type for this module
__fhir_resource__ = "Patient"

# Namespace for ids of patients known only by a local identifier
LOCAL_PATIENT_NAMESPACE = uuid.UUID("6b1f7c3e-2a43-5d8e-9f10-3c7a1e5b9d21")

GENDER_MAP = {"M": "male", "F": "female"}


class ADTMessageHandler:
    """Handler for ADT message types."""

    def map_patient(self, message: HL7Message) -> FHIRPatient:
        """Map the PID segment of a message to a FHIR Patient.

        Args:
            message: Parsed HL7 message

        Returns:
            Patient resource

        Raises:
            DecodeError: If the message has no PID segment
        """
        pid = message.get_segment("PID")
        if pid is None:
            raise DecodeError("PID segment not found in HL7 message")
        return self._parse_pid_segment(pid)

    def _parse_identifiers(
        self, pid: HL7Segment
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Parse PID-3 into FHIR identifiers.

        Returns:
            The identifiers in wire order and the INS value, if one was sent
        """
        identifiers: List[Dict[str, Any]] = []
        ins_value: Optional[str] = None

        # PID-3: Patient identifier list, one entry per repetition
        for repetition in pid.get_field(3).repetitions():
            value = repetition.component(1)
            if not value:
                continue
            # PID-3.4: Assigning authority (label or OID)
            if is_ins_authority(repetition.component(4)):
                if ins_value is None:
                    ins_value = value
                identifiers.append(build_ins_identifier(value))
            else:
                identifiers.append(build_local_identifier(value))

        return identifiers, ins_value

    def _patient_id(
        self, pid: HL7Segment, identifiers: List[Dict[str, Any]], ins_value: Optional[str]
    ) -> str:
        if ins_value:
            return f"pat-{ins_value}"
        seed = "|".join(identifier["value"] for identifier in identifiers)
        if not seed:
            seed = pid.to_string()
        return f"pat-local-{uuid.uuid5(LOCAL_PATIENT_NAMESPACE, seed)}"

    def _parse_pid_segment(self, pid: HL7Segment) -> FHIRPatient:
        """Parse PID segment.

        Args:
            pid: PID segment

        Returns:
            Patient resource
        """
        identifiers, ins_value = self._parse_identifiers(pid)

        # PID-5: Patient name, family name upper-cased for the legal identity
        name_field = pid.get_field(5)
        family = name_field.component(1).upper()
        given = [part for part in name_field.component(2).split(" ") if part]

        patient: FHIRPatient = {
            "resourceType": "Patient",
            "id": self._patient_id(pid, identifiers, ins_value),
            "identifier": identifiers,
            "name": [{"use": "official", "family": family, "given": given}],
            # PID-8: Administrative sex
            "gender": GENDER_MAP.get(pid.get_field(8).get_first_value(), "other"),
        }

        # PID-7: Date of birth, date part only
        birth_date = hl7_to_fhir_datetime(pid.get_field(7).get_first_value()[:8])
        if birth_date:
            patient["birthDate"] = birth_date

        if is_qualified_ins(ins_value):
            patient["extension"] = [
                {
                    "url": IDENTITY_STATUS_EXTENSION_URL,
                    "valueCode": IDENTITY_STATUS_VALIDATED,
                }
            ]
        elif ins_value:
            logger.warning("adt_unqualified_ins", length=len(ins_value))

        return patient


def map_adt_to_patient(message: HL7Message) -> List[Dict[str, Any]]:
    """Map an ADT message to its single Patient resource."""
    return [dict(ADTMessageHandler().map_patient(message))]
