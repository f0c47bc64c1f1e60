"""HL7 ORU Message Mapping.

This module maps ORU^R01 (unsolicited observation result) messages to a
FHIR DiagnosticReport with its Observations. Embedded documents (OBX value
type ``ED``) become DocumentReferences and are attached to the report's
presented form instead of producing an Observation.
"""

import re
from typing import Any, Dict, List, Optional

from plincare.healthcare.fhir_types import (
    FHIRAttachment,
    FHIRCodeableConcept,
    FHIRDiagnosticReport,
    FHIRDocumentReference,
    FHIRObservation,
    reference_to,
)
from plincare.healthcare.identifier_systems import LOINC_SYSTEM, UCUM_SYSTEM
from plincare.utils.logging import get_logger

from .adt_messages import ADTMessageHandler
from .hl7_message import HL7Field, HL7Message, HL7Segment, hl7_to_fhir_datetime

logger = get_logger(__name__)

# FHIR resource type for this module
__fhir_resource__ = "DiagnosticReport"

OBSERVATION_STATUS_MAP = {
    "F": "final",
    "P": "preliminary",
    "C": "corrected",
}

LABORATORY_REPORT_CODE = "11502-2"
PDF_ATTACHMENT_TITLE = "Compte-rendu PDF"

REFERENCE_RANGE_PATTERN = re.compile(
    r"^\s*(-?\d+(?:[.,]\d+)?)\s*-\s*(-?\d+(?:[.,]\d+)?)\s*$"
)


def map_coded_element(field: HL7Field, default_system: str = LOINC_SYSTEM) -> FHIRCodeableConcept:
    """Map a CE/CWE field (code^display^system) to a CodeableConcept."""
    if field.is_empty():
        return {"text": "Unknown"}
    system = LOINC_SYSTEM if field.component(3) == "LN" else default_system
    coding: Dict[str, str] = {"system": system, "code": field.component(1)}
    if field.component(2):
        coding["display"] = field.component(2)
    return {"coding": [coding]}


def _to_number(value: str) -> Optional[float]:
    try:
        return float(value.replace(",", "."))
    except ValueError:
        return None


class ORUMessageHandler:
    """Handler for ORU message types."""

    def __init__(self) -> None:
        """Initialize ORU message handler."""
        self.patient_handler = ADTMessageHandler()

    def map_message(self, message: HL7Message) -> List[Dict[str, Any]]:
        """Map an ORU message to FHIR resources.

        Args:
            message: Parsed HL7 message

        Returns:
            Patient, then Observations and DocumentReferences in OBX order,
            then the DiagnosticReport. Only the Patient when there is no OBR.
        """
        patient = self.patient_handler.map_patient(message)
        resources: List[Dict[str, Any]] = [dict(patient)]

        obr = message.get_segment("OBR")
        if obr is None:
            logger.warning("oru_without_obr", control_id=message.get_message_control_id())
            return resources

        subject = reference_to(patient)
        report = self._parse_obr_segment(obr, subject)
        report_id = report["id"][len("dr-"):]
        report_date = report.get("effectiveDateTime", "")

        for index, obx in enumerate(message.get_all_segments("OBX")):
            # OBX-2: Value type
            if obx.get_field(2).get_first_value() == "ED":
                document = self._parse_ed_segment(obx, report_id, index, subject, report)
                resources.append(dict(document))
                attachment = document["content"][0]["attachment"]
                report.setdefault("presentedForm", []).append(attachment)
            else:
                observation = self._parse_obx_segment(
                    obx, report_id, index, subject, report_date
                )
                resources.append(dict(observation))
                report["result"].append(reference_to(observation))

        resources.append(dict(report))
        return resources

    def _parse_obr_segment(
        self, obr: HL7Segment, subject: Dict[str, str]
    ) -> FHIRDiagnosticReport:
        """Parse OBR segment into the report shell.

        Args:
            obr: OBR segment
            subject: Reference to the Patient

        Returns:
            DiagnosticReport with an empty result list
        """
        # OBR-3: Filler order number, falling back to OBR-2 placer number
        report_id = obr.get_field(3).get_first_value() or obr.get_field(2).get_first_value()

        report: FHIRDiagnosticReport = {
            "resourceType": "DiagnosticReport",
            "id": f"dr-{report_id}",
            "status": "final",
            # OBR-4: Universal service identifier
            "code": map_coded_element(obr.get_field(4)),
            "subject": subject,
            "result": [],
        }

        # OBR-7: Observation date/time
        effective = hl7_to_fhir_datetime(obr.get_field(7).get_first_value())
        if effective:
            report["effectiveDateTime"] = effective
        return report

    def _parse_obx_segment(
        self,
        obx: HL7Segment,
        report_id: str,
        index: int,
        subject: Dict[str, str],
        report_date: str,
    ) -> FHIRObservation:
        """Parse OBX segment into an Observation.

        Args:
            obx: OBX segment
            report_id: Id of the owning report
            index: Position of the OBX in the message
            subject: Reference to the Patient
            report_date: Effective time inherited from the OBR

        Returns:
            Observation resource
        """
        value_type = obx.get_field(2).get_first_value()
        value_field = obx.get_field(5)

        observation: FHIRObservation = {
            "resourceType": "Observation",
            "id": f"obs-{report_id}-{index}",
            # OBX-11: Observation result status
            "status": OBSERVATION_STATUS_MAP.get(  # type: ignore[typeddict-item]
                obx.get_field(11).get_first_value(), "unknown"
            ),
            # OBX-3: Observation identifier
            "code": map_coded_element(obx.get_field(3)),
            "subject": subject,
        }
        if report_date:
            observation["effectiveDateTime"] = report_date

        # OBX-6: Units (code^text^system)
        unit_field = obx.get_field(6)
        unit_code = unit_field.component(1)
        unit = unit_field.component(2) or unit_code

        if value_type == "NM":
            number = _to_number(value_field.get_first_value())
            if number is None:
                logger.warning("oru_non_numeric_value", observation_id=observation["id"])
            else:
                quantity: Dict[str, Any] = {"value": number}
                if unit:
                    quantity["unit"] = unit
                if unit_field.component(3) == "UCUM":
                    quantity["system"] = UCUM_SYSTEM
                if unit_code:
                    quantity["code"] = unit_code
                observation["valueQuantity"] = quantity  # type: ignore[typeddict-item]
        elif value_type in ("ST", "TX"):
            observation["valueString"] = value_field.raw_value

        # OBX-7: Reference range (low-high)
        match = REFERENCE_RANGE_PATTERN.match(obx.get_field(7).get_first_value())
        if match:
            low, high = (_to_number(bound) for bound in match.groups())
            bounds: Dict[str, Any] = {}
            for key, bound in (("low", low), ("high", high)):
                entry: Dict[str, Any] = {"value": bound}
                if unit:
                    entry["unit"] = unit
                bounds[key] = entry
            observation["referenceRange"] = [bounds]

        return observation

    def _parse_ed_segment(
        self,
        obx: HL7Segment,
        report_id: str,
        index: int,
        subject: Dict[str, str],
        report: FHIRDiagnosticReport,
    ) -> FHIRDocumentReference:
        """Parse an ED-typed OBX into a DocumentReference."""
        value_field = obx.get_field(5)
        # ED: source^type^subtype^encoding^data
        attachment: FHIRAttachment = {
            "contentType": "application/pdf",
            "data": value_field.component(5) or value_field.raw_value,
            "title": PDF_ATTACHMENT_TITLE,
        }
        return {
            "resourceType": "DocumentReference",
            "id": f"doc-{report_id}-{index}",
            "status": "current",
            "subject": subject,
            "type": {
                "coding": [
                    {
                        "system": LOINC_SYSTEM,
                        "code": LABORATORY_REPORT_CODE,
                        "display": "Laboratory report",
                    }
                ]
            },
            "content": [{"attachment": attachment}],
            "context": {"related": [reference_to(report)]},
        }


def map_oru_to_resources(message: HL7Message) -> List[Dict[str, Any]]:
    """Map an ORU message to its FHIR resources."""
    return ORUMessageHandler().map_message(message)
