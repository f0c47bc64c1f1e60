"""FHIR to HL7 Write-Back.

This module builds outbound SIU messages from a FHIR Appointment so that
scheduling changes made on the FHIR side reach the legacy HIS. The action
selects the trigger event: S12 (new), S13 (rescheduled) or S15 (cancelled).
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from plincare.healthcare.fhir_types import first_coding
from plincare.healthcare.identifier_systems import (
    find_ins_identifier,
    find_local_identifier,
)

from .hl7_message import (
    HL7Message,
    HL7MessageBuilder,
    HL7Segment,
    build_segment,
    escape_text,
    fhir_to_hl7_datetime,
    generate_control_id,
    parse_fhir_datetime,
)
from .hl7_message_types import MLLP_START_BLOCK, MLLP_TRAILER
from .siu_messages import DEFAULT_DESCRIPTION, DEFAULT_DURATION_MINUTES, map_fhir_status_to_hl7

# FHIR resource type for this module
__fhir_resource__ = "Appointment"

DURATION_UNITS = "min^^UCUM"
DEFAULT_EVENT_REASON = "ROUTINE^Routine appointment^HL70276"
DEFAULT_APPOINTMENT_TYPE = "ROUTINE"
DEFAULT_SERVICE_CODE = "CON"
DEFAULT_VISIT_NUMBER = "V1"
FILLER_IDENTIFIER_CODE = "FILL"


class WriteBackAction(str, Enum):
    """Write-back actions and the SIU event each one sends."""

    CREATE = "create"
    UPDATE = "update"
    CANCEL = "cancel"

    @property
    def event_type(self) -> str:
        """MSH-9 value for this action."""
        return SIU_EVENT_TYPES[self]


SIU_EVENT_TYPES: Dict[WriteBackAction, str] = {
    WriteBackAction.CREATE: "SIU^S12^SIU_S12",
    WriteBackAction.UPDATE: "SIU^S13^SIU_S12",
    WriteBackAction.CANCEL: "SIU^S15^SIU_S12",
}


def calculate_duration(appointment: Dict[str, Any]) -> int:
    """Appointment length in minutes.

    Uses ``minutesDuration`` when set, otherwise end minus start, otherwise
    the default of 30 minutes.
    """
    explicit = appointment.get("minutesDuration")
    if explicit:
        return int(explicit)
    start = parse_fhir_datetime(appointment.get("start"))
    end = parse_fhir_datetime(appointment.get("end"))
    if start and end:
        minutes = round((end - start).total_seconds() / 60)
        if minutes > 0:
            return minutes
    return DEFAULT_DURATION_MINUTES


def _event_reason(appointment: Dict[str, Any]) -> str:
    appointment_type = appointment.get("appointmentType")
    if not appointment_type:
        return DEFAULT_EVENT_REASON
    coding = first_coding(appointment_type)
    display = escape_text(coding.get("display") or "Appointment")
    return f"{coding.get('code', '')}^{display}^HL70276"


def _filler_id(appointment: Dict[str, Any]) -> str:
    for identifier in appointment.get("identifier") or []:
        if first_coding(identifier.get("type")).get("code") == FILLER_IDENTIFIER_CODE:
            return identifier.get("value", "")
    return ""


def build_schedule_segment(appointment: Dict[str, Any]) -> HL7Segment:
    """Build the SCH (schedule activity information) segment.

    Args:
        appointment: FHIR Appointment

    Returns:
        SCH segment with fields 1-11 and 25 populated
    """
    reason = (
        first_coding((appointment.get("reasonCode") or [{}])[0]).get("display")
        or appointment.get("description")
        or DEFAULT_DESCRIPTION
    )
    start = fhir_to_hl7_datetime(appointment.get("start"))
    end = fhir_to_hl7_datetime(appointment.get("end"))

    return build_segment(
        "SCH",
        {
            1: appointment.get("id") or generate_control_id("APT"),
            2: _filler_id(appointment),
            6: _event_reason(appointment),
            7: escape_text(reason),
            8: first_coding(appointment.get("appointmentType")).get("code")
            or DEFAULT_APPOINTMENT_TYPE,
            9: str(calculate_duration(appointment)),
            10: DURATION_UNITS,
            11: f"^^^{start}^{end}",
            25: map_fhir_status_to_hl7(appointment.get("status")),
        },
    )


def build_patient_segment(patient: Dict[str, Any]) -> HL7Segment:
    """Build the PID segment from a FHIR Patient."""
    identifiers = patient.get("identifier") or []
    ins = find_ins_identifier(identifiers)
    local = find_local_identifier(identifiers)
    local_value = local["value"] if local else patient.get("id", "")

    repetitions: List[str] = []
    if ins:
        repetitions.append(f"{ins['value']}^^^INS")
    if local_value:
        repetitions.append(f"{local_value}^^^LOCAL")

    name = (patient.get("name") or [{}])[0]
    family = escape_text(name.get("family") or "")
    given = escape_text(" ".join(name.get("given") or []))
    gender = {"male": "M", "female": "F"}.get(patient.get("gender", ""), "U")

    return build_segment(
        "PID",
        {
            1: "1",
            3: "~".join(repetitions),
            5: f"{family}^{given}",
            7: (patient.get("birthDate") or "").replace("-", ""),
            8: gender,
        },
    )


def _participant_id(appointment: Dict[str, Any], resource_type: str) -> Optional[str]:
    prefix = f"{resource_type}/"
    for participant in appointment.get("participant") or []:
        reference = (participant.get("actor") or {}).get("reference") or ""
        if reference.startswith(prefix):
            return reference[len(prefix):]
    return None


def map_resource_to_outbound(
    appointment: Dict[str, Any],
    patient: Dict[str, Any],
    action: WriteBackAction = WriteBackAction.CREATE,
    sending_application: str = "PFI",
    sending_facility: str = "FACILITY",
    receiving_application: str = "HIS",
    receiving_facility: str = "RECEIVER",
) -> HL7Message:
    """Build an outbound SIU message for an Appointment.

    ``cancel`` always writes ``Cancelled`` in SCH-25 and the AIS status,
    whatever status the appointment carries.

    Args:
        appointment: FHIR Appointment
        patient: FHIR Patient the appointment is for
        action: create, update or cancel
        sending_application: MSH-3
        sending_facility: MSH-4
        receiving_application: MSH-5
        receiving_facility: MSH-6

    Returns:
        SIU message: MSH, SCH, TQ1, PID, PV1, RGS, AIS, then AIL and AIP
        when the appointment has a Location or Practitioner participant
    """
    action = WriteBackAction(action)
    cancelling = action is WriteBackAction.CANCEL
    if cancelling:
        appointment = {**appointment, "status": "cancelled"}

    start = fhir_to_hl7_datetime(appointment.get("start"))
    end = fhir_to_hl7_datetime(appointment.get("end"))
    duration = str(calculate_duration(appointment))

    builder = HL7MessageBuilder()
    builder.add_msh(
        sending_application=sending_application,
        sending_facility=sending_facility,
        receiving_application=receiving_application,
        receiving_facility=receiving_facility,
        message_type=action.event_type,
        message_control_id=generate_control_id("MSG"),
        extra_fields={15: "AL", 16: "NE", 18: "8859/1"},
    )
    builder.message.add_segment(build_schedule_segment(appointment))
    builder.add_segment("TQ1", {1: "1", 6: f"{duration}^min&&UCUM", 7: start, 8: end})
    builder.message.add_segment(build_patient_segment(patient))
    builder.add_segment("PV1", {1: "1", 2: "O", 19: DEFAULT_VISIT_NUMBER})
    builder.add_segment("RGS", ["1", "A"])

    service = first_coding((appointment.get("serviceType") or [{}])[0])
    service_code = service.get("code") or DEFAULT_SERVICE_CODE
    service_display = escape_text(service.get("display") or DEFAULT_DESCRIPTION)
    builder.add_segment(
        "AIS",
        {
            1: "1",
            2: "A",
            3: f"{service_code}^{service_display}^L",
            4: start,
            7: duration,
            8: DURATION_UNITS,
            10: "Cancelled" if cancelling else "Confirmed",
        },
    )

    location_id = _participant_id(appointment, "Location")
    if location_id:
        builder.add_segment(
            "AIL",
            {1: "1", 2: "A", 3: f"{location_id}^ROOM^L", 6: start, 9: duration, 10: DURATION_UNITS},
        )

    practitioner_id = _participant_id(appointment, "Practitioner")
    if practitioner_id:
        builder.add_segment(
            "AIP",
            {1: "1", 2: "A", 3: f"{practitioner_id}^DOCTOR^L", 6: start, 9: duration, 10: DURATION_UNITS},
        )

    return builder.build()


def wrap_in_mllp(message: HL7Message) -> bytes:
    """Frame a message for the MLLP wire."""
    return MLLP_START_BLOCK + message.encode() + MLLP_TRAILER
