"""HL7 SIU Message Mapping.

This module maps SIU (scheduling information unsolicited) messages to a
FHIR Appointment with its Schedule and Slot, and holds the two-way table
between FHIR appointment statuses and HL7 filler status codes (SCH-25).
"""

import math
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from plincare.healthcare.fhir_types import (
    FHIRAppointment,
    FHIRSchedule,
    FHIRSlot,
    reference_to,
)
from plincare.utils.logging import get_logger

from .adt_messages import ADTMessageHandler
from .hl7_message import (
    HL7Message,
    HL7Segment,
    format_fhir_instant,
    hl7_to_fhir_datetime,
    parse_fhir_datetime,
)

logger = get_logger(__name__)

# FHIR resource type for this module
__fhir_resource__ = "Appointment"

DEFAULT_DURATION_MINUTES = 30
DEFAULT_DESCRIPTION = "Consultation"
DEFAULT_SCHEDULE_ACTOR = "Practitioner/example"

# Seconds per SCH-10 duration unit; an empty unit means minutes
DURATION_UNIT_SECONDS = {"s": 1, "sec": 1, "min": 60, "h": 3600, "hr": 3600, "d": 86400}


class AppointmentStatus(str, Enum):
    """FHIR Appointment status vocabulary."""

    PROPOSED = "proposed"
    PENDING = "pending"
    BOOKED = "booked"
    ARRIVED = "arrived"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    NOSHOW = "noshow"
    ENTERED_IN_ERROR = "entered-in-error"
    CHECKED_IN = "checked-in"
    WAITLIST = "waitlist"


class FillerStatus(str, Enum):
    """HL7 filler status codes (table 0278) used in SCH-25."""

    PENDING = "Pending"
    BOOKED = "Booked"
    ARRIVED = "Arrived"
    COMPLETE = "Complete"
    CANCELLED = "Cancelled"
    NOSHOW = "Noshow"
    DELETED = "Deleted"
    WAITLIST = "Waitlist"


# FHIR -> HL7. checked-in and arrived collapse onto Arrived.
FHIR_TO_HL7_STATUS: Dict[AppointmentStatus, FillerStatus] = {
    AppointmentStatus.PROPOSED: FillerStatus.PENDING,
    AppointmentStatus.PENDING: FillerStatus.PENDING,
    AppointmentStatus.BOOKED: FillerStatus.BOOKED,
    AppointmentStatus.ARRIVED: FillerStatus.ARRIVED,
    AppointmentStatus.FULFILLED: FillerStatus.COMPLETE,
    AppointmentStatus.CANCELLED: FillerStatus.CANCELLED,
    AppointmentStatus.NOSHOW: FillerStatus.NOSHOW,
    AppointmentStatus.ENTERED_IN_ERROR: FillerStatus.DELETED,
    AppointmentStatus.CHECKED_IN: FillerStatus.ARRIVED,
    AppointmentStatus.WAITLIST: FillerStatus.WAITLIST,
}

# HL7 -> FHIR. Arrived always reads back as arrived.
HL7_TO_FHIR_STATUS: Dict[FillerStatus, AppointmentStatus] = {
    FillerStatus.PENDING: AppointmentStatus.PENDING,
    FillerStatus.BOOKED: AppointmentStatus.BOOKED,
    FillerStatus.ARRIVED: AppointmentStatus.ARRIVED,
    FillerStatus.COMPLETE: AppointmentStatus.FULFILLED,
    FillerStatus.CANCELLED: AppointmentStatus.CANCELLED,
    FillerStatus.NOSHOW: AppointmentStatus.NOSHOW,
    FillerStatus.DELETED: AppointmentStatus.ENTERED_IN_ERROR,
    FillerStatus.WAITLIST: AppointmentStatus.WAITLIST,
}

_FILLER_STATUS_BY_LOWER = {status.value.lower(): status for status in FillerStatus}


def map_hl7_status_to_fhir(hl7_status: Optional[str]) -> str:
    """Map an SCH-25 filler status to a FHIR Appointment status.

    Matching is case-insensitive (``NoShow`` and ``Noshow`` are the same
    code). Unknown or absent codes read as ``booked``.
    """
    filler = _FILLER_STATUS_BY_LOWER.get((hl7_status or "").strip().lower())
    if filler is None:
        return AppointmentStatus.BOOKED.value
    return HL7_TO_FHIR_STATUS[filler].value


def map_fhir_status_to_hl7(fhir_status: Optional[str]) -> str:
    """Map a FHIR Appointment status to an SCH-25 filler status.

    Unknown or absent statuses write as ``Booked``.
    """
    try:
        status = AppointmentStatus(fhir_status)
    except ValueError:
        return FillerStatus.BOOKED.value
    return FHIR_TO_HL7_STATUS[status].value


def parse_duration_minutes(value: str, unit: str) -> int:
    """Appointment length in minutes from SCH-9 and its SCH-10 unit.

    A missing or non-numeric duration gives the default length. An empty or
    unknown unit is read as minutes; sub-minute remainders round up.

    Args:
        value: SCH-9 appointment duration
        unit: SCH-10 duration unit identifier (e.g. ``min``, ``h``)

    Returns:
        Duration in whole minutes
    """
    value = value.strip()
    if not value.isdecimal():
        return DEFAULT_DURATION_MINUTES

    unit_key = unit.strip().lower()
    if unit_key and unit_key not in DURATION_UNIT_SECONDS:
        logger.warning("siu_unknown_duration_unit", unit=unit_key)
    seconds = int(value) * DURATION_UNIT_SECONDS.get(unit_key, 60)
    return math.ceil(seconds / 60)


def add_minutes(start: str, minutes: int) -> str:
    """Add minutes to a FHIR dateTime; returns the input when unparseable."""
    parsed = parse_fhir_datetime(start)
    if parsed is None:
        return start
    return format_fhir_instant(parsed + timedelta(minutes=minutes))


class SIUMessageHandler:
    """Handler for SIU message types."""

    def __init__(self) -> None:
        """Initialize SIU message handler."""
        self.patient_handler = ADTMessageHandler()

    def map_message(self, message: HL7Message) -> List[Dict[str, Any]]:
        """Map an SIU message to FHIR resources.

        Args:
            message: Parsed HL7 message

        Returns:
            Patient, Schedule, Slot and Appointment, in that order. Only the
            Patient when there is no SCH segment.
        """
        patient = self.patient_handler.map_patient(message)
        resources: List[Dict[str, Any]] = [dict(patient)]

        sch = message.get_segment("SCH")
        if sch is None:
            logger.warning("siu_without_sch", control_id=message.get_message_control_id())
            return resources

        appointment = self._parse_sch_segment(sch, reference_to(patient))
        appointment_key = appointment["id"][len("apt-"):]

        schedule: FHIRSchedule = {
            "resourceType": "Schedule",
            "id": f"sch-{appointment_key}",
            "active": True,
            "actor": [{"reference": DEFAULT_SCHEDULE_ACTOR}],
        }
        slot: FHIRSlot = {
            "resourceType": "Slot",
            "id": f"slot-{appointment_key}",
            "schedule": reference_to(schedule),
            "status": "busy",
            "start": appointment["start"],
            "end": appointment["end"],
        }
        appointment["slot"] = [reference_to(slot)]

        resources.extend([dict(schedule), dict(slot), dict(appointment)])
        return resources

    def _parse_sch_segment(
        self, sch: HL7Segment, patient_reference: Dict[str, str]
    ) -> FHIRAppointment:
        """Parse SCH segment into an Appointment.

        Args:
            sch: SCH segment
            patient_reference: Reference to the Patient

        Returns:
            Appointment resource (without slot)
        """
        # SCH-1: Placer appointment id, SCH-2: Filler appointment id
        appointment_id = sch.get_field(1).component(1) or sch.get_field(2).component(1)
        if not appointment_id.startswith("apt-"):
            appointment_id = f"apt-{appointment_id}"

        # SCH-11: Timing quantity, start in component 4
        timing = sch.get_field(11)
        start = hl7_to_fhir_datetime(timing.component(4) or timing.raw_value)

        # SCH-9: Appointment duration, SCH-10: its unit
        duration = parse_duration_minutes(
            sch.get_field(9).get_first_value(), sch.get_field(10).component(1)
        )

        appointment: FHIRAppointment = {
            "resourceType": "Appointment",
            "id": appointment_id,
            # SCH-25: Filler status code
            "status": map_hl7_status_to_fhir(sch.get_field(25).get_first_value()),
            # SCH-7: Appointment reason
            "description": sch.get_field(7).component(2)
            or sch.get_field(7).component(1)
            or DEFAULT_DESCRIPTION,
            "start": start,
            "end": add_minutes(start, duration) if start else "",
            "minutesDuration": duration,
            "participant": [{"actor": patient_reference, "status": "accepted"}],
        }
        return appointment


def map_siu_to_resources(message: HL7Message) -> List[Dict[str, Any]]:
    """Map an SIU message to its FHIR resources."""
    return SIUMessageHandler().map_message(message)
