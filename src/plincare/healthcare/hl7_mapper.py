"""HL7 to FHIR Mapper.

This module dispatches inbound HL7 v2 messages to the mapper of their
message family and exposes the two mapping directions behind one facade.
"""

from typing import Any, Callable, Dict, List, Literal, Union

from plincare.utils.exceptions import DecodeError, UnsupportedMessageTypeError
from plincare.utils.logging import get_logger

from .hl7.adt_messages import map_adt_to_patient
from .hl7.hl7_message import HL7Message
from .hl7.hl7_message_types import MessageFamily
from .hl7.oru_messages import map_oru_to_resources
from .hl7.siu_messages import map_siu_to_resources
from .hl7.write_back import WriteBackAction, map_resource_to_outbound

logger = get_logger(__name__)

FamilyMapper = Callable[[HL7Message], List[Dict[str, Any]]]

FAMILY_MAPPERS: Dict[MessageFamily, FamilyMapper] = {
    MessageFamily.ADT: map_adt_to_patient,
    MessageFamily.ORU: map_oru_to_resources,
    MessageFamily.SIU: map_siu_to_resources,
}


def detect_message_family(message: HL7Message) -> MessageFamily:
    """Read MSH-9.1 and resolve the message family.

    Raises:
        DecodeError: If the message has no MSH segment
    """
    if message.get_segment("MSH") is None:
        raise DecodeError("MSH segment not found")
    return MessageFamily.from_message_code(message.get_message_code())


def map_hl7_to_fhir(raw: Union[str, HL7Message]) -> List[Dict[str, Any]]:
    """Decode one HL7 message into FHIR resources.

    Args:
        raw: Message text or an already parsed message

    Returns:
        Resources in emission order; the Patient always comes first

    Raises:
        DecodeError: If MSH or PID is missing
        UnsupportedMessageTypeError: If MSH-9 is not ADT, ORU or SIU
    """
    message = raw if isinstance(raw, HL7Message) else HL7Message(raw)
    family = detect_message_family(message)
    if family is MessageFamily.UNSUPPORTED:
        raise UnsupportedMessageTypeError(message.get_message_type() or "")

    resources = FAMILY_MAPPERS[family](message)
    logger.debug(
        "hl7_mapped",
        family=family.value,
        control_id=message.get_message_control_id(),
        resource_count=len(resources),
    )
    return resources


class HL7Mapper:
    """Maps HL7 v2 messages to and from FHIR resources."""

    # FHIR resource types this mapper handles
    FHIR_RESOURCE_TYPES: List[
        Literal[
            "Patient",
            "DiagnosticReport",
            "Observation",
            "DocumentReference",
            "Appointment",
            "Schedule",
            "Slot",
        ]
    ] = [
        "Patient",
        "DiagnosticReport",
        "Observation",
        "DocumentReference",
        "Appointment",
        "Schedule",
        "Slot",
    ]

    def __init__(
        self,
        sending_application: str = "PFI",
        sending_facility: str = "FACILITY",
        receiving_application: str = "HIS",
        receiving_facility: str = "RECEIVER",
    ) -> None:
        """Initialize the HL7 mapper.

        Args:
            sending_application: MSH-3 of outbound messages
            sending_facility: MSH-4 of outbound messages
            receiving_application: MSH-5 of outbound messages
            receiving_facility: MSH-6 of outbound messages
        """
        self.sending_application = sending_application
        self.sending_facility = sending_facility
        self.receiving_application = receiving_application
        self.receiving_facility = receiving_facility

    def from_hl7(self, hl7_message: Union[str, HL7Message]) -> List[Dict[str, Any]]:
        """Convert an HL7 message to FHIR resources.

        Args:
            hl7_message: HL7 formatted message

        Returns:
            FHIR resources
        """
        return map_hl7_to_fhir(hl7_message)

    def to_hl7(
        self,
        appointment: Dict[str, Any],
        patient: Dict[str, Any],
        action: Union[str, WriteBackAction] = WriteBackAction.CREATE,
    ) -> HL7Message:
        """Convert an Appointment to an outbound SIU message.

        Args:
            appointment: FHIR Appointment
            patient: FHIR Patient
            action: create, update or cancel

        Returns:
            SIU message

        Raises:
            ValueError: If the action is not a known write-back action
        """
        return map_resource_to_outbound(
            appointment,
            patient,
            WriteBackAction(action),
            sending_application=self.sending_application,
            sending_facility=self.sending_facility,
            receiving_application=self.receiving_application,
            receiving_facility=self.receiving_facility,
        )
