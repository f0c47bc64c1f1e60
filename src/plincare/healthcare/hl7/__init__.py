"""HL7 Module.

This module provides HL7 v2 message handling for the integration engine:
the segment codec, the inbound ADT/ORU/SIU mappers and the SIU write-back.
"""

from .adt_messages import ADTMessageHandler
from .hl7_message import HL7Message, HL7MessageBuilder, HL7Segment
from .hl7_message_types import (
    HL7EncodingCharacters,
    HL7Field,
    MessageFamily,
)
from .oru_messages import ORUMessageHandler
from .siu_messages import SIUMessageHandler
from .write_back import WriteBackAction, map_resource_to_outbound, wrap_in_mllp

# FHIR resource type for this module
__fhir_resource__ = "MessageHeader"

__all__ = [
    # Message handlers
    "ADTMessageHandler",
    "ORUMessageHandler",
    "SIUMessageHandler",
    # Core classes
    "HL7Message",
    "HL7MessageBuilder",
    "HL7Segment",
    "HL7Field",
    # Types and enums
    "HL7EncodingCharacters",
    "MessageFamily",
    # Write-back
    "WriteBackAction",
    "map_resource_to_outbound",
    "wrap_in_mllp",
]
