"""HL7 Message Implementation.

This module implements HL7 v2 segment parsing, serialization and message
building for the integration engine. Segments are immutable once built:
producers create new segments rather than editing existing ones.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .hl7_message_types import (
    DEFAULT_ENCODING,
    SEGMENT_TERMINATOR,
    HL7EncodingCharacters,
    HL7Field,
)

# FHIR resource type for this module
__fhir_resource__ = "MessageHeader"

FieldValues = Union[Sequence[Optional[str]], Mapping[int, Optional[str]]]


class HL7Segment:
    """Represents an HL7 segment.

    Field numbering follows HL7: ``get_field(1)`` is the first field after
    the segment tag. For ``MSH``, field 1 is the field separator itself and
    field 2 holds the encoding characters, so ``MSH-9`` is ``get_field(9)``.
    """

    __slots__ = ("segment_id", "_fields", "encoding")

    def __init__(
        self,
        segment_id: str,
        fields: Iterable[str] = (),
        encoding: HL7EncodingCharacters = DEFAULT_ENCODING,
    ):
        """Initialize HL7 segment.

        Args:
            segment_id: Three-character segment tag
            fields: Field values, starting at field 1
            encoding: Encoding characters
        """
        self.segment_id = segment_id
        self._fields: Tuple[str, ...] = tuple(fields)
        self.encoding = encoding

    @classmethod
    def parse(
        cls, segment_string: str, encoding: HL7EncodingCharacters = DEFAULT_ENCODING
    ) -> "HL7Segment":
        """Parse a raw segment line.

        Args:
            segment_string: Raw segment string
            encoding: Encoding characters

        Returns:
            Parsed segment
        """
        field_strings = segment_string.split(encoding.field_separator)
        segment_id = field_strings[0]
        values = field_strings[1:]

        # MSH-1 is the field separator itself
        if segment_id == "MSH":
            values = [encoding.field_separator] + values

        return cls(segment_id, values, encoding)

    @property
    def fields(self) -> Tuple[HL7Field, ...]:
        """All fields of the segment, starting at field 1."""
        return tuple(HL7Field(value, self.encoding) for value in self._fields)

    def __len__(self) -> int:
        """Number of fields present after the tag."""
        return len(self._fields)

    def get_field(self, field_number: int) -> HL7Field:
        """Get a field by number (1-based).

        Args:
            field_number: Field number (1-based)

        Returns:
            HL7Field, empty if the sender did not transmit it
        """
        index = field_number - 1
        if 0 <= index < len(self._fields):
            return HL7Field(self._fields[index], self.encoding)
        return HL7Field("", self.encoding)

    def get_value(self, field_number: int) -> str:
        """Get the raw value of a field, or an empty string."""
        return self.get_field(field_number).raw_value

    def with_field(self, field_number: int, value: str) -> "HL7Segment":
        """Return a copy of the segment with one field replaced.

        Args:
            field_number: Field number (1-based)
            value: New field value

        Returns:
            New segment; this one is left untouched
        """
        values = list(self._fields)
        while len(values) < field_number:
            values.append("")
        values[field_number - 1] = value
        return HL7Segment(self.segment_id, values, self.encoding)

    def to_string(self) -> str:
        """Convert segment back to HL7 string format."""
        values = list(self._fields)
        if self.segment_id == "MSH" and values:
            # MSH-1 is implied by the separator that follows the tag
            values = values[1:]
        return self.encoding.field_separator.join([self.segment_id] + values)

    def __eq__(self, other: object) -> bool:
        """Compare segments by their wire form."""
        if isinstance(other, HL7Segment):
            return self.to_string() == other.to_string()
        return NotImplemented

    def __hash__(self) -> int:
        """Hash by wire form."""
        return hash(self.to_string())

    def __repr__(self) -> str:
        """Return a debug representation."""
        return f"HL7Segment({self.to_string()!r})"


def _split_records(raw: str) -> List[str]:
    """Split raw message text into segment records, tolerating LF and CRLF."""
    normalized = raw.replace("\r\n", "\r").replace("\n", "\r")
    return [record for record in normalized.split(SEGMENT_TERMINATOR) if record.strip()]


def parse_segments(
    raw: str, encoding: Optional[HL7EncodingCharacters] = None
) -> List[HL7Segment]:
    """Parse raw message text into an ordered list of segments.

    Args:
        raw: Message text, segments separated by carriage returns
        encoding: Encoding characters; read from MSH when omitted

    Returns:
        Segments in wire order, empty records discarded
    """
    records = _split_records(raw)
    if encoding is None:
        msh_line = next((r for r in records if r.startswith("MSH")), "")
        encoding = HL7EncodingCharacters.from_msh(msh_line) if msh_line else DEFAULT_ENCODING
    return [HL7Segment.parse(record, encoding) for record in records]


def segment_field(segment: HL7Segment, index: int) -> List[str]:
    """Get the component list of the first repetition of a field."""
    return segment.get_field(index).components()


def build_segment(
    segment_id: str,
    fields: FieldValues,
    encoding: HL7EncodingCharacters = DEFAULT_ENCODING,
) -> HL7Segment:
    """Build a segment from field values.

    Args:
        segment_id: Segment tag
        fields: Either a sequence starting at field 1, or a mapping of field
            number to value. Omitted positions and ``None`` become empty
            fields.
        encoding: Encoding characters

    Returns:
        New segment
    """
    if isinstance(fields, Mapping):
        size = max(fields.keys(), default=0)
        values = [fields.get(number) or "" for number in range(1, size + 1)]
    else:
        values = [value or "" for value in fields]
    return HL7Segment(segment_id, values, encoding)


class HL7Message:
    """Represents a complete HL7 message."""

    def __init__(
        self,
        message_string: Optional[str] = None,
        segments: Optional[Iterable[HL7Segment]] = None,
        encoding: Optional[HL7EncodingCharacters] = None,
    ):
        """Initialize HL7 message.

        Args:
            message_string: Raw HL7 message string
            segments: Pre-built segments, used when no string is given
            encoding: Encoding characters (detected from MSH if not provided)
        """
        self.encoding = encoding or DEFAULT_ENCODING
        self.segments: List[HL7Segment] = list(segments or [])

        if message_string:
            self.parse(message_string)

    def parse(self, message_string: str) -> None:
        """Parse HL7 message string.

        Args:
            message_string: Raw HL7 message
        """
        records = _split_records(message_string)
        if records and records[0].startswith("MSH"):
            self.encoding = HL7EncodingCharacters.from_msh(records[0])
        self.segments = [HL7Segment.parse(record, self.encoding) for record in records]

    def get_segment(self, segment_type: str, index: int = 0) -> Optional[HL7Segment]:
        """Get a segment by type and index.

        Args:
            segment_type: Segment type (e.g., "PID")
            index: Segment index (0-based)

        Returns:
            HL7Segment or None
        """
        count = 0
        for segment in self.segments:
            if segment.segment_id == segment_type:
                if count == index:
                    return segment
                count += 1
        return None

    def get_all_segments(self, segment_type: str) -> List[HL7Segment]:
        """Get all segments of a type.

        Args:
            segment_type: Segment type

        Returns:
            List of segments
        """
        return [s for s in self.segments if s.segment_id == segment_type]

    def add_segment(self, segment: HL7Segment) -> None:
        """Add a segment to the message.

        Args:
            segment: Segment to add
        """
        self.segments.append(segment)

    def get_message_code(self) -> str:
        """Get the message code from MSH-9.1 (e.g. ``ADT``)."""
        msh = self.get_segment("MSH")
        return msh.get_field(9).component(1) if msh else ""

    def get_trigger_event(self) -> str:
        """Get the trigger event from MSH-9.2 (e.g. ``A01``)."""
        msh = self.get_segment("MSH")
        return msh.get_field(9).component(2) if msh else ""

    def get_message_type(self) -> Optional[str]:
        """Get the message type from MSH-9."""
        code = self.get_message_code()
        trigger = self.get_trigger_event()
        if code and trigger:
            return f"{code}^{trigger}"
        return code or None

    def get_message_control_id(self) -> Optional[str]:
        """Get message control ID from MSH-10."""
        msh = self.get_segment("MSH")
        if msh:
            return msh.get_field(10).get_first_value() or None
        return None

    def get_charset(self) -> str:
        """Python codec for the character set declared in MSH-18."""
        msh = self.get_segment("MSH")
        return charset_for(msh.get_value(18) if msh else "")

    def to_string(self) -> str:
        """Convert message to HL7 string format."""
        return SEGMENT_TERMINATOR.join(segment.to_string() for segment in self.segments)

    def encode(self) -> bytes:
        """Serialize the message to bytes in its declared character set."""
        return self.to_string().encode(self.get_charset(), errors="replace")

    def __len__(self) -> int:
        """Length of the serialized message in bytes."""
        return len(self.encode())


class HL7MessageBuilder:
    """Builder for creating HL7 messages."""

    def __init__(self, encoding: Optional[HL7EncodingCharacters] = None):
        """Initialize message builder.

        Args:
            encoding: Encoding characters to use
        """
        self.encoding = encoding or DEFAULT_ENCODING
        self.message = HL7Message(encoding=self.encoding)

    def add_msh(
        self,
        sending_application: str,
        sending_facility: str,
        receiving_application: str,
        receiving_facility: str,
        message_type: str,
        message_control_id: str,
        processing_id: str = "P",
        version_id: str = "2.5",
        timestamp: Optional[str] = None,
        extra_fields: Optional[Dict[int, str]] = None,
    ) -> "HL7MessageBuilder":
        """Add MSH segment.

        Args:
            sending_application: Sending application
            sending_facility: Sending facility
            receiving_application: Receiving application
            receiving_facility: Receiving facility
            message_type: Message type (e.g., "SIU^S12^SIU_S12")
            message_control_id: Unique message ID
            processing_id: Processing ID (P=Production, T=Test)
            version_id: HL7 version
            timestamp: MSH-7 value; current time when omitted
            extra_fields: Additional MSH fields by number (e.g. 15, 16, 18)

        Returns:
            Self for chaining
        """
        fields: Dict[int, Optional[str]] = {
            1: self.encoding.field_separator,
            2: self.encoding.get_encoding_string(),
            3: sending_application,
            4: sending_facility,
            5: receiving_application,
            6: receiving_facility,
            7: timestamp or current_hl7_timestamp(),
            9: message_type,
            10: message_control_id,
            11: processing_id,
            12: version_id,
        }
        fields.update(extra_fields or {})
        self.message.add_segment(build_segment("MSH", fields, self.encoding))
        return self

    def add_segment(self, segment_id: str, fields: FieldValues) -> "HL7MessageBuilder":
        """Add any segment from its field values.

        Args:
            segment_id: Segment tag
            fields: Field values (see ``build_segment``)

        Returns:
            Self for chaining
        """
        self.message.add_segment(build_segment(segment_id, fields, self.encoding))
        return self

    def build(self) -> HL7Message:
        """Build and return the message.

        Returns:
            Completed HL7Message
        """
        return self.message


# MSH-18 character set labels (HL7 table 0211)
HL7_CHARSETS = {
    "8859/1": "iso-8859-1",
    "8859/15": "iso-8859-15",
    "ASCII": "ascii",
    "UNICODE UTF-8": "utf-8",
}
DEFAULT_CHARSET = "utf-8"


def charset_for(label: str) -> str:
    """Map an MSH-18 label to a Python codec name."""
    return HL7_CHARSETS.get(label.strip().upper(), DEFAULT_CHARSET)


def decode_hl7_bytes(payload: bytes) -> str:
    """Decode a raw message using the character set its MSH-18 declares.

    Undecodable bytes are replaced rather than rejected.
    """
    header_end = payload.find(b"\r")
    header = payload[: header_end if header_end >= 0 else len(payload)]
    header_text = header.decode("ascii", errors="replace")
    fields = header_text.split(header_text[3]) if len(header_text) > 3 else []
    # fields[0] is the tag, so MSH-18 sits at index 17
    label = fields[17] if len(fields) > 17 else ""
    return payload.decode(charset_for(label), errors="replace")


def escape_text(value: str, encoding: HL7EncodingCharacters = DEFAULT_ENCODING) -> str:
    """Escape delimiter characters in free text (``\\F\\``, ``\\S\\``, ...)."""
    esc = encoding.escape_character
    replacements = [
        (encoding.escape_character, f"{esc}E{esc}"),
        (encoding.field_separator, f"{esc}F{esc}"),
        (encoding.component_separator, f"{esc}S{esc}"),
        (encoding.subcomponent_separator, f"{esc}T{esc}"),
        (encoding.repetition_separator, f"{esc}R{esc}"),
    ]
    for char, sequence in replacements:
        value = value.replace(char, sequence)
    return value


def current_hl7_timestamp() -> str:
    """Current UTC time in HL7 ``YYYYMMDDHHMMSS`` form."""
    return datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")


def generate_control_id(prefix: str = "MSG") -> str:
    """Generate a unique message control id."""
    return f"{prefix}-{uuid.uuid4().hex[:20].upper()}"


def hl7_to_fhir_datetime(hl7_date: str) -> str:
    """Convert an HL7 DTM value to a FHIR date or dateTime.

    ``YYYYMMDD`` becomes ``YYYY-MM-DD``; values with at least hour and
    minute become ``YYYY-MM-DDTHH:MM:00Z``. Shorter values read as empty.
    """
    if not hl7_date or len(hl7_date) < 8:
        return ""
    ymd = f"{hl7_date[0:4]}-{hl7_date[4:6]}-{hl7_date[6:8]}"
    if len(hl7_date) >= 12:
        return f"{ymd}T{hl7_date[8:10]}:{hl7_date[10:12]}:00Z"
    return ymd


def fhir_to_hl7_datetime(iso_date: Optional[str]) -> str:
    """Convert a FHIR date/dateTime to HL7 form (at most ``YYYYMMDDHHMMSS``)."""
    if not iso_date:
        return ""
    compact = "".join(ch for ch in iso_date if ch not in "-:TZ")
    return compact[:14]


def parse_fhir_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse a FHIR dateTime, returning None when absent or malformed."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_fhir_instant(value: datetime) -> str:
    """Format a datetime as a FHIR instant in UTC (``...T10:30:00Z``)."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def create_ack_message(
    original: HL7Message,
    sending_application: str,
    sending_facility: str,
    ack_code: Optional[str] = None,
    version_id: str = "2.5",
) -> HL7Message:
    """Create an acknowledgment message for an HL7 message.

    The header swaps sender and receiver and echoes the original control id.
    An MSA segment is appended only when ``ack_code`` is given (AA, AE, AR).

    Args:
        original: Message being acknowledged (may be empty if unparseable)
        sending_application: Our application name (MSH-3 of the ACK)
        sending_facility: Our facility name (MSH-4 of the ACK)
        ack_code: Optional MSA-1 acknowledgment code
        version_id: HL7 version

    Returns:
        ACK message
    """
    msh = original.get_segment("MSH")
    control_id = original.get_message_control_id() or generate_control_id("ACK")
    trigger = original.get_trigger_event()

    builder = HL7MessageBuilder()
    builder.add_msh(
        sending_application=sending_application,
        sending_facility=sending_facility,
        receiving_application=msh.get_value(3) if msh else "",
        receiving_facility=msh.get_value(4) if msh else "",
        message_type=f"ACK^{trigger}" if trigger else "ACK",
        message_control_id=control_id,
        version_id=version_id,
    )
    if ack_code:
        builder.add_segment("MSA", [ack_code, control_id])
    return builder.build()
