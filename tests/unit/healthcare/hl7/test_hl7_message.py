"""Tests for the HL7 v2 segment codec."""

import pytest

from plincare.healthcare.hl7.hl7_message import (
    HL7Message,
    HL7MessageBuilder,
    HL7Segment,
    build_segment,
    create_ack_message,
    decode_hl7_bytes,
    escape_text,
    fhir_to_hl7_datetime,
    generate_control_id,
    hl7_to_fhir_datetime,
    parse_segments,
    segment_field,
)
from plincare.healthcare.hl7.hl7_message_types import (
    HL7EncodingCharacters,
    HL7Field,
    MessageFamily,
)


class TestHL7Field:
    """Test bounds-checked field access."""

    def test_components_and_subcomponents(self):
        """Components and subcomponents use HL7 numbering."""
        field = HL7Field("30^min&&UCUM^x")
        assert field.component(1) == "30"
        assert field.component(2) == "min&&UCUM"
        assert field.subcomponent(2, 1) == "min"
        assert field.subcomponent(2, 3) == "UCUM"

    def test_absent_positions_read_empty(self):
        """Positions the sender did not transmit read as empty strings."""
        field = HL7Field("A^B")
        assert field.component(7) == ""
        assert field.component(0) == ""
        assert field.subcomponent(1, 4) == ""
        assert field.get_value(repetition=3) == ""

    def test_repetitions(self):
        """Repetitions split on the repetition separator."""
        field = HL7Field("111^^^INS~222^^^HOSP")
        reps = field.repetitions()
        assert [rep.component(1) for rep in reps] == ["111", "222"]
        assert field.component(4, repetition=1) == "HOSP"

    def test_empty_field(self):
        """An empty field reports itself empty."""
        assert HL7Field("").is_empty()
        assert not HL7Field("x").is_empty()


class TestHL7Segment:
    """Test segment parsing and serialization."""

    def test_msh_field_numbering(self):
        """MSH-1 is the field separator so MSH-9 is the message type."""
        segment = HL7Segment.parse("MSH|^~\\&|HIS|HOSP|PFI|PH|20240115||ADT^A01|CTRL1|P|2.5")
        assert segment.get_value(1) == "|"
        assert segment.get_value(2) == "^~\\&"
        assert segment.get_value(3) == "HIS"
        assert segment.get_field(9).component(2) == "A01"
        assert segment.get_value(10) == "CTRL1"

    def test_msh_serializes_back_unchanged(self):
        """Parsing then serializing an MSH keeps the wire form."""
        raw = "MSH|^~\\&|HIS|HOSP|PFI|PH|20240115||ADT^A01|CTRL1|P|2.5"
        assert HL7Segment.parse(raw).to_string() == raw

    def test_missing_field_is_empty(self):
        """A field beyond the transmitted ones is empty, never an error."""
        segment = HL7Segment.parse("PID|1||123")
        assert segment.get_value(30) == ""
        assert segment.get_field(30).component(2) == ""

    def test_with_field_returns_new_segment(self):
        """Segments are immutable; with_field builds a copy."""
        original = HL7Segment.parse("PID|1||123")
        updated = original.with_field(5, "DOE^JOHN")
        assert original.get_value(5) == ""
        assert updated.get_value(5) == "DOE^JOHN"
        assert updated.to_string() == "PID|1||123||DOE^JOHN"

    def test_segment_field_components(self):
        """segment_field returns the components of the first repetition."""
        segment = HL7Segment.parse("PID|1||123^^^INS~456")
        assert segment_field(segment, 3) == ["123", "", "", "INS"]


class TestParseSegments:
    """Test message splitting."""

    def test_tolerates_line_feeds(self):
        """LF and CRLF terminators are accepted and empty records dropped."""
        raw = "MSH|^~\\&|A\r\nPID|1\n\nPV1|1\r"
        segments = parse_segments(raw)
        assert [s.segment_id for s in segments] == ["MSH", "PID", "PV1"]

    def test_custom_encoding_from_msh(self):
        """Encoding characters are read from MSH-2."""
        message = HL7Message("MSH#$~\\&#HIS#HOSP\rPID#1##123$$$INS")
        pid = message.get_segment("PID")
        assert pid.get_field(3).component(4) == "INS"


class TestBuildSegment:
    """Test segment construction."""

    def test_mapping_pads_gaps(self):
        """Unset positions between mapped fields become empty fields."""
        segment = build_segment("AIS", {1: "1", 4: "20241215", 7: "30"})
        assert segment.to_string() == "AIS|1|||20241215|||30"

    def test_sequence_none_values(self):
        """None values in a sequence become empty fields."""
        segment = build_segment("RGS", ["1", None, "A"])
        assert segment.to_string() == "RGS|1||A"


class TestHL7Message:
    """Test message-level accessors."""

    def test_message_type_accessors(self, adt_message):
        """Message code, trigger and control id come from MSH."""
        message = HL7Message(adt_message)
        assert message.get_message_code() == "ADT"
        assert message.get_trigger_event() == "A01"
        assert message.get_message_type() == "ADT^A01"
        assert message.get_message_control_id() == "MSG00001"
        assert MessageFamily.from_message_code(message.get_message_code()) is MessageFamily.ADT

    def test_without_msh(self):
        """Accessors degrade gracefully when MSH is missing."""
        message = HL7Message("PID|1||123")
        assert message.get_message_code() == ""
        assert message.get_message_control_id() is None

    def test_round_trip_text(self, oru_message):
        """Serialization reproduces the parsed text."""
        assert HL7Message(oru_message).to_string() == oru_message

    def test_latin1_charset(self):
        """MSH-18 8859/1 encodes and decodes as Latin-1."""
        builder = HL7MessageBuilder()
        builder.add_msh("PFI", "PH", "HIS", "HOSP", "ADT^A08", "C1", extra_fields={18: "8859/1"})
        builder.add_segment("PID", {1: "1", 5: "LEFÈVRE^Zoé"})
        payload = builder.build().encode()
        assert "È".encode("latin-1") in payload
        assert "È".encode("utf-8") not in payload
        assert "LEFÈVRE" in decode_hl7_bytes(payload)

    def test_utf8_default(self):
        """Without MSH-18 the message is UTF-8."""
        payload = "MSH|^~\\&|A\rPID|1||||MÜLLER".encode("utf-8")
        assert "MÜLLER" in decode_hl7_bytes(payload)


class TestHelpers:
    """Test conversion helpers."""

    def test_hl7_to_fhir_datetime(self):
        """Dates and date-times convert to FHIR forms."""
        assert hl7_to_fhir_datetime("19800115") == "1980-01-15"
        assert hl7_to_fhir_datetime("202412151030") == "2024-12-15T10:30:00Z"
        assert hl7_to_fhir_datetime("2024") == ""

    def test_fhir_to_hl7_datetime(self):
        """FHIR date-times compact to at most 14 characters."""
        assert fhir_to_hl7_datetime("2024-12-15T10:30:00Z") == "20241215103000"
        assert fhir_to_hl7_datetime("1980-01-15") == "19800115"
        assert fhir_to_hl7_datetime(None) == ""

    def test_escape_text(self):
        """Delimiters in free text are escaped."""
        assert escape_text("A|B^C&D~E") == "A\\F\\B\\S\\C\\T\\D\\R\\E"
        assert escape_text("a\\b") == "a\\E\\b"

    def test_control_id_shape(self):
        """Control ids carry the prefix and 20 hex characters."""
        control_id = generate_control_id("MSG")
        prefix, suffix = control_id.split("-")
        assert prefix == "MSG"
        assert len(suffix) == 20

    def test_encoding_string(self):
        """Default encoding characters render as ^~\\&."""
        assert HL7EncodingCharacters().get_encoding_string() == "^~\\&"


class TestAckMessage:
    """Test acknowledgment construction."""

    def test_header_only_ack(self, adt_message):
        """Default ACK is header only and echoes the control id."""
        ack = create_ack_message(HL7Message(adt_message), "PFI", "PHARMACIE")
        msh = ack.get_segment("MSH")
        assert len(ack.segments) == 1
        assert msh.get_value(3) == "PFI"
        assert msh.get_value(5) == "HIS"
        assert msh.get_value(6) == "HOSP"
        assert msh.get_value(9) == "ACK^A01"
        assert msh.get_value(10) == "MSG00001"
        assert msh.get_value(12) == "2.5"

    def test_ack_with_msa(self, adt_message):
        """An explicit code appends MSA."""
        ack = create_ack_message(HL7Message(adt_message), "PFI", "PH", ack_code="AE")
        msa = ack.get_segment("MSA")
        assert msa.to_string() == "MSA|AE|MSG00001"

    @pytest.mark.parametrize("raw", ["", "garbage without structure"])
    def test_ack_for_unparseable_input(self, raw):
        """An ACK is still produced when the original has no header."""
        ack = create_ack_message(HL7Message(raw), "PFI", "PH")
        assert ack.get_message_control_id().startswith("ACK-")
        assert ack.get_segment("MSH").get_value(9) == "ACK"
