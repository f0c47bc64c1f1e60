"""HL7 v2 Messaging Types.

This module defines the encoding characters, the message families and the
MLLP envelope markers shared by the HL7 codec, the inbound
mapper and the write-back mapper.
"""

from enum import Enum
from typing import List


# MLLP envelope: <VT> message <FS><CR>
MLLP_START_BLOCK = b"\x0b"
MLLP_END_BLOCK = b"\x1c"
MLLP_CARRIAGE_RETURN = b"\x0d"
MLLP_TRAILER = MLLP_END_BLOCK + MLLP_CARRIAGE_RETURN

SEGMENT_TERMINATOR = "\r"


class MessageFamily(Enum):
    """Message families handled by the inbound mapper."""

    ADT = "ADT"  # Patient administration
    ORU = "ORU"  # Observation results
    SIU = "SIU"  # Scheduling
    UNSUPPORTED = "UNSUPPORTED"

    @classmethod
    def from_message_code(cls, message_code: str) -> "MessageFamily":
        """Resolve the family from the MSH-9 message code (e.g. ``ORU``)."""
        for family in cls:
            if family is not cls.UNSUPPORTED and message_code == family.value:
                return family
        return cls.UNSUPPORTED


class HL7EncodingCharacters:
    """HL7 encoding characters."""

    def __init__(
        self,
        field_separator: str = "|",
        component_separator: str = "^",
        repetition_separator: str = "~",
        escape_character: str = "\\",
        subcomponent_separator: str = "&",
    ):
        r"""Initialize encoding characters.

        Args:
            field_separator: Field separator (default |)
            component_separator: Component separator (default ^)
            repetition_separator: Repetition separator (default ~)
            escape_character: Escape character (default \\)
            subcomponent_separator: Subcomponent separator (default &)
        """
        self.field_separator = field_separator
        self.component_separator = component_separator
        self.repetition_separator = repetition_separator
        self.escape_character = escape_character
        self.subcomponent_separator = subcomponent_separator

    @classmethod
    def from_msh(cls, msh_line: str) -> "HL7EncodingCharacters":
        """Read the encoding characters declared by an MSH segment.

        Falls back to the defaults when the header is too short to carry
        them.
        """
        if len(msh_line) < 8 or not msh_line.startswith("MSH"):
            return cls()
        return cls(
            field_separator=msh_line[3],
            component_separator=msh_line[4],
            repetition_separator=msh_line[5],
            escape_character=msh_line[6],
            subcomponent_separator=msh_line[7],
        )

    def get_encoding_string(self) -> str:
        """Get the encoding characters string for MSH-2."""
        return (
            f"{self.component_separator}"
            f"{self.repetition_separator}"
            f"{self.escape_character}"
            f"{self.subcomponent_separator}"
        )


DEFAULT_ENCODING = HL7EncodingCharacters()


class HL7Field:
    """Read-only view of an HL7 field with repetitions and components.

    Accessors are bounds-checked: any position beyond what the sender
    transmitted reads as an empty string.
    """

    __slots__ = ("raw_value", "encoding")

    def __init__(self, value: str, encoding: HL7EncodingCharacters = DEFAULT_ENCODING):
        """Initialize HL7 field.

        Args:
            value: Field value
            encoding: Encoding characters
        """
        self.raw_value = value
        self.encoding = encoding

    def repetitions(self) -> List["HL7Field"]:
        """Split the field on the repetition separator."""
        return [
            HL7Field(repetition, self.encoding)
            for repetition in self.raw_value.split(self.encoding.repetition_separator)
        ]

    def components(self, repetition: int = 0) -> List[str]:
        """Get the component list of one repetition."""
        reps = self.raw_value.split(self.encoding.repetition_separator)
        if repetition >= len(reps):
            return [""]
        return reps[repetition].split(self.encoding.component_separator)

    def get_value(
        self, repetition: int = 0, component: int = 0, subcomponent: int = 0
    ) -> str:
        """Get a specific value from the field.

        Args:
            repetition: Repetition index (0-based)
            component: Component index (0-based)
            subcomponent: Subcomponent index (0-based)

        Returns:
            Value, or an empty string if not present
        """
        components = self.components(repetition)
        if component >= len(components):
            return ""
        subcomponents = components[component].split(
            self.encoding.subcomponent_separator
        )
        if subcomponent >= len(subcomponents):
            return ""
        return subcomponents[subcomponent]

    def component(self, number: int, repetition: int = 0) -> str:
        """Get a component by its HL7 number (1-based, as in ``PID-3.4``)."""
        if number < 1:
            return ""
        components = self.components(repetition)
        if number > len(components):
            return ""
        return components[number - 1]

    def subcomponent(self, component: int, number: int, repetition: int = 0) -> str:
        """Get a sub-component by HL7 numbers (both 1-based)."""
        if component < 1 or number < 1:
            return ""
        return self.get_value(repetition, component - 1, number - 1)

    def get_first_value(self) -> str:
        """Get the first value from the field."""
        return self.get_value(0, 0, 0)

    def is_empty(self) -> bool:
        """Check whether the field carries no data at all."""
        return self.raw_value == ""

    def to_string(self) -> str:
        """Convert field back to HL7 string format."""
        return self.raw_value

    def __eq__(self, other: object) -> bool:
        """Compare fields by their wire value."""
        if isinstance(other, HL7Field):
            return self.raw_value == other.raw_value
        return NotImplemented

    def __hash__(self) -> int:
        """Hash by wire value."""
        return hash(self.raw_value)

    def __repr__(self) -> str:
        """Return a debug representation."""
        return f"HL7Field({self.raw_value!r})"
