"""Custom exceptions for the Plincare integration engine."""

from typing import Optional


class PlincareException(Exception):
    """Base exception for all integration engine exceptions."""

    def __init__(self, message: str, code: Optional[str] = None):
        """Initialize exception.

        Args:
            message: Error message
            code: Optional error code
        """
        super().__init__(message)
        self.code = code


class FramingError(PlincareException):
    """Raised when an MLLP envelope is malformed or oversized.

    An incomplete envelope is not an error: the connection simply waits for
    more bytes.
    """

    def __init__(self, message: str = "Malformed MLLP frame"):
        """Initialize FramingError."""
        super().__init__(message, "FRAMING_ERROR")


class DecodeError(PlincareException):
    """Raised when an HL7 message cannot be mapped to FHIR resources."""

    def __init__(self, message: str = "HL7 message could not be decoded"):
        """Initialize DecodeError."""
        super().__init__(message, "DECODE_ERROR")


class UnsupportedMessageTypeError(DecodeError):
    """Raised when MSH-9 names a message family the engine does not map."""

    def __init__(self, message_type: str):
        """Initialize UnsupportedMessageTypeError."""
        super().__init__(f"Unsupported message type: {message_type}")
        self.code = "UNSUPPORTED_MESSAGE_TYPE"
        self.message_type = message_type


class ComplianceError(PlincareException):
    """Raised when a resource breaks a Ségur compliance rule."""

    def __init__(self, message: str, code: Optional[str] = "COMPLIANCE_ERROR"):
        """Initialize ComplianceError."""
        super().__init__(message, code)


class CDAGenerationError(ComplianceError):
    """Raised when CDA prerequisites are unmet; no document is produced."""

    def __init__(self, message: str, code: Optional[str] = "CDA_GENERATION_FATAL"):
        """Initialize CDAGenerationError."""
        super().__init__(message, code)


class DeliveryError(PlincareException):
    """Raised when a downstream call fails or times out."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        """Initialize DeliveryError."""
        super().__init__(message, "DELIVERY_ERROR")
        self.status_code = status_code
