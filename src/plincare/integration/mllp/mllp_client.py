"""MLLP Client.

Sends write-back messages to the legacy HIS over MLLP and waits for its
acknowledgment. One connection per message; every step is bounded by the
configured timeout.
"""

import asyncio
import ssl
from typing import Optional, Union

from plincare.healthcare.hl7.hl7_message import HL7Message, decode_hl7_bytes
from plincare.healthcare.hl7.hl7_message_types import (
    MLLP_START_BLOCK,
    MLLP_TRAILER,
)
from plincare.healthcare.hl7.write_back import wrap_in_mllp
from plincare.utils.exceptions import DeliveryError, FramingError
from plincare.utils.logging import get_logger

logger = get_logger(__name__)


class MLLPClient:
    """Outbound MLLP sender."""

    def __init__(
        self,
        host: str,
        port: int,
        timeout: float = 5.0,
        ssl_context: Optional[ssl.SSLContext] = None,
    ):
        """Initialize the client.

        Args:
            host: Receiver host
            port: Receiver port
            timeout: Seconds allowed for connecting, sending and reading the ACK
            ssl_context: Optional TLS context
        """
        self.host = host
        self.port = port
        self.timeout = timeout
        self.ssl_context = ssl_context

    async def send(self, message: Union[HL7Message, bytes]) -> str:
        """Send one message and return the receiver's acknowledgment.

        Args:
            message: Message to frame, or an already framed payload

        Returns:
            ACK message text, envelope removed

        Raises:
            DeliveryError: If the receiver cannot be reached or times out
            FramingError: If the reply is not a complete MLLP frame
        """
        payload = wrap_in_mllp(message) if isinstance(message, HL7Message) else message

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, ssl=self.ssl_context),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise DeliveryError(
                f"Connection to {self.host}:{self.port} timed out after {self.timeout}s"
            ) from e
        except OSError as e:
            raise DeliveryError(f"Cannot connect to {self.host}:{self.port}: {e}") from e

        try:
            writer.write(payload)
            await asyncio.wait_for(writer.drain(), timeout=self.timeout)
            reply = await asyncio.wait_for(
                reader.readuntil(MLLP_TRAILER), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise DeliveryError(
                f"No acknowledgment from {self.host}:{self.port} within {self.timeout}s"
            ) from e
        except asyncio.IncompleteReadError as e:
            raise FramingError("Connection closed before the ACK frame completed") from e
        except ConnectionError as e:
            raise DeliveryError(f"Connection to {self.host}:{self.port} lost: {e}") from e
        finally:
            writer.close()

        start = reply.find(MLLP_START_BLOCK)
        if start < 0:
            raise FramingError("ACK frame has no start block")

        ack = decode_hl7_bytes(reply[start + len(MLLP_START_BLOCK) : -len(MLLP_TRAILER)])
        logger.info(
            "mllp_message_sent",
            host=self.host,
            port=self.port,
            length=len(payload),
        )
        return ack
