"""MLLP Listener.

Accepts HL7 v2 messages over MLLP, maps each frame to FHIR resources, runs
the Ségur compliance checks, forwards the resources to the FHIR gateway and
answers every frame with an ACK.

Every connection owns its own frame buffer; frames of one connection are
processed strictly in arrival order.
"""

import asyncio
import ssl
from typing import Any, Callable, Dict, List, Optional, Set

from plincare.config import Settings, get_settings
from plincare.healthcare.hl7.hl7_message import (
    HL7Message,
    create_ack_message,
    decode_hl7_bytes,
)
from plincare.healthcare.hl7.hl7_message_types import MLLP_START_BLOCK, MLLP_TRAILER
from plincare.healthcare.hl7.write_back import wrap_in_mllp
from plincare.healthcare.hl7_mapper import map_hl7_to_fhir
from plincare.healthcare.validation import (
    ComplianceResult,
    validate_diagnostic_report,
    validate_patient,
    validate_resource_semantics,
)
from plincare.integration.fhir_gateway_client import FHIRGatewayClient
from plincare.utils.exceptions import DecodeError, DeliveryError
from plincare.utils.logging import audit_logger, get_logger

logger = get_logger(__name__)

ACTOR_ID = "MLLP_ADAPTER"

Validator = Callable[[Dict[str, Any]], ComplianceResult]

# Compliance checks run on each decoded resource, by resource type
RESOURCE_VALIDATORS: Dict[str, List[Validator]] = {
    "Patient": [validate_patient],
    "DiagnosticReport": [validate_diagnostic_report, validate_resource_semantics],
    "Observation": [validate_resource_semantics],
}


class MLLPFrameBuffer:
    """Accumulates bytes from one connection and yields complete frames.

    Bytes received before a start block are discarded. A frame whose end
    block has not arrived yet stays in the buffer until more bytes come in,
    unless it grows beyond ``max_frame_size``, in which case it is dropped.
    """

    def __init__(self, max_frame_size: int = 10 * 1024 * 1024):
        """Initialize the buffer.

        Args:
            max_frame_size: Largest frame, in bytes, held while waiting for
                its end block
        """
        self.max_frame_size = max_frame_size
        self._buffer = bytearray()

    def __len__(self) -> int:
        """Number of bytes currently held."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> List[str]:
        """Append received bytes and extract every complete frame.

        Args:
            chunk: Bytes read from the socket

        Returns:
            Decoded messages, in arrival order, without their envelope
        """
        self._buffer.extend(chunk)
        frames: List[str] = []

        while self._buffer:
            start = self._buffer.find(MLLP_START_BLOCK)
            if start < 0:
                logger.debug("mllp_bytes_discarded", length=len(self._buffer))
                self._buffer.clear()
                break
            if start > 0:
                logger.debug("mllp_bytes_discarded", length=start)
                del self._buffer[:start]

            end = self._buffer.find(MLLP_TRAILER, len(MLLP_START_BLOCK))
            if end < 0:
                if len(self._buffer) > self.max_frame_size:
                    logger.warning(
                        "mllp_frame_oversized",
                        length=len(self._buffer),
                        max_frame_size=self.max_frame_size,
                    )
                    self._buffer.clear()
                break

            payload = bytes(self._buffer[len(MLLP_START_BLOCK) : end])
            del self._buffer[: end + len(MLLP_TRAILER)]
            frames.append(decode_hl7_bytes(payload))

        return frames


class MLLPConnectionHandler:
    """Serves one MLLP connection."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        gateway_client: FHIRGatewayClient,
        settings: Optional[Settings] = None,
    ):
        """Initialize the handler.

        Args:
            reader: Stream of the accepted connection
            writer: Stream of the accepted connection
            gateway_client: Shared client used to deliver resources
            settings: Engine settings
        """
        self.reader = reader
        self.writer = writer
        self.gateway_client = gateway_client
        self.settings = settings or get_settings()
        self.buffer = MLLPFrameBuffer(self.settings.mllp_max_frame_size)
        self.peer = writer.get_extra_info("peername")
        self.frame_count = 0
        self._pending: Set["asyncio.Task[None]"] = set()

    async def handle(self) -> None:
        """Read until the peer closes the connection, acknowledging each frame."""
        logger.info("mllp_connection_opened", peer=str(self.peer))
        try:
            while True:
                chunk = await self.reader.read(self.settings.mllp_read_chunk_size)
                if not chunk:
                    break
                for message in self.buffer.feed(chunk):
                    ack = await self.process_frame(message)
                    self.writer.write(ack)
                    await self.writer.drain()
        except ConnectionError as e:
            logger.warning("mllp_connection_error", peer=str(self.peer), error=str(e))
        finally:
            self.cancel_pending()
            await self._close_writer()
            logger.info(
                "mllp_connection_closed",
                peer=str(self.peer),
                frame_count=self.frame_count,
                pending_bytes=len(self.buffer),
            )

    async def process_frame(self, message: str) -> bytes:
        """Map, check and deliver one message, then build its ACK.

        Decoding problems never close the connection: the sender still gets
        an acknowledgment, and no resource is forwarded.

        Args:
            message: Message text, envelope already removed

        Returns:
            The framed ACK to write back to the sender
        """
        self.frame_count += 1
        parsed = HL7Message(message)
        control_id = parsed.get_message_control_id() or ""

        audit_logger.log(
            ACTOR_ID,
            "RECEIVE",
            control_id,
            "HL7_MESSAGE",
            "success",
            {"message_type": parsed.get_message_type(), "length": len(message)},
        )

        decode_failed = False
        resources: List[Dict[str, Any]] = []
        try:
            resources = map_hl7_to_fhir(parsed)
        except DecodeError as e:
            decode_failed = True
            # Raw content may carry PHI: only its size is logged
            logger.warning(
                "hl7_decode_failed",
                error_code=e.code,
                error=str(e),
                length=len(message),
            )
            audit_logger.log(
                ACTOR_ID,
                "TRANSFORM",
                control_id,
                "HL7_MESSAGE",
                "failure",
                {"error_code": e.code},
            )
        except Exception as e:
            # A mapping fault in one frame must not cost the connection its ACKs
            decode_failed = True
            logger.error(
                "hl7_mapping_failed",
                error_type=type(e).__name__,
                error=str(e),
                length=len(message),
            )
            audit_logger.log(
                ACTOR_ID,
                "TRANSFORM",
                control_id,
                "HL7_MESSAGE",
                "failure",
                {"error_code": "MAPPING_ERROR"},
            )
        else:
            audit_logger.log(
                ACTOR_ID,
                "TRANSFORM",
                control_id,
                "HL7_MESSAGE",
                "success",
                {"resource_count": len(resources)},
            )

        for resource in resources:
            self._check_compliance(resource)

        if resources:
            task = asyncio.create_task(self._deliver_all(resources))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            await task

        ack = create_ack_message(
            parsed,
            self.settings.sending_application,
            self.settings.sending_facility,
            ack_code=self._ack_code(decode_failed),
            version_id=self.settings.hl7_version,
        )
        logger.info(
            "mllp_frame_processed",
            control_id=control_id,
            resource_count=len(resources),
            decode_failed=decode_failed,
        )
        return wrap_in_mllp(ack)

    def cancel_pending(self) -> None:
        """Cancel deliveries still running for this connection."""
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

    def _ack_code(self, decode_failed: bool) -> Optional[str]:
        if decode_failed and self.settings.mllp_negative_ack_on_error:
            return "AE"
        if self.settings.mllp_ack_include_msa:
            return "AA"
        return None

    def _check_compliance(self, resource: Dict[str, Any]) -> None:
        """Run the compliance checks of a resource; failures do not stop it."""
        resource_type = resource.get("resourceType", "")
        resource_id = resource.get("id", "")

        for validator in RESOURCE_VALIDATORS.get(resource_type, []):
            result = validator(resource)
            if result.valid:
                if result.warnings:
                    logger.info(
                        "compliance_warnings",
                        resource_type=resource_type,
                        resource_id=resource_id,
                        warnings=result.warnings,
                    )
                outcome = "success"
            else:
                logger.warning(
                    "compliance_check_failed",
                    resource_type=resource_type,
                    resource_id=resource_id,
                    error_code=result.error_code,
                    error=result.error,
                )
                outcome = "failure"

            audit_logger.log(
                ACTOR_ID,
                "VALIDATE",
                resource_id,
                f"FHIR_{resource_type.upper()}",
                outcome,
                result.to_dict(),
            )

    async def _deliver_all(self, resources: List[Dict[str, Any]]) -> None:
        """Deliver resources in emission order so references resolve."""
        for resource in resources:
            resource_type = resource.get("resourceType", "")
            resource_id = resource.get("id", "")
            try:
                status_code = await self.gateway_client.deliver(resource)
            except DeliveryError as e:
                logger.error(
                    "resource_delivery_failed",
                    resource_type=resource_type,
                    resource_id=resource_id,
                    status_code=e.status_code,
                    error=str(e),
                )
                audit_logger.log(
                    ACTOR_ID,
                    "DELIVER",
                    resource_id,
                    f"FHIR_{resource_type.upper()}",
                    "failure",
                    {"status_code": e.status_code},
                )
            else:
                audit_logger.log(
                    ACTOR_ID,
                    "DELIVER",
                    resource_id,
                    f"FHIR_{resource_type.upper()}",
                    "success",
                    {"status_code": status_code},
                )

    async def _close_writer(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except ConnectionError as e:
            logger.debug("mllp_close_error", peer=str(self.peer), error=str(e))


class MLLPServer:
    """Asyncio MLLP listener; one handler per accepted connection."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        gateway_client: Optional[FHIRGatewayClient] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
    ):
        """Initialize the listener.

        Args:
            settings: Engine settings (host, port, limits, ACK options)
            gateway_client: Client shared by all connections; built from
                settings when omitted
            ssl_context: Optional TLS context handed to the transport as is
        """
        self.settings = settings or get_settings()
        self._owns_client = gateway_client is None
        self.gateway_client = gateway_client or FHIRGatewayClient(
            self.settings.gateway_url,
            timeout=self.settings.delivery_timeout_seconds,
        )
        self.ssl_context = ssl_context
        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Set["asyncio.Task[Any]"] = set()

    @property
    def port(self) -> int:
        """Port actually bound, useful when listening on port 0."""
        if self._server is None or not self._server.sockets:
            return self.settings.mllp_port
        port: int = self._server.sockets[0].getsockname()[1]
        return port

    async def _on_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._connections.add(task)
        try:
            handler = MLLPConnectionHandler(
                reader, writer, self.gateway_client, self.settings
            )
            await handler.handle()
        finally:
            if task is not None:
                self._connections.discard(task)

    async def start(self) -> None:
        """Bind the listening socket."""
        self._server = await asyncio.start_server(
            self._on_connection,
            host=self.settings.mllp_host,
            port=self.settings.mllp_port,
            ssl=self.ssl_context,
        )
        logger.info(
            "mllp_server_started",
            host=self.settings.mllp_host,
            port=self.port,
            tls=self.ssl_context is not None,
        )

    async def serve_forever(self) -> None:
        """Start if needed and accept connections until cancelled."""
        if self._server is None:
            await self.start()
        assert self._server is not None
        await self._server.serve_forever()

    async def stop(self) -> None:
        """Stop accepting, close open connections and release the client."""
        if self._server is not None:
            self._server.close()
            for task in list(self._connections):
                task.cancel()
            if self._connections:
                await asyncio.gather(*self._connections, return_exceptions=True)
            await self._server.wait_closed()
            self._server = None
        if self._owns_client:
            await self.gateway_client.close()
        logger.info("mllp_server_stopped")


def build_ssl_context(settings: Settings) -> Optional[ssl.SSLContext]:
    """Build the listener TLS context from the configured certificate pair."""
    if not settings.mllp_tls_enabled:
        return None
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.load_cert_chain(settings.mllp_ssl_certfile, settings.mllp_ssl_keyfile)
    return context
