"""Tests for MLLP framing, per-connection processing and the listener."""

import asyncio
import json
from typing import List, Optional

import httpx
import pytest

from plincare.healthcare.hl7.hl7_message import HL7Message
from plincare.healthcare.hl7.hl7_message_types import MLLP_START_BLOCK, MLLP_TRAILER
from plincare.integration.fhir_gateway_client import FHIRGatewayClient
from plincare.integration.mllp import (
    MLLPClient,
    MLLPConnectionHandler,
    MLLPFrameBuffer,
    MLLPServer,
    mllp_server,
)

from tests.conftest import hl7


def frame(message: str) -> bytes:
    """Wrap message text in an MLLP envelope."""
    return MLLP_START_BLOCK + message.encode("utf-8") + MLLP_TRAILER


def unframe_all(payload: bytes) -> List[str]:
    """Split written bytes back into ACK texts."""
    return [
        chunk[len(MLLP_START_BLOCK) :].decode("utf-8")
        for chunk in payload.split(MLLP_TRAILER)
        if chunk
    ]


class RecordingGateway:
    """In-process gateway recording the resources it receives."""

    def __init__(self, status_code: int = 201):
        """Initialize with the status code to answer."""
        self.status_code = status_code
        self.received: List[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        """Record the resource and answer."""
        self.received.append(json.loads(request.content))
        return httpx.Response(self.status_code)

    def client(self) -> FHIRGatewayClient:
        """Gateway client routed to this recorder."""
        return FHIRGatewayClient(
            "http://gateway.test", timeout=1.0, transport=httpx.MockTransport(self)
        )

    @property
    def resource_types(self) -> List[str]:
        """Types of the received resources, in arrival order."""
        return [resource["resourceType"] for resource in self.received]


class FakeWriter:
    """Collects what the handler writes."""

    def __init__(self):
        """Initialize an open writer."""
        self.data = bytearray()
        self.closed = False

    def get_extra_info(self, name: str, default: Optional[object] = None):
        """Peer address of the fake connection."""
        return ("127.0.0.1", 50000) if name == "peername" else default

    def write(self, data: bytes) -> None:
        """Collect bytes."""
        self.data.extend(data)

    async def drain(self) -> None:
        """Nothing to flush."""

    def close(self) -> None:
        """Mark closed."""
        self.closed = True

    async def wait_closed(self) -> None:
        """Nothing to wait for."""


def make_handler(settings, gateway, chunks=()):
    """Handler over an in-memory stream fed with the given chunks."""
    reader = asyncio.StreamReader()
    for chunk in chunks:
        reader.feed_data(chunk)
    reader.feed_eof()
    return MLLPConnectionHandler(reader, FakeWriter(), gateway.client(), settings)


class TestMLLPFrameBuffer:
    """Test frame extraction."""

    def test_single_frame(self):
        """One complete frame is returned without its envelope."""
        buffer = MLLPFrameBuffer()
        assert buffer.feed(frame("MSH|^~\\&|A")) == ["MSH|^~\\&|A"]
        assert len(buffer) == 0

    def test_several_frames_in_one_read(self):
        """Frames arriving together are returned in order."""
        buffer = MLLPFrameBuffer()
        payload = frame("MSH|^~\\&|ONE") + frame("MSH|^~\\&|TWO") + frame("MSH|^~\\&|THREE")
        assert buffer.feed(payload) == ["MSH|^~\\&|ONE", "MSH|^~\\&|TWO", "MSH|^~\\&|THREE"]

    def test_frame_split_across_reads(self):
        """A frame delivered byte by byte is returned once complete."""
        buffer = MLLPFrameBuffer()
        payload = frame("MSH|^~\\&|SPLIT")
        frames = []
        for index in range(len(payload)):
            frames.extend(buffer.feed(payload[index : index + 1]))
        assert frames == ["MSH|^~\\&|SPLIT"]

    def test_trailer_split_across_reads(self):
        """FS alone does not end a frame; FS CR does."""
        buffer = MLLPFrameBuffer()
        payload = frame("MSH|^~\\&|X")
        assert buffer.feed(payload[:-1]) == []
        assert buffer.feed(payload[-1:]) == ["MSH|^~\\&|X"]

    def test_partial_then_complete_with_next(self):
        """The remainder of a read is kept for the next frame."""
        buffer = MLLPFrameBuffer()
        first, second = frame("MSH|^~\\&|A"), frame("MSH|^~\\&|B")
        assert buffer.feed(first + second[:5]) == ["MSH|^~\\&|A"]
        assert buffer.feed(second[5:]) == ["MSH|^~\\&|B"]

    def test_bytes_before_start_block_discarded(self):
        """Noise before VT is dropped."""
        buffer = MLLPFrameBuffer()
        assert buffer.feed(b"noise" + frame("MSH|^~\\&|A")) == ["MSH|^~\\&|A"]
        assert buffer.feed(b"trailing noise") == []
        assert len(buffer) == 0

    def test_oversized_frame_dropped(self):
        """A frame growing past the limit is dropped, later frames still work."""
        buffer = MLLPFrameBuffer(max_frame_size=16)
        assert buffer.feed(MLLP_START_BLOCK + b"x" * 32) == []
        assert len(buffer) == 0
        assert buffer.feed(frame("MSH|^~\\&|A")) == ["MSH|^~\\&|A"]


class TestMLLPConnectionHandler:
    """Test per-frame processing."""

    @pytest.mark.asyncio
    async def test_adt_ack_and_delivery(self, settings, adt_message):
        """A decoded message is delivered and acknowledged with its control id."""
        gateway = RecordingGateway()
        handler = make_handler(settings, gateway)

        ack_frame = await handler.process_frame(adt_message)

        assert ack_frame.startswith(MLLP_START_BLOCK)
        assert ack_frame.endswith(MLLP_TRAILER)
        ack = HL7Message(unframe_all(ack_frame)[0])
        msh = ack.get_segment("MSH")
        assert msh.get_value(3) == settings.sending_application
        assert msh.get_value(5) == "HIS"
        assert msh.get_value(9) == "ACK^A01"
        assert msh.get_value(10) == "MSG00001"
        assert ack.get_segment("MSA") is None
        assert gateway.resource_types == ["Patient"]

    @pytest.mark.asyncio
    async def test_oru_delivery_order(self, settings, oru_message):
        """Resources are delivered in emission order, patient first."""
        gateway = RecordingGateway()
        handler = make_handler(settings, gateway)

        await handler.process_frame(oru_message)

        assert gateway.resource_types == [
            "Patient",
            "Observation",
            "DocumentReference",
            "DiagnosticReport",
        ]

    @pytest.mark.asyncio
    async def test_non_compliant_resources_still_delivered(self, settings):
        """Compliance failures are reported but do not stop delivery."""
        gateway = RecordingGateway()
        handler = make_handler(settings, gateway)
        message = hl7(
            "MSH|^~\\&|HIS|HOSP|PFI|PH|20240115||ADT^A08|C9|P|2.5",
            "PID|1||IPP-9^^^HOSP||Martin^Paul",
        )

        await handler.process_frame(message)

        assert gateway.resource_types == ["Patient"]

    @pytest.mark.asyncio
    async def test_unsupported_message_still_acknowledged(self, settings):
        """Undecodable messages get a positive ACK and deliver nothing."""
        gateway = RecordingGateway()
        handler = make_handler(settings, gateway)
        message = hl7("MSH|^~\\&|HIS|HOSP|PFI|PH|20240115||MDM^T02|C10|P|2.5", "PID|1")

        ack = HL7Message(unframe_all(await handler.process_frame(message))[0])

        assert ack.get_message_control_id() == "C10"
        assert ack.get_segment("MSA") is None
        assert gateway.received == []

    @pytest.mark.asyncio
    async def test_negative_ack_opt_in(self, settings):
        """With negative ACKs enabled, decode failures answer AE."""
        settings.mllp_negative_ack_on_error = True
        handler = make_handler(settings, RecordingGateway())
        message = hl7("MSH|^~\\&|HIS|HOSP|PFI|PH|20240115||ADT^A01|C11|P|2.5", "EVN|A01")

        ack = HL7Message(unframe_all(await handler.process_frame(message))[0])

        assert ack.get_segment("MSA").to_string() == "MSA|AE|C11"

    @pytest.mark.asyncio
    async def test_positive_msa_opt_in(self, settings, adt_message):
        """With MSA enabled, successful frames answer AA."""
        settings.mllp_ack_include_msa = True
        handler = make_handler(settings, RecordingGateway())

        ack = HL7Message(unframe_all(await handler.process_frame(adt_message))[0])

        assert ack.get_segment("MSA").to_string() == "MSA|AA|MSG00001"

    @pytest.mark.asyncio
    async def test_delivery_failure_does_not_block_ack(self, settings, adt_message):
        """Gateway errors are contained; the sender is still acknowledged."""
        gateway = RecordingGateway(status_code=500)
        handler = make_handler(settings, gateway)

        ack = HL7Message(unframe_all(await handler.process_frame(adt_message))[0])

        assert ack.get_message_control_id() == "MSG00001"
        assert gateway.resource_types == ["Patient"]

    @pytest.mark.asyncio
    async def test_handle_processes_frames_in_order(
        self, settings, adt_message, siu_message
    ):
        """Frames split across small reads are acknowledged in arrival order."""
        settings.mllp_read_chunk_size = 7
        gateway = RecordingGateway()
        handler = make_handler(settings, gateway, [frame(adt_message) + frame(siu_message)])

        await handler.handle()

        acks = [HL7Message(text) for text in unframe_all(bytes(handler.writer.data))]
        assert [ack.get_message_control_id() for ack in acks] == ["MSG00001", "MSG00003"]
        assert gateway.resource_types == [
            "Patient",
            "Patient",
            "Schedule",
            "Slot",
            "Appointment",
        ]
        assert handler.writer.closed
        assert handler.frame_count == 2


    @pytest.mark.asyncio
    async def test_mapping_fault_keeps_connection(
        self, settings, adt_message, siu_message, monkeypatch
    ):
        """An unexpected mapping error still acknowledges every buffered frame."""
        settings.mllp_negative_ack_on_error = True
        settings.mllp_ack_include_msa = True
        real_mapper = mllp_server.map_hl7_to_fhir

        def failing_for_scheduling(message):
            if message.get_message_type().startswith("SIU"):
                raise RuntimeError("unexpected SCH content")
            return real_mapper(message)

        monkeypatch.setattr(mllp_server, "map_hl7_to_fhir", failing_for_scheduling)
        gateway = RecordingGateway()
        handler = make_handler(settings, gateway, [frame(siu_message) + frame(adt_message)])

        await handler.handle()

        acks = [HL7Message(text) for text in unframe_all(bytes(handler.writer.data))]
        assert [ack.get_segment("MSA").to_string() for ack in acks] == [
            "MSA|AE|MSG00003",
            "MSA|AA|MSG00001",
        ]
        assert gateway.resource_types == ["Patient"]

    @pytest.mark.asyncio
    async def test_non_ascii_digits_in_frame(self, settings, adt_message, siu_message):
        """A duration in non-ASCII digits does not cost the next frame its ACK."""
        scheduling = siu_message.replace("|45|min|", "|²|min|")
        gateway = RecordingGateway()
        handler = make_handler(settings, gateway, [frame(scheduling) + frame(adt_message)])

        await handler.handle()

        acks = [HL7Message(text) for text in unframe_all(bytes(handler.writer.data))]
        assert [ack.get_message_control_id() for ack in acks] == ["MSG00003", "MSG00001"]
        [appointment] = [r for r in gateway.received if r["resourceType"] == "Appointment"]
        assert appointment["minutesDuration"] == 30


class TestMLLPServer:
    """Test the listener over a real socket."""

    @pytest.mark.asyncio
    async def test_round_trip_over_tcp(self, settings, adt_message):
        """A client receives the ACK for the message it sent."""
        gateway = RecordingGateway()
        server = MLLPServer(settings, gateway_client=gateway.client())
        await server.start()
        try:
            client = MLLPClient("127.0.0.1", server.port, timeout=2.0)
            ack = await client.send(HL7Message(adt_message))
        finally:
            await server.stop()

        assert HL7Message(ack).get_message_control_id() == "MSG00001"
        assert gateway.resource_types == ["Patient"]
