"""Tests for FHIR Appointment to SIU write-back."""

import pytest

from plincare.healthcare.hl7.hl7_message_types import MLLP_START_BLOCK, MLLP_TRAILER
from plincare.healthcare.hl7.write_back import (
    WriteBackAction,
    build_patient_segment,
    calculate_duration,
    map_resource_to_outbound,
    wrap_in_mllp,
)

from tests.conftest import SAMPLE_INS


class TestWriteBackMessage:
    """Test outbound SIU construction."""

    def test_segment_order(self, fhir_appointment, fhir_patient):
        """SIU carries header, schedule, timing, patient, visit and resources."""
        message = map_resource_to_outbound(fhir_appointment, fhir_patient)
        assert [s.segment_id for s in message.segments] == [
            "MSH",
            "SCH",
            "TQ1",
            "PID",
            "PV1",
            "RGS",
            "AIS",
            "AIL",
            "AIP",
        ]

    def test_header(self, fhir_appointment, fhir_patient):
        """MSH names the event and declares Latin-1."""
        message = map_resource_to_outbound(
            fhir_appointment, fhir_patient, sending_application="PFI", sending_facility="PH"
        )
        msh = message.get_segment("MSH")
        assert msh.get_value(3) == "PFI"
        assert msh.get_value(4) == "PH"
        assert msh.get_value(9) == "SIU^S12^SIU_S12"
        assert msh.get_value(10).startswith("MSG-")
        assert msh.get_value(15) == "AL"
        assert msh.get_value(16) == "NE"
        assert msh.get_value(18) == "8859/1"

    def test_schedule_segment(self, fhir_appointment, fhir_patient):
        """SCH carries id, reason, duration, timing and filler status."""
        sch = map_resource_to_outbound(fhir_appointment, fhir_patient).get_segment("SCH")
        assert sch.get_value(1) == "apt-100"
        assert sch.get_value(7) == "Suivi diabète"
        assert sch.get_value(9) == "45"
        assert sch.get_field(10).component(1) == "min"
        assert sch.get_field(11).component(4) == "20241215103000"
        assert sch.get_field(11).component(5) == "20241215111500"
        assert sch.get_value(25) == "Booked"

    def test_timing_and_resources(self, fhir_appointment, fhir_patient):
        """TQ1, AIS, AIL and AIP carry start and duration."""
        message = map_resource_to_outbound(fhir_appointment, fhir_patient)
        tq1 = message.get_segment("TQ1")
        assert tq1.get_field(6).component(1) == "45"
        assert tq1.get_field(6).subcomponent(2, 3) == "UCUM"
        assert tq1.get_value(7) == "20241215103000"
        assert tq1.get_value(8) == "20241215111500"

        ais = message.get_segment("AIS")
        assert ais.get_value(4) == "20241215103000"
        assert ais.get_value(7) == "45"
        assert ais.get_value(10) == "Confirmed"

        assert message.get_segment("AIL").get_field(3).component(1) == "room-3"
        assert message.get_segment("AIP").get_field(3).component(1) == "dr-martin"
        assert message.get_segment("AIP").get_value(6) == "20241215103000"

    def test_patient_segment(self, fhir_patient):
        """PID carries INS and local ids, name, birth date and sex."""
        pid = build_patient_segment(fhir_patient)
        assert pid.get_value(3) == f"{SAMPLE_INS}^^^INS~IPP-778^^^LOCAL"
        assert pid.get_value(5) == "DUBOIS^Jean"
        assert pid.get_value(7) == "19800115"
        assert pid.get_value(8) == "M"

    def test_patient_without_ins(self):
        """Without INS only the local identifier repetition is written."""
        pid = build_patient_segment({"resourceType": "Patient", "id": "pat-local-1"})
        assert pid.get_value(3) == "pat-local-1^^^LOCAL"
        assert pid.get_value(8) == "U"

    def test_no_location_or_practitioner(self, fhir_patient):
        """AIL and AIP are only written for matching participants."""
        appointment = {
            "resourceType": "Appointment",
            "id": "apt-1",
            "status": "booked",
            "start": "2024-12-15T10:30:00Z",
        }
        message = map_resource_to_outbound(appointment, fhir_patient)
        assert message.get_segment("AIL") is None
        assert message.get_segment("AIP") is None
        assert message.get_segment("SCH").get_value(9) == "30"

    @pytest.mark.parametrize(
        "action,event_type",
        [
            (WriteBackAction.CREATE, "SIU^S12^SIU_S12"),
            (WriteBackAction.UPDATE, "SIU^S13^SIU_S12"),
            (WriteBackAction.CANCEL, "SIU^S15^SIU_S12"),
        ],
    )
    def test_event_types(self, fhir_appointment, fhir_patient, action, event_type):
        """Each action sends its own trigger event."""
        message = map_resource_to_outbound(fhir_appointment, fhir_patient, action)
        assert message.get_segment("MSH").get_value(9) == event_type
        assert action.event_type == event_type

    def test_cancel_overrides_status(self, fhir_appointment, fhir_patient):
        """Cancelling writes Cancelled whatever the appointment status."""
        fhir_appointment["status"] = "booked"
        message = map_resource_to_outbound(
            fhir_appointment, fhir_patient, WriteBackAction.CANCEL
        )
        assert message.get_segment("SCH").get_value(25) == "Cancelled"
        assert message.get_segment("AIS").get_value(10) == "Cancelled"
        assert fhir_appointment["status"] == "booked"

    def test_unknown_action(self, fhir_appointment, fhir_patient):
        """Unknown actions are rejected."""
        with pytest.raises(ValueError):
            map_resource_to_outbound(fhir_appointment, fhir_patient, "reschedule")

    def test_reason_is_escaped(self, fhir_appointment, fhir_patient):
        """Delimiters in the reason text are escaped."""
        fhir_appointment["description"] = "Bilan|contrôle"
        sch = map_resource_to_outbound(fhir_appointment, fhir_patient).get_segment("SCH")
        assert sch.get_value(7) == "Bilan\\F\\contrôle"

    def test_mllp_framing(self, fhir_appointment, fhir_patient):
        """Framed messages start with VT and end with FS CR."""
        framed = wrap_in_mllp(map_resource_to_outbound(fhir_appointment, fhir_patient))
        assert framed.startswith(MLLP_START_BLOCK)
        assert framed.endswith(MLLP_TRAILER)
        assert "diabète".encode("latin-1") in framed


class TestDuration:
    """Test appointment length computation."""

    def test_explicit_duration(self):
        """minutesDuration wins."""
        assert calculate_duration({"minutesDuration": 20, "start": "x", "end": "y"}) == 20

    def test_from_start_and_end(self, fhir_appointment):
        """End minus start in minutes."""
        assert calculate_duration(fhir_appointment) == 45

    def test_default(self):
        """30 minutes when nothing is known."""
        assert calculate_duration({}) == 30
