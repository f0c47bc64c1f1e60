"""Write-back REST API endpoints.

Lets the platform push appointment changes back to the legacy HIS as
SIU messages.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from plincare.config import Settings, get_settings
from plincare.healthcare.hl7.write_back import (
    WriteBackAction,
    map_resource_to_outbound,
    wrap_in_mllp,
)
from plincare.integration.mllp.mllp_client import MLLPClient
from plincare.utils.exceptions import PlincareException
from plincare.utils.logging import audit_logger, get_logger

router = APIRouter(prefix="/internal/write-back", tags=["write-back"])
logger = get_logger(__name__)

ACTOR_ID = "WRITE_BACK_API"

# Module-level dependency variables to avoid B008 errors
settings_dependency = Depends(get_settings)


class WriteBackRequest(BaseModel):
    """Appointment change to propagate to the HIS."""

    appointment: Dict[str, Any]
    patient: Dict[str, Any]
    action: str = WriteBackAction.CREATE.value


class WriteBackResponse(BaseModel):
    """Outcome of a write-back request."""

    status: str
    eventType: str
    length: int
    ack: Optional[str] = None


@router.post("/siu", response_model=WriteBackResponse, response_model_exclude_none=True)
async def write_back_siu(
    request: WriteBackRequest,
    settings: Settings = settings_dependency,
) -> WriteBackResponse:
    """Build the SIU message for an appointment change and send it to the HIS.

    When no HIS endpoint is configured the message is only built. A send
    failure is reported in the response status rather than as an HTTP error.
    """
    try:
        action = WriteBackAction(request.action)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "code": "INVALID_ACTION",
                "message": f"Unknown write-back action: {request.action}",
            },
        ) from e

    message = map_resource_to_outbound(
        request.appointment,
        request.patient,
        action,
        sending_application=settings.sending_application,
        sending_facility=settings.sending_facility,
    )
    payload = wrap_in_mllp(message)
    appointment_id = request.appointment.get("id", "")

    result_status = "generated"
    ack: Optional[str] = None

    if settings.his_mllp_host:
        client = MLLPClient(
            settings.his_mllp_host,
            settings.his_mllp_port,
            timeout=settings.writeback_timeout_seconds,
        )
        try:
            ack = await client.send(payload)
            result_status = "sent"
        except PlincareException as e:
            logger.error(
                "write_back_send_failed",
                appointment_id=appointment_id,
                event_type=action.event_type,
                error_code=e.code,
                error=str(e),
            )
            result_status = "queued_failed"

    audit_logger.log(
        ACTOR_ID,
        "WRITE_BACK",
        appointment_id,
        "FHIR_APPOINTMENT",
        "failure" if result_status == "queued_failed" else "success",
        {"event_type": action.event_type, "status": result_status},
    )

    return WriteBackResponse(
        status=result_status,
        eventType=action.event_type,
        length=len(message),
        ack=ack,
    )
