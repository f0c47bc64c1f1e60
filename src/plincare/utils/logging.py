"""Logging configuration for the Plincare integration engine.

Events are structured (structlog over the standard library). HL7 frames
carry patient data, so message content never reaches a log line: any
payload-like key is replaced by its length before rendering.
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping, Optional

import structlog
from structlog.stdlib import BoundLogger, LoggerFactory

from plincare.config import Settings, get_settings

# Event keys that could hold raw HL7 or CDA content
PAYLOAD_KEYS = frozenset({"raw", "payload", "message_text", "frame", "cda_xml"})


def redact_payloads(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Replace payload values with their length."""
    for key in PAYLOAD_KEYS & event_dict.keys():
        value = event_dict.pop(key)
        event_dict[f"{key}_length"] = len(value) if value is not None else 0
    return event_dict


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure structured logging for the engine.

    Args:
        settings: Settings providing level and renderer; cached settings
            when omitted
    """
    settings = settings or get_settings()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            redact_payloads,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            render_processor(settings),
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def render_processor(settings: Settings) -> Any:
    """JSON lines in deployed environments, console output otherwise."""
    if settings.log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def get_logger(name: str) -> BoundLogger:
    """Get a configured logger instance."""
    bound_logger: BoundLogger = structlog.get_logger(name)
    return bound_logger


class AuditLogger:
    """Logger for the Ségur compliance audit trail."""

    def __init__(self) -> None:
        """Initialize audit logger."""
        self.logger = get_logger("audit")

    def log(
        self,
        actor_id: str,
        action_type: str,
        resource_id: str,
        resource_type: str,
        outcome: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Record one audit trail entry.

        Args:
            actor_id: Component performing the action (e.g. MLLP_ADAPTER)
            action_type: RECEIVE, TRANSFORM, VALIDATE, DELIVER, ...
            resource_id: Identifier of the affected resource
            resource_type: Kind of the affected resource (e.g. FHIR_PATIENT)
            outcome: "success" or "failure"
            details: Extra context, never raw message content

        Returns:
            The entry as logged
        """
        entry = {
            "type": "AUDIT",
            "actor_id": actor_id,
            "action_type": action_type,
            "resource_id": resource_id,
            "resource_type": resource_type,
            "outcome": outcome,
            "details": details or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if outcome == "failure":
            self.logger.warning("audit_trail", **entry)
        else:
            self.logger.info("audit_trail", **entry)
        return entry


# Global logger instances
logger = get_logger(__name__)
audit_logger = AuditLogger()
