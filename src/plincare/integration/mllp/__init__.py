"""MLLP transport: inbound listener and outbound sender."""

from .mllp_client import MLLPClient
from .mllp_server import (
    MLLPConnectionHandler,
    MLLPFrameBuffer,
    MLLPServer,
    build_ssl_context,
)

__all__ = [
    "MLLPClient",
    "MLLPConnectionHandler",
    "MLLPFrameBuffer",
    "MLLPServer",
    "build_ssl_context",
]
