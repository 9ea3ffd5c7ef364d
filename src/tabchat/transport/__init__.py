from .base import ByteStream, Endpoint, ModelInfo, Transport
from .factory import create_transport, transport_from_config
from .http import HttpTransport

__all__ = [
    "ByteStream",
    "Endpoint",
    "HttpTransport",
    "ModelInfo",
    "Transport",
    "create_transport",
    "transport_from_config",
]
