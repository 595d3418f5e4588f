"""Engine API client for communication with the execution layer."""

from .types import (
    PayloadStatusEnum,
    PayloadStatus,
    PayloadAttributes,
    ForkchoiceState,
    ForkchoiceUpdateResponse,
    GetPayloadResponse,
)
from .client import EngineAPIClient
from ..exceptions import EngineAPIError

__all__ = [
    "EngineAPIClient",
    "EngineAPIError",
    "PayloadStatus",
    "PayloadStatusEnum",
    "PayloadAttributes",
    "ForkchoiceState",
    "ForkchoiceUpdateResponse",
    "GetPayloadResponse",
]
