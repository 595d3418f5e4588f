"""Engine API data types."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..exceptions import ProtocolError
from ..spec.payload import hex_to_bytes, payload_from_engine_json
from ..spec.types import ExecutionPayload


class PayloadStatusEnum(str, Enum):
    VALID = "VALID"
    INVALID = "INVALID"
    SYNCING = "SYNCING"
    ACCEPTED = "ACCEPTED"
    INVALID_BLOCK_HASH = "INVALID_BLOCK_HASH"


@dataclass
class PayloadStatus:
    """Response from newPayload."""

    status: PayloadStatusEnum
    latest_valid_hash: Optional[bytes] = None
    validation_error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "PayloadStatus":
        if not isinstance(data, dict) or "status" not in data:
            raise ProtocolError(f"Malformed payload status: {data!r}")
        try:
            status = PayloadStatusEnum(data["status"])
        except ValueError as e:
            raise ProtocolError(f"Unrecognized payload status {data['status']!r}") from e
        return cls(
            status=status,
            latest_valid_hash=(
                hex_to_bytes(data["latestValidHash"], "latestValidHash", 32)
                if data.get("latestValidHash")
                else None
            ),
            validation_error=data.get("validationError"),
        )

    @property
    def is_valid(self) -> bool:
        return self.status == PayloadStatusEnum.VALID


@dataclass
class ForkchoiceState:
    """Forkchoice state for forkchoiceUpdated."""

    head_block_hash: bytes
    safe_block_hash: bytes
    finalized_block_hash: bytes

    def to_dict(self) -> dict:
        return {
            "headBlockHash": "0x" + self.head_block_hash.hex(),
            "safeBlockHash": "0x" + self.safe_block_hash.hex(),
            "finalizedBlockHash": "0x" + self.finalized_block_hash.hex(),
        }


@dataclass
class PayloadAttributes:
    """Build request attached to forkchoiceUpdatedV1."""

    timestamp: int
    prev_randao: bytes
    suggested_fee_recipient: bytes

    def to_dict(self) -> dict:
        return {
            "timestamp": hex(self.timestamp),
            "prevRandao": "0x" + self.prev_randao.hex(),
            "suggestedFeeRecipient": "0x" + self.suggested_fee_recipient.hex(),
        }


@dataclass
class ForkchoiceUpdateResponse:
    """Response from forkchoiceUpdated."""

    payload_status: PayloadStatus
    payload_id: Optional[bytes] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ForkchoiceUpdateResponse":
        if not isinstance(data, dict) or "payloadStatus" not in data:
            raise ProtocolError(f"Malformed forkchoice update response: {data!r}")
        return cls(
            payload_status=PayloadStatus.from_dict(data["payloadStatus"]),
            payload_id=(
                hex_to_bytes(data["payloadId"], "payloadId", 8)
                if data.get("payloadId")
                else None
            ),
        )


@dataclass
class GetPayloadResponse:
    """Response from getPayloadV1, which is the bare payload object."""

    execution_payload: ExecutionPayload

    @classmethod
    def from_dict(cls, data: dict) -> "GetPayloadResponse":
        return cls(execution_payload=payload_from_engine_json(data))
