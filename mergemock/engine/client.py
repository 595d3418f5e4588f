"""Engine API client for communication with the execution layer."""

import asyncio
import logging
import time
from typing import Optional, Any

import aiohttp
import jwt

from .types import (
    PayloadStatus,
    PayloadAttributes,
    ForkchoiceState,
    ForkchoiceUpdateResponse,
    GetPayloadResponse,
)
from .. import metrics
from ..exceptions import EngineAPIError, ProtocolError, TransportError
from ..spec.payload import payload_to_engine_json
from ..spec.types import ExecutionPayload

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0


class EngineAPIClient:
    """Client for the Bellatrix Engine API (V1 methods)."""

    def __init__(self, url: str, jwt_secret: bytes, timeout: float = DEFAULT_TIMEOUT):
        self.url = url
        self.jwt_secret = jwt_secret
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._request_id = 0

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure we have an active session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    def _create_jwt_token(self) -> str:
        """Create a JWT token for authentication."""
        now = int(time.time())
        payload = {"iat": now}
        return jwt.encode(payload, self.jwt_secret, algorithm="HS256")

    async def _call(self, method: str, params: list) -> Any:
        """Make a JSON-RPC call to the Engine API."""
        session = await self._ensure_session()
        self._request_id += 1

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._create_jwt_token()}",
        }

        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": self._request_id,
        }

        logger.debug(f"Engine API call: {method}")

        start_time = time.time()
        error_type = None

        try:
            async with session.post(
                self.url, json=payload, headers=headers
            ) as response:
                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    error_type = "malformed_response"
                    raise ProtocolError(
                        f"{method}: non-JSON response (HTTP {response.status})"
                    ) from e
                if not isinstance(data, dict):
                    error_type = "malformed_response"
                    raise ProtocolError(f"{method}: unexpected response {data!r}")

                if data.get("error"):
                    error = data["error"]
                    error_type = str(error.get("code", "unknown"))
                    raise EngineAPIError(error.get("code", -1), error.get("message", ""))

                return data.get("result")
        except asyncio.TimeoutError as e:
            error_type = "timeout"
            logger.error(f"Engine API call {method} timed out after {self.timeout}s")
            raise TransportError(f"{method} timed out") from e
        except aiohttp.ClientError as e:
            error_type = "connection_error"
            logger.error(f"Engine API connection error: {e}")
            raise TransportError(f"{method} failed: {e}") from e
        finally:
            latency = time.time() - start_time
            metrics.record_engine_api_call(method, latency, error_type)

    async def new_payload_v1(self, execution_payload: ExecutionPayload) -> PayloadStatus:
        """Send a new payload to the execution layer."""
        payload_dict = payload_to_engine_json(execution_payload)
        logger.debug(
            f"newPayloadV1: blockHash={payload_dict['blockHash']}, "
            f"number={int(execution_payload.block_number)}, "
            f"tx_count={len(payload_dict['transactions'])}"
        )
        result = await self._call("engine_newPayloadV1", [payload_dict])
        return PayloadStatus.from_dict(result)

    async def forkchoice_updated_v1(
        self,
        forkchoice_state: ForkchoiceState,
        payload_attributes: Optional[PayloadAttributes] = None,
    ) -> ForkchoiceUpdateResponse:
        """Update the forkchoice state, optionally starting a payload build."""
        params = [
            forkchoice_state.to_dict(),
            payload_attributes.to_dict() if payload_attributes else None,
        ]
        result = await self._call("engine_forkchoiceUpdatedV1", params)
        return ForkchoiceUpdateResponse.from_dict(result)

    async def get_payload_v1(self, payload_id: bytes) -> GetPayloadResponse:
        """Get an execution payload by ID."""
        result = await self._call("engine_getPayloadV1", ["0x" + payload_id.hex()])
        return GetPayloadResponse.from_dict(result)

    async def close(self) -> None:
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
