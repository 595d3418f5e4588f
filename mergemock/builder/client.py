"""Builder API client used by the consensus mock to source blocks from a relay."""

import asyncio
import logging
from typing import Optional, Any

import aiohttp

from ..exceptions import BuilderAPIError, ProtocolError, TransportError
from ..spec.messages import (
    registration_to_json,
    signed_bid_from_json,
    signed_blinded_block_to_json,
)
from ..spec.payload import payload_from_rest_json, payload_to_rest_json
from ..spec.types import (
    ExecutionPayload,
    SignedBuilderBid,
    SignedBlindedBeaconBlock,
    SignedValidatorRegistration,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0

PATH_STATUS = "/eth/v1/builder/status"
PATH_REGISTER_VALIDATOR = "/eth/v1/builder/validators"
PATH_GET_HEADER = "/eth/v1/builder/header/{slot}/{parent_hash}/{pubkey}"
PATH_GET_PAYLOAD = "/eth/v1/builder/blinded_blocks"
PATH_SUBMIT_PAYLOAD = "/relay/v1/builder/blocks"


class BuilderClient:
    """Client for a builder relay's REST API."""

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT):
        if not base_url.startswith(("http://", "https://")):
            base_url = "http://" + base_url
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def _request(self, method: str, path: str, body: Any = None) -> Any:
        """Send a request and return the decoded JSON body (None when empty)."""
        session = await self._ensure_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.request(method, url, json=body) as response:
                text = await response.text()
                if response.status != 200:
                    raise BuilderAPIError(response.status, text.strip())
                if not text:
                    return None
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise ProtocolError(f"{method} {path}: response is not JSON") from e
        except asyncio.TimeoutError as e:
            raise TransportError(f"{method} {path} timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _versioned_data(response: Any, what: str) -> dict:
        if not isinstance(response, dict) or "data" not in response:
            raise ProtocolError(f"{what}: missing data in response {response!r}")
        logger.debug(f"{what}: version={response.get('version')}")
        return response["data"]

    async def status(self) -> None:
        """Liveness probe; raises if the relay is not healthy."""
        await self._request("GET", PATH_STATUS)

    async def register_validator(self, registration: SignedValidatorRegistration) -> None:
        """Register a validator's fee recipient and gas limit."""
        await self._request("POST", PATH_REGISTER_VALIDATOR, registration_to_json(registration))
        logger.info(f"Registered validator 0x{bytes(registration.message.pubkey).hex()[:16]}...")

    async def get_header(self, slot: int, parent_hash: bytes, pubkey: bytes) -> SignedBuilderBid:
        """Request a signed bid for a block on top of parent_hash."""
        path = PATH_GET_HEADER.format(
            slot=slot,
            parent_hash="0x" + parent_hash.hex(),
            pubkey="0x" + pubkey.hex(),
        )
        response = await self._request("GET", path)
        bid = signed_bid_from_json(self._versioned_data(response, "getHeader"))
        logger.info(
            f"Received bid for slot {slot}: "
            f"block_hash=0x{bytes(bid.message.header.block_hash).hex()}, "
            f"value={int(bid.message.value)}"
        )
        return bid

    async def get_payload(self, signed_block: SignedBlindedBeaconBlock) -> ExecutionPayload:
        """Reveal a signed blinded block and receive the full payload."""
        response = await self._request(
            "POST", PATH_GET_PAYLOAD, signed_blinded_block_to_json(signed_block)
        )
        return payload_from_rest_json(self._versioned_data(response, "getPayload"))

    async def submit_payload(self, payload: ExecutionPayload) -> None:
        """Offer a payload to the relay for later get-header calls."""
        await self._request("POST", PATH_SUBMIT_PAYLOAD, payload_to_rest_json(payload))

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
