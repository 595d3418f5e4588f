"""Builder relay mock: the builder API served over aiohttp."""

import json
import logging
import threading
from typing import Optional

from aiohttp import web

from .cache import PayloadCache
from .. import metrics
from ..config import TRACK_PER_PAYLOAD, RelayConfig
from ..crypto import (
    ZERO_ROOT,
    compute_domain,
    generate_secret_key,
    pubkey_from_privkey,
    sign_object,
    verify_signature,
)
from ..exceptions import (
    NotFoundError,
    ProtocolError,
    VerificationError,
)
from ..spec.constants import (
    BELLATRIX_VERSION_NAME,
    BID_VALUE,
    DOMAIN_APPLICATION_BUILDER,
    DOMAIN_BEACON_PROPOSER,
)
from ..spec.messages import (
    decode_pubkey,
    registration_from_json,
    signed_bid_to_json,
    signed_blinded_block_from_json,
)
from ..spec.payload import (
    bytes_to_hex,
    hex_to_bytes,
    payload_from_rest_json,
    payload_to_header,
    payload_to_rest_json,
)
from ..spec.types import (
    BuilderBid,
    SignedBuilderBid,
    SignedBlindedBeaconBlock,
    SignedValidatorRegistration,
    ExecutionPayload,
    BLSPubkey,
    BLSSignature,
    uint256,
)

logger = logging.getLogger(__name__)

PATH_STATUS = "/eth/v1/builder/status"
PATH_REGISTER_VALIDATOR = "/eth/v1/builder/validators"
PATH_GET_HEADER = r"/eth/v1/builder/header/{slot:[0-9]+}/{parent_hash:0x[a-fA-F0-9]+}/{pubkey:0x[a-fA-F0-9]+}"
PATH_GET_PAYLOAD = "/eth/v1/builder/blinded_blocks"
PATH_SUBMIT_PAYLOAD = "/relay/v1/builder/blocks"


class RelayBackend:
    """Relay state: signing key, payload caches, proposal tracking, registrations.

    Payloads reach the relay through ``submit_payload`` and are indexed by
    their parent hash. ``get_header`` turns one into a signed bid and caches
    the REST form under the payload's own block hash, which is the only link
    to the later ``get_payload`` call.

    The pubkey a blinded block must be signed by depends on the tracking mode:
    ``latest`` remembers only the pubkey of the most recent get-header call, so
    a single proposal can be outstanding at a time; ``per-payload`` remembers
    the requesting pubkey per returned block hash.

    Registrations, bids and blinded blocks are signed over their bare hash
    tree root unless ``signing_domains`` is enabled, in which case the
    builder and beacon proposer domains are mixed in.
    """

    def __init__(self, config: Optional[RelayConfig] = None, secret_key: Optional[int] = None):
        config = config or RelayConfig()
        config.validate()
        self.config = config
        self.sk = secret_key if secret_key is not None else generate_secret_key()
        self.pk = pubkey_from_privkey(self.sk)

        self.submitted_payloads = PayloadCache(config.cache_capacity)
        self.recent_payloads = PayloadCache(config.cache_capacity)
        self.proposal_tracking = config.proposal_tracking
        self._proposers = PayloadCache(config.cache_capacity)
        self._latest_pubkey: Optional[bytes] = None
        self._lock = threading.Lock()

        self.registrations: dict[bytes, SignedValidatorRegistration] = {}

        # None signs and verifies over the bare hash tree root
        self.builder_domain: Optional[bytes] = None
        self.proposer_domain: Optional[bytes] = None
        if config.signing_domains:
            self.builder_domain = compute_domain(
                DOMAIN_APPLICATION_BUILDER, config.genesis_fork_version_bytes, ZERO_ROOT
            )
            self.proposer_domain = compute_domain(
                DOMAIN_BEACON_PROPOSER,
                config.bellatrix_fork_version_bytes,
                config.genesis_validators_root_bytes,
            )

    @property
    def latest_pubkey(self) -> Optional[bytes]:
        with self._lock:
            return self._latest_pubkey

    def submit_payload(self, payload: ExecutionPayload) -> None:
        """Make a payload available to get-header requests on its parent."""
        parent_hash = bytes(payload.parent_hash)
        self.submitted_payloads.put(parent_hash, payload)
        metrics.update_cache_size("submitted", len(self.submitted_payloads))
        logger.info(
            f"Payload submitted: block_hash={bytes_to_hex(payload.block_hash)}, "
            f"parent_hash={bytes_to_hex(parent_hash)}, number={int(payload.block_number)}"
        )

    def register_validator(self, registration: SignedValidatorRegistration) -> None:
        """Verify a registration and remember it for the life of the process."""
        pubkey = bytes(registration.message.pubkey)
        try:
            ok = verify_signature(
                registration.message, pubkey, bytes(registration.signature), self.builder_domain
            )
        except VerificationError as e:
            logger.error(f"Error verifying registration signature: {e}")
            raise VerificationError("invalid signature") from e
        if not ok:
            logger.error(f"Registration signature does not verify for 0x{pubkey.hex()}")
            raise VerificationError("invalid signature")
        with self._lock:
            self.registrations[pubkey] = registration
        logger.info(
            f"Validator registered: pubkey=0x{pubkey.hex()}, "
            f"fee_recipient={bytes_to_hex(registration.message.fee_recipient)}, "
            f"gas_limit={int(registration.message.gas_limit)}"
        )

    def is_registered(self, pubkey: bytes) -> bool:
        with self._lock:
            return pubkey in self.registrations

    def get_header(self, slot: int, parent_hash: bytes, pubkey: bytes) -> SignedBuilderBid:
        """Build and sign a bid for the payload submitted on top of parent_hash."""
        payload, found = self.submitted_payloads.get(parent_hash)
        if not found:
            logger.warning(f"Cannot get unknown payload: slot={slot}, parent_hash=0x{parent_hash.hex()}")
            raise NotFoundError("Cannot get unknown payload")

        header = payload_to_header(payload)
        block_hash = bytes(header.block_hash)
        self.recent_payloads.put(block_hash, payload_to_rest_json(payload))
        metrics.update_cache_size("recent", len(self.recent_payloads))

        with self._lock:
            self._latest_pubkey = pubkey
            if self.proposal_tracking == TRACK_PER_PAYLOAD:
                self._proposers.put(block_hash, pubkey)

        if not self.is_registered(pubkey):
            logger.info(f"getHeader from unregistered validator 0x{pubkey.hex()}")

        bid = BuilderBid(
            header=header,
            value=uint256(BID_VALUE),
            pubkey=BLSPubkey(self.pk),
        )
        signature = sign_object(self.sk, bid, self.builder_domain)
        logger.info(
            f"Consensus client retrieved prepared payload header: slot={slot}, "
            f"block_hash=0x{block_hash.hex()}"
        )
        return SignedBuilderBid(message=bid, signature=BLSSignature(signature))

    def _proposer_pubkey(self, block_hash: bytes) -> Optional[bytes]:
        with self._lock:
            if self.proposal_tracking == TRACK_PER_PAYLOAD:
                pubkey, _ = self._proposers.get(block_hash)
                return pubkey
            return self._latest_pubkey

    def get_payload(self, signed_block: SignedBlindedBeaconBlock) -> dict:
        """Check the proposer signature and reveal the cached REST payload."""
        block_hash = bytes(signed_block.message.body.execution_payload_header.block_hash)
        pubkey = self._proposer_pubkey(block_hash)
        if pubkey is None:
            logger.error(f"No proposer pubkey recorded for block 0x{block_hash.hex()}")
            raise VerificationError("invalid signature")
        try:
            ok = verify_signature(
                signed_block.message, pubkey, bytes(signed_block.signature), self.proposer_domain
            )
        except VerificationError as e:
            logger.error(f"Error verifying blinded block signature: {e}")
            raise VerificationError("invalid signature") from e
        if not ok:
            logger.error(f"Blinded block signature does not verify for 0x{pubkey.hex()}")
            raise VerificationError("invalid signature")

        payload, found = self.recent_payloads.get(block_hash)
        if not found:
            logger.warning(f"Cannot get unknown payload: block_hash=0x{block_hash.hex()}")
            raise NotFoundError("cannot get unknown payload")
        logger.info(f"Consensus client retrieved payload: block_hash=0x{block_hash.hex()}")
        return payload


@web.middleware
async def request_logging_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Log every request and turn relay errors into plain-text responses."""
    fields = " ".join(f"{k}={v}" for k, v in request.match_info.items())
    logger.info(f"{request.method} {request.path} {fields}".rstrip())
    resource = request.match_info.route.resource
    endpoint = resource.canonical if resource is not None else request.path
    try:
        response = await handler(request)
    except (ProtocolError, VerificationError, NotFoundError) as e:
        response = web.Response(status=400, text=str(e))
    except web.HTTPException as e:
        metrics.record_relay_request(endpoint, e.status)
        raise
    except Exception as e:
        logger.exception(f"Unexpected error handling {request.method} {request.path}")
        response = web.Response(status=500, text=str(e))
    logger.info(f"{request.method} {request.path} -> {response.status}")
    metrics.record_relay_request(endpoint, response.status)
    return response


async def _read_json(request: web.Request):
    try:
        return await request.json()
    except (ValueError, UnicodeDecodeError) as e:
        raise ProtocolError(f"invalid JSON body: {e}") from e


def _versioned(data: dict) -> web.Response:
    body = json.dumps({"version": BELLATRIX_VERSION_NAME, "data": data})
    return web.Response(status=200, text=body, content_type="application/json")


class RelayServer:
    """HTTP front end for a RelayBackend."""

    def __init__(self, backend: RelayBackend, host: str = "127.0.0.1", port: int = 28545,
                 keepalive_timeout: float = 300.0):
        self.backend = backend
        self.host = host
        self.port = port
        self.keepalive_timeout = keepalive_timeout
        self.app = web.Application(middlewares=[request_logging_middleware])
        self.runner: Optional[web.AppRunner] = None
        self._setup_routes()

    def _setup_routes(self):
        """Set up API routes."""
        self.app.router.add_get(PATH_STATUS, self.handle_status)
        self.app.router.add_post(PATH_REGISTER_VALIDATOR, self.handle_register_validator)
        self.app.router.add_get(PATH_GET_HEADER, self.handle_get_header)
        self.app.router.add_post(PATH_GET_PAYLOAD, self.handle_get_payload)
        self.app.router.add_post(PATH_SUBMIT_PAYLOAD, self.handle_submit_payload)

    async def start(self):
        """Start the relay server."""
        self.runner = web.AppRunner(self.app, keepalive_timeout=self.keepalive_timeout)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        logger.info(
            f"Relay started on {self.host}:{self.port}, pubkey=0x{self.backend.pk.hex()}"
        )

    async def stop(self):
        """Stop the relay server."""
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
            logger.info("Relay stopped")

    async def handle_status(self, request: web.Request) -> web.Response:
        """GET /eth/v1/builder/status"""
        return web.Response(status=200)

    async def handle_register_validator(self, request: web.Request) -> web.Response:
        """POST /eth/v1/builder/validators"""
        data = await _read_json(request)
        registration = registration_from_json(data)
        self.backend.register_validator(registration)
        return web.Response(status=200)

    async def handle_get_header(self, request: web.Request) -> web.Response:
        """GET /eth/v1/builder/header/{slot}/{parent_hash}/{pubkey}"""
        try:
            pubkey = decode_pubkey(request.match_info["pubkey"])
        except ProtocolError as e:
            raise ProtocolError("cannot unmarshal pubkey") from e
        slot = int(request.match_info["slot"])
        parent_hash = hex_to_bytes(request.match_info["parent_hash"], "parent_hash", 32)
        signed_bid = self.backend.get_header(slot, parent_hash, pubkey)
        return _versioned(signed_bid_to_json(signed_bid))

    async def handle_get_payload(self, request: web.Request) -> web.Response:
        """POST /eth/v1/builder/blinded_blocks"""
        data = await _read_json(request)
        signed_block = signed_blinded_block_from_json(data)
        payload = self.backend.get_payload(signed_block)
        return _versioned(payload)

    async def handle_submit_payload(self, request: web.Request) -> web.Response:
        """POST /relay/v1/builder/blocks"""
        data = await _read_json(request)
        self.backend.submit_payload(payload_from_rest_json(data))
        return web.Response(status=200)
