"""Consensus mock driver: the slot-clock state machine that steers the engine."""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .clock import SlotClock
from .prologue import PeerDialer, proof_of_work_prologue
from .reorg import calc_reorg_target
from .tasks import TaskSupervisor
from .. import metrics
from ..builder import BuilderClient
from ..chain import Block, MockChain, TestAccount, TransactionsCreator
from ..config import ConsensusConfig
from ..crypto import (
    ZERO_ROOT,
    compute_domain,
    generate_secret_key,
    pubkey_from_privkey,
    sign_object,
    verify_signature,
)
from ..p2p import LegacyPeer
from ..engine import (
    EngineAPIClient,
    ForkchoiceState,
    PayloadAttributes,
    PayloadStatusEnum,
)
from ..exceptions import (
    ConsistencyError,
    MergeMockError,
    ProtocolError,
    TransportError,
    VerificationError,
    BuilderAPIError,
)
from ..spec.constants import (
    DOMAIN_APPLICATION_BUILDER,
    DOMAIN_BEACON_PROPOSER,
    GENESIS_FORK_VERSION,
)
from ..spec.payload import block_to_payload
from ..spec.types import (
    BlindedBeaconBlock,
    BlindedBeaconBlockBody,
    Eth1Data,
    ExecutionPayload,
    SignedBlindedBeaconBlock,
    SignedValidatorRegistration,
    SyncAggregate,
    ValidatorRegistration,
    BLSPubkey,
    BLSSignature,
    Bytes20,
    Hash32,
    uint64,
    uint256,
)

logger = logging.getLogger(__name__)

EXTERNAL_BLOCK_COINBASE = b"\x01" + b"\x00" * 19
EXTERNAL_BLOCK_EXTRA_DATA = b"proto says hi"
SUGGESTED_FEE_RECIPIENT = b"\x13\x37" + b"\x00" * 18
INVALID_BLOCK_HASH = b"\x00" * 28 + bytes.fromhex("deadbeef")
ZERO_HASH = b"\x00" * 32
COUNTDOWN_SLOTS = 10
PROPOSER_INDEX = 1


@dataclass
class PendingProposal:
    """A payload id handed from a forkchoice update to the slot it was requested for."""

    payload_id: bytes
    slot: int


class ConsensusMock:
    """Drives an execution engine through mocked slots.

    Each tick is evaluated in a fixed order: bound check, epoch rotation,
    gap slot, invalid-hash payload, reorg choice, then either a proposal
    from a pending payload id or an externally built block. Engine calls
    for a slot run as supervised background tasks so the loop keeps its
    cadence; failures surface at the next tick.
    """

    def __init__(
        self,
        config: ConsensusConfig,
        engine: EngineAPIClient,
        chain: MockChain,
        builder: Optional[BuilderClient] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[SlotClock] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        secret_key: Optional[int] = None,
        peer_dial: Optional[PeerDialer] = None,
    ):
        config.validate()
        self.config = config
        self.behavior = config.behavior
        self.engine = engine
        self.chain = chain
        self.builder = builder
        self.rng = rng or random.Random(self.behavior.seed)
        self.clock = clock or SlotClock(config.beacon_genesis_time, config.slot_time)
        self._sleep = sleep
        self._peer_dial = peer_dial or LegacyPeer.dial

        self.sk = secret_key if secret_key is not None else generate_secret_key()
        self.pubkey = pubkey_from_privkey(self.sk)
        self.builder_domain: Optional[bytes] = None
        self.proposer_domain: Optional[bytes] = None
        if config.signing_domains:
            self.builder_domain = compute_domain(
                DOMAIN_APPLICATION_BUILDER, GENESIS_FORK_VERSION, ZERO_ROOT
            )
            self.proposer_domain = compute_domain(
                DOMAIN_BEACON_PROPOSER,
                config.bellatrix_fork_version_bytes,
                config.genesis_validators_root_bytes,
            )

        self.creator = TransactionsCreator(
            [TestAccount.from_hex(key) for key in self.behavior.test_account_keys]
        )
        self.tasks = TaskSupervisor()

        self.transition_block = 0
        self.finalized_hash = ZERO_HASH
        self.safe_hash = ZERO_HASH
        self.next_finalized = ZERO_HASH
        self._pending: Optional[PendingProposal] = None
        self._closing = asyncio.Event()

    # -------------------------------------------------------------------------
    # Timestamps
    # -------------------------------------------------------------------------

    def slot_timestamp(self, slot: int) -> int:
        return self.clock.slot_timestamp(slot)

    def validate_timestamp(self, timestamp: int, slot: int) -> None:
        expected = self.slot_timestamp(slot)
        if timestamp != expected:
            raise ProtocolError(f"wrong timestamp: got {timestamp}, expected {expected}")

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    async def run(self) -> int:
        """Run until closed or until the slot bound is passed; returns an exit code."""
        try:
            if self.config.enode:
                try:
                    self.transition_block = await proof_of_work_prologue(
                        self.chain, self.config.enode, self.rng, self.behavior, self._peer_dial
                    )
                except MergeMockError as e:
                    logger.error(f"Failed to complete PoW prologue: {e}")
                    return 1
            else:
                logger.info("No peer, skipping pre-merge transition simulation, starting in PoS mode")

            if self.builder is not None:
                await self.register_with_builder()

            last_slot: Optional[int] = None
            while True:
                if await self._sleep_until_next_slot():
                    logger.info("Closing consensus mock node")
                    return 0
                slot = self.clock.current_slot()
                if last_slot is not None and slot <= last_slot:
                    continue
                last_slot = slot
                exit_code = await self.on_slot(slot)
                if exit_code is not None:
                    return exit_code
        finally:
            await self._shutdown()

    def close(self) -> None:
        """Ask the slot loop to stop at its next wait."""
        self._closing.set()

    async def _sleep_until_next_slot(self) -> bool:
        """Sleep to the next slot boundary; returns True if closed meanwhile."""
        if self._closing.is_set():
            return True
        sleeper = asyncio.ensure_future(self._sleep(self.clock.seconds_until_next_slot()))
        closer = asyncio.ensure_future(self._closing.wait())
        done, pending = await asyncio.wait(
            {sleeper, closer}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        return self._closing.is_set()

    async def _shutdown(self) -> None:
        await self.tasks.cancel_all()
        await self.engine.close()
        if self.builder is not None:
            await self.builder.close()
        try:
            self.chain.close()
        except Exception as e:
            logger.error(f"Failed closing mock chain: {e}")

    async def on_slot(self, slot: int) -> Optional[int]:
        """Handle one slot tick. Returns an exit code when the loop must stop."""
        failures = self.tasks.drain_failures()
        if failures and self.config.slot_bound > 0:
            for name, exc in failures:
                logger.error(f"Slot task {name} failed with a slot bound set, exiting: {exc}")
            return 1

        if slot < 0:
            if slot >= -COUNTDOWN_SLOTS:
                logger.info(f"Counting down to genesis... remaining_slots={-slot}")
            metrics.record_slot(slot, "pre_genesis")
            return None

        if slot == 0:
            logger.info("Genesis! slot=0")
            self.safe_hash = self.chain.current_hash()
            metrics.record_slot(slot, "genesis")
            return None

        if self.config.slot_bound > 0 and slot > self.config.slot_bound:
            await self.tasks.wait()
            if self.tasks.drain_failures():
                logger.error(f"Slot tasks failed before the bound of {self.config.slot_bound} slots")
                return 1
            logger.info(f"All test runs successfully completed: test_runs={self.config.slot_bound}")
            return 0

        if slot % self.config.slots_per_epoch == 0:
            self.rotate_finality(slot)

        pending = self._take_pending(slot)

        if self.rng.random() < self.behavior.gap_freq:
            logger.info(f"Mocking gap slot, no payload execution here: slot={slot}")
            metrics.record_slot(slot, "gap")
            return None

        if self.rng.random() < self.behavior.invalid_hash_freq:
            logger.info(f"Sending payload with invalid hash: slot={slot}")
            self.tasks.spawn(self.send_invalid_payload(self._invalid_payload()), f"invalid-{slot}")
            metrics.record_slot(slot, "invalid")
            return None

        parent = self.chain.current_block()
        if self.rng.random() < self.behavior.reorg_freq:
            minimum = self.transition_block
            finalized = self.chain.get_header_by_hash(self.finalized_hash)
            if finalized is not None:
                minimum = max(minimum, finalized.number)
            try:
                parent = calc_reorg_target(
                    self.chain, self.rng, self.behavior.reorg_max_depth, parent.number, minimum
                )
            except MergeMockError as e:
                logger.error(f"Unable to pick reorg target: slot={slot}: {e}")
                return None
            metrics.record_reorg()

        logger.info(f"Slot trigger: slot={slot}, previous=0x{parent.hash.hex()}")

        if pending is not None:
            logger.info(
                f"Update forkchoice to block built by engine: slot={slot}, "
                f"payload_id=0x{pending.payload_id.hex()}"
            )
            self.tasks.spawn(self.mock_proposal(pending, slot), f"proposal-{slot}")
            metrics.record_slot(slot, "proposal")
            return None

        logger.debug(f"Mocking external block: slot={slot}")
        try:
            block = self.chain.add_new_block(
                parent.hash,
                coinbase=EXTERNAL_BLOCK_COINBASE,
                timestamp=self.slot_timestamp(slot),
                gas_limit=parent.header.gas_limit,
                creator=self.creator,
                mix_digest=ZERO_HASH,
                extra_data=EXTERNAL_BLOCK_EXTRA_DATA,
            )
        except MergeMockError as e:
            logger.error(f"Failed to add block: slot={slot}: {e}")
            return None
        logger.debug(f"Built external block: slot={slot}, block_hash=0x{block.hash.hex()}")
        metrics.record_block_produced("external", block.number)
        metrics.record_slot(slot, "external")

        attributes = None
        if self.rng.random() < self.behavior.proposal_freq:
            attributes = self.make_payload_attributes(slot + 1)
        self.tasks.spawn(
            self.execute_and_update(block, self.safe_hash, self.finalized_hash, slot, attributes),
            f"execute-{slot}",
        )
        return None

    def rotate_finality(self, slot: int) -> None:
        last = self.finalized_hash
        self.finalized_hash = self.next_finalized
        self.safe_hash = self.finalized_hash
        self.next_finalized = self.chain.current_hash()
        logger.info(
            f"Finalized block updated: slot={slot}, last=0x{last.hex()}, "
            f"new=0x{self.finalized_hash.hex()}, next=0x{self.next_finalized.hex()}"
        )

    def _take_pending(self, slot: int) -> Optional[PendingProposal]:
        """Non-blocking receive on the payload id handoff."""
        pending, self._pending = self._pending, None
        if pending is not None and pending.slot != slot:
            logger.warning(
                f"Dropping stale payload id 0x{pending.payload_id.hex()} "
                f"requested for slot {pending.slot}, now at slot {slot}"
            )
            return None
        return pending

    @property
    def pending_proposal(self) -> Optional[PendingProposal]:
        return self._pending

    # -------------------------------------------------------------------------
    # Background steps
    # -------------------------------------------------------------------------

    def _invalid_payload(self) -> ExecutionPayload:
        head = self.chain.current_block()
        return ExecutionPayload(
            parent_hash=Hash32(head.hash),
            fee_recipient=Bytes20(b"\x00" * 20),
            block_number=uint64(head.number),
            gas_limit=uint64(head.header.gas_limit),
            gas_used=uint64(0),
            timestamp=uint64(head.header.timestamp + 1),
            base_fee_per_gas=uint256(head.header.base_fee_per_gas),
            block_hash=Hash32(INVALID_BLOCK_HASH),
        )

    async def send_invalid_payload(self, payload: ExecutionPayload) -> None:
        try:
            status = await self.engine.new_payload_v1(payload)
        except TransportError as e:
            logger.warning(f"Invalid-hash payload was not delivered: {e}")
            return
        logger.info(f"Engine answered invalid-hash payload with {status.status.value}")

    def make_payload_attributes(self, slot: int) -> PayloadAttributes:
        return PayloadAttributes(
            timestamp=self.slot_timestamp(slot),
            prev_randao=self.rng.randbytes(32),
            suggested_fee_recipient=SUGGESTED_FEE_RECIPIENT,
        )

    async def mock_execution(self, block: Block) -> None:
        """Hand a locally built block to the engine."""
        payload = block_to_payload(block)
        try:
            status = await self.engine.new_payload_v1(payload)
        except TransportError as e:
            logger.error(f"Failed to execute block 0x{block.hash.hex()}: {e}")
            return
        if status.status != PayloadStatusEnum.VALID:
            logger.warning(
                f"Engine did not accept external block 0x{block.hash.hex()}: "
                f"{status.status.value} {status.validation_error or ''}".rstrip()
            )

    async def execute_and_update(
        self,
        block: Block,
        safe: bytes,
        final: bytes,
        slot: int,
        attributes: Optional[PayloadAttributes] = None,
    ) -> None:
        """newPayload for the block, then forkchoiceUpdated, requesting a build if attributes are set."""
        await self.mock_execution(block)
        response = await self.engine.forkchoice_updated_v1(
            ForkchoiceState(block.hash, safe, final), attributes
        )
        if not response.payload_status.is_valid:
            raise ConsistencyError(
                f"Update not considered valid: status={response.payload_status.status.value}, "
                f"head=0x{block.hash.hex()}"
            )
        if response.payload_id is not None:
            self._pending = PendingProposal(response.payload_id, slot + 1)

    async def get_mock_proposal(self, pending: PendingProposal, slot: int) -> ExecutionPayload:
        """Fetch the block to propose, from the builder relay if one is configured."""
        response = await self.engine.get_payload_v1(pending.payload_id)
        if self.builder is None:
            return response.execution_payload

        try:
            await self.builder.submit_payload(response.execution_payload)
        except BuilderAPIError as e:
            logger.warning(f"Relay did not take the engine payload, asking for a header anyway: {e}")

        signed_bid = await self.builder.get_header(slot, self.chain.current_hash(), self.pubkey)
        bid = signed_bid.message
        if not verify_signature(bid, bytes(bid.pubkey), bytes(signed_bid.signature), self.builder_domain):
            raise VerificationError(f"bid signature does not verify for slot {slot}")

        block = BlindedBeaconBlock(
            slot=uint64(slot),
            proposer_index=uint64(PROPOSER_INDEX),
            body=BlindedBeaconBlockBody(
                eth1_data=Eth1Data(),
                sync_aggregate=SyncAggregate(),
                execution_payload_header=bid.header,
            ),
        )
        signature = sign_object(self.sk, block, self.proposer_domain)
        payload = await self.builder.get_payload(
            SignedBlindedBeaconBlock(message=block, signature=BLSSignature(signature))
        )
        if bytes(payload.block_hash) != bytes(bid.header.block_hash):
            raise ProtocolError(
                f"relay revealed payload 0x{bytes(payload.block_hash).hex()} "
                f"for header 0x{bytes(bid.header.block_hash).hex()}"
            )
        logger.info(f"Received payload from builder: hash=0x{bytes(payload.block_hash).hex()}")
        return payload

    async def mock_proposal(self, pending: PendingProposal, slot: int) -> None:
        """Retrieve, validate, import and execute the proposed payload."""
        payload = await self.get_mock_proposal(pending, slot)
        self.validate_timestamp(int(payload.timestamp), slot)
        block = self.chain.process_payload(payload)
        logger.debug(f"Processed payload in consensus mock world: block_hash=0x{block.hash.hex()}")
        metrics.record_block_produced("engine", block.number)

        status = await self.engine.new_payload_v1(payload)
        if status.status == PayloadStatusEnum.VALID:
            logger.debug(f"Processed payload in engine: block_hash=0x{block.hash.hex()}")
            return
        if status.status == PayloadStatusEnum.INVALID:
            raise ConsistencyError(
                f"Engine just produced payload 0x{block.hash.hex()} and failed to execute it after"
            )
        raise ConsistencyError(f"Unrecognized execution status {status.status.value}")

    async def register_with_builder(self) -> None:
        """Register the proposer key with the relay; failures are only logged."""
        registration = ValidatorRegistration(
            fee_recipient=Bytes20(SUGGESTED_FEE_RECIPIENT),
            gas_limit=uint64(self.chain.current_header().gas_limit),
            timestamp=uint64(int(time.time())),
            pubkey=BLSPubkey(self.pubkey),
        )
        signature = sign_object(self.sk, registration, self.builder_domain)
        try:
            await self.builder.register_validator(
                SignedValidatorRegistration(message=registration, signature=BLSSignature(signature))
            )
        except MergeMockError as e:
            logger.warning(f"Validator registration with builder failed: {e}")
