"""End-to-end runs of the consensus mock against a fake engine and the relay mock."""

import asyncio

import pytest

from aiohttp.test_utils import TestServer

from mergemock.builder import BuilderClient, RelayBackend, RelayServer
from mergemock.config import ConsensusBehavior, ConsensusConfig, RelayConfig
from mergemock.consensus import ConsensusMock, SlotClock
from mergemock.engine import EngineAPIClient

from conftest import JWT_SECRET, FakeEngine, FakeTime

GENESIS_TIME = 1000
SLOT_BOUND = 5


def make_config(proposal_freq: float, signing_domains: bool = False) -> ConsensusConfig:
    return ConsensusConfig(
        beacon_genesis_time=GENESIS_TIME,
        slot_time=1.0,
        slots_per_epoch=4,
        slot_bound=SLOT_BOUND,
        signing_domains=signing_domains,
        behavior=ConsensusBehavior(
            gap_freq=0.0,
            invalid_hash_freq=0.0,
            reorg_freq=0.0,
            proposal_freq=proposal_freq,
            seed=3,
        ),
    )


async def drive(chain, config, engine, builder_url=None):
    """Run the mock to its slot bound on a clock that only moves when it sleeps."""
    now = FakeTime(GENESIS_TIME - 0.5)
    clock = SlotClock(GENESIS_TIME, config.slot_time, time_fn=now)
    holder = {}

    async def sleep(delay):
        # Finish the previous slot's engine calls before time moves on.
        await holder["driver"].tasks.wait()
        now.now += delay

    async with TestServer(engine.app) as server:
        client = EngineAPIClient(str(server.make_url("/")), JWT_SECRET)
        builder = BuilderClient(builder_url) if builder_url else None
        driver = ConsensusMock(
            config, client, chain, builder=builder, clock=clock, sleep=sleep, secret_key=7
        )
        holder["driver"] = driver
        exit_code = await asyncio.wait_for(driver.run(), 120)
        return exit_code, driver


def collect_chain(chain):
    blocks = []
    block = chain.current_block()
    while block.number > 0:
        blocks.append(block)
        block = chain.get_block_by_hash(block.header.parent_hash)
    return list(reversed(blocks))


def test_run_to_slot_bound(genesis_path):
    from mergemock.chain import MockChain

    chain = MockChain(str(genesis_path))
    engine = FakeEngine(chain.genesis_hash)
    # Keep a reference to the blocks before run() closes the chain.
    seen = []
    original = chain.close

    def close():
        seen.extend(collect_chain(chain))
        original()

    chain.close = close
    exit_code, driver = asyncio.run(drive(chain, make_config(proposal_freq=0.5), engine))

    assert exit_code == 0
    assert [block.number for block in seen] == [1, 2, 3, 4, 5]
    assert [block.header.timestamp for block in seen] == [GENESIS_TIME + s for s in range(1, 6)]
    assert driver.tasks.failed_count == 0
    executed = {params[0]["blockHash"] for params in engine.params_of("engine_newPayloadV1")}
    assert {"0x" + block.hash.hex() for block in seen} <= executed


@pytest.mark.parametrize("signing_domains", [False, True])
def test_run_through_relay(genesis_path, relay_key, signing_domains):
    from mergemock.chain import MockChain

    async def run():
        chain = MockChain(str(genesis_path))
        engine = FakeEngine(chain.genesis_hash)
        backend = RelayBackend(RelayConfig(signing_domains=signing_domains), secret_key=relay_key)
        relay = RelayServer(backend)
        numbers = []
        original = chain.close

        def close():
            numbers.extend(block.number for block in collect_chain(chain))
            original()

        chain.close = close
        async with TestServer(relay.app) as relay_server:
            exit_code, driver = await drive(
                chain, make_config(proposal_freq=1.0, signing_domains=signing_domains), engine,
                builder_url=str(relay_server.make_url("")),
            )
        return exit_code, driver, backend, engine, numbers

    exit_code, driver, backend, engine, numbers = asyncio.run(run())

    assert exit_code == 0
    assert numbers == [1, 2, 3, 4, 5]
    assert backend.is_registered(driver.pubkey)
    assert (driver.builder_domain is None) == (not signing_domains)
    assert len(engine.params_of("engine_getPayloadV1")) >= 2
    assert len(backend.recent_payloads) == len(engine.params_of("engine_getPayloadV1"))
