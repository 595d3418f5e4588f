"""CLI entry point for mergemock."""

import asyncio
import logging
import signal
import sys
from typing import Optional

import click

from .config import ConsensusBehavior, ConsensusConfig, RelayConfig
from .exceptions import FatalSetupError


def setup_logging(level: str) -> None:
    """Set up logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if level.upper() != "DEBUG":
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def _install_signal_handlers(callback) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, callback)


log_level_option = click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level",
    envvar="MERGEMOCK_LOG_LEVEL",
)

signing_domains_option = click.option(
    "--signing-domains/--no-signing-domains",
    default=False,
    help="Sign builder API messages over domain signing roots instead of bare hash tree roots",
    envvar="MERGEMOCK_SIGNING_DOMAINS",
)

metrics_port_option = click.option(
    "--metrics-port",
    default=0,
    type=int,
    help="Port for the Prometheus metrics server (0 disables it)",
    envvar="MERGEMOCK_METRICS_PORT",
)


@click.group()
@click.version_option(package_name="mergemock")
def cli():
    """mergemock - Mock consensus and builder relay for execution clients."""
    pass


@cli.command()
@click.option(
    "--beacon-genesis-time",
    type=int,
    default=None,
    help="Beacon genesis time as a unix timestamp (default: now + 5 seconds)",
    envvar="MERGEMOCK_BEACON_GENESIS_TIME",
)
@click.option(
    "--slot-time",
    default=12.0,
    type=float,
    help="Slot duration in seconds",
    envvar="MERGEMOCK_SLOT_TIME",
)
@click.option(
    "--slots-per-epoch",
    default=32,
    type=int,
    help="Slots per epoch",
    envvar="MERGEMOCK_SLOTS_PER_EPOCH",
)
@click.option(
    "--engine",
    default="http://127.0.0.1:8551",
    help="Engine API URL of the execution client",
    envvar="MERGEMOCK_ENGINE",
)
@click.option(
    "--builder",
    default="",
    help="Builder relay URL (disabled when empty)",
    envvar="MERGEMOCK_BUILDER",
)
@click.option(
    "--datadir",
    default="",
    type=click.Path(),
    help="Directory for the mock chain database (in memory when empty)",
    envvar="MERGEMOCK_DATADIR",
)
@click.option(
    "--genesis",
    default="genesis.json",
    type=click.Path(),
    help="Path to the execution genesis file",
    envvar="MERGEMOCK_GENESIS",
)
@click.option(
    "--jwt-secret",
    default="jwt.hex",
    type=click.Path(),
    help="Path to JWT secret file for Engine API authentication",
    envvar="MERGEMOCK_JWT_SECRET",
)
@click.option(
    "--enode",
    default="",
    help="Enode of the execution client to feed proof-of-work blocks to",
    envvar="MERGEMOCK_ENODE",
)
@click.option(
    "--slot-bound",
    default=0,
    type=int,
    help="Stop after this many slots (0 runs forever)",
    envvar="MERGEMOCK_SLOT_BOUND",
)
@click.option(
    "--genesis-validators-root",
    default="0x" + "00" * 32,
    help="Genesis validators root used in the proposer signing domain",
    envvar="MERGEMOCK_GENESIS_VALIDATORS_ROOT",
)
@click.option(
    "--bellatrix-fork-version",
    default="0x02000000",
    help="Bellatrix fork version used in the proposer signing domain",
    envvar="MERGEMOCK_BELLATRIX_FORK_VERSION",
)
@click.option("--gap-freq", default=0.05, type=float, help="Probability of a gap slot",
              envvar="MERGEMOCK_GAP_FREQ")
@click.option("--invalid-hash-freq", default=0.0, type=float,
              help="Probability of sending a payload with an invalid block hash",
              envvar="MERGEMOCK_INVALID_HASH_FREQ")
@click.option("--reorg-freq", default=0.05, type=float, help="Probability of a reorg",
              envvar="MERGEMOCK_REORG_FREQ")
@click.option("--reorg-max-depth", default=64, type=int, help="Maximum reorg depth",
              envvar="MERGEMOCK_REORG_MAX_DEPTH")
@click.option("--proposal-freq", default=0.5, type=float,
              help="Probability of asking the engine to build the next block",
              envvar="MERGEMOCK_PROPOSAL_FREQ")
@click.option("--seed", default=None, type=int, help="Seed for the random number generator",
              envvar="MERGEMOCK_SEED")
@click.option(
    "--test-account",
    "test_accounts",
    multiple=True,
    help="Hex private key of an account that sends sample transactions (repeatable)",
    envvar="MERGEMOCK_TEST_ACCOUNTS",
)
@signing_domains_option
@metrics_port_option
@log_level_option
def consensus(
    beacon_genesis_time: Optional[int],
    slot_time: float,
    slots_per_epoch: int,
    engine: str,
    builder: str,
    datadir: str,
    genesis: str,
    jwt_secret: str,
    enode: str,
    slot_bound: int,
    genesis_validators_root: str,
    bellatrix_fork_version: str,
    signing_domains: bool,
    gap_freq: float,
    invalid_hash_freq: float,
    reorg_freq: float,
    reorg_max_depth: int,
    proposal_freq: float,
    seed: Optional[int],
    test_accounts: tuple[str, ...],
    metrics_port: int,
    log_level: str,
):
    """Run the consensus mock against an execution client."""
    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    config = ConsensusConfig(
        beacon_genesis_time=beacon_genesis_time,
        slot_time=slot_time,
        slots_per_epoch=slots_per_epoch,
        engine_addr=engine,
        builder_addr=builder,
        data_dir=datadir,
        genesis_path=genesis,
        jwt_secret_path=jwt_secret,
        enode=enode,
        slot_bound=slot_bound,
        genesis_validators_root=genesis_validators_root,
        bellatrix_fork_version=bellatrix_fork_version,
        signing_domains=signing_domains,
        metrics_port=metrics_port,
        behavior=ConsensusBehavior(
            gap_freq=gap_freq,
            invalid_hash_freq=invalid_hash_freq,
            reorg_freq=reorg_freq,
            reorg_max_depth=reorg_max_depth,
            proposal_freq=proposal_freq,
            seed=seed,
            test_account_keys=list(test_accounts),
        ),
    )

    logger.info("Starting consensus mock")
    logger.info(f"  Engine API: {engine}")
    logger.info(f"  Genesis time: {config.beacon_genesis_time}")
    logger.info(f"  Slot time: {slot_time}s, slots per epoch: {slots_per_epoch}")
    if builder:
        logger.info(f"  Builder: {builder}")
    if slot_bound:
        logger.info(f"  Slot bound: {slot_bound}")

    try:
        exit_code = asyncio.run(run_consensus(config))
    except FatalSetupError as e:
        logger.error(f"Setup failed: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Shutting down")
        sys.exit(0)
    sys.exit(exit_code)


async def run_consensus(config: ConsensusConfig) -> int:
    """Wire the consensus mock together and run it until it stops."""
    from . import metrics
    from .builder import BuilderClient
    from .chain import MockChain
    from .consensus import ConsensusMock
    from .engine import EngineAPIClient

    config.validate()
    jwt_secret = config.jwt_secret
    chain = MockChain(config.genesis_path, config.data_dir)
    engine = EngineAPIClient(config.engine_addr, jwt_secret)
    builder = BuilderClient(config.builder_addr) if config.builder_addr else None
    if config.metrics_port:
        metrics.start_metrics_server(config.metrics_port)

    mock = ConsensusMock(config, engine, chain, builder=builder)
    _install_signal_handlers(mock.close)
    return await mock.run()


@cli.command()
@click.option(
    "--listen-addr",
    default="127.0.0.1",
    help="Host to bind the relay HTTP server",
    envvar="MERGEMOCK_LISTEN_ADDR",
)
@click.option(
    "--listen-port",
    default=28545,
    type=int,
    help="Port for the relay HTTP server",
    envvar="MERGEMOCK_LISTEN_PORT",
)
@click.option(
    "--genesis-validators-root",
    default="0x" + "00" * 32,
    help="Genesis validators root used in the proposer signing domain",
    envvar="MERGEMOCK_GENESIS_VALIDATORS_ROOT",
)
@click.option(
    "--genesis-fork-version",
    default="0x00000000",
    help="Genesis fork version used in the builder signing domain",
    envvar="MERGEMOCK_GENESIS_FORK_VERSION",
)
@click.option(
    "--bellatrix-fork-version",
    default="0x02000000",
    help="Bellatrix fork version used in the proposer signing domain",
    envvar="MERGEMOCK_BELLATRIX_FORK_VERSION",
)
@click.option(
    "--proposal-tracking",
    default="latest",
    type=click.Choice(["latest", "per-payload"]),
    help="Remember only the latest get-header pubkey, or one per returned payload",
    envvar="MERGEMOCK_PROPOSAL_TRACKING",
)
@click.option(
    "--cache-capacity",
    default=10,
    type=int,
    help="Number of payloads kept in each relay cache",
    envvar="MERGEMOCK_CACHE_CAPACITY",
)
@click.option(
    "--keepalive-timeout",
    default=300.0,
    type=float,
    help="HTTP keep-alive timeout in seconds",
    envvar="MERGEMOCK_KEEPALIVE_TIMEOUT",
)
@signing_domains_option
@metrics_port_option
@log_level_option
def relay(
    listen_addr: str,
    listen_port: int,
    genesis_validators_root: str,
    genesis_fork_version: str,
    bellatrix_fork_version: str,
    signing_domains: bool,
    proposal_tracking: str,
    cache_capacity: int,
    keepalive_timeout: float,
    metrics_port: int,
    log_level: str,
):
    """Run the builder relay mock."""
    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    config = RelayConfig(
        listen_host=listen_addr,
        listen_port=listen_port,
        genesis_validators_root=genesis_validators_root,
        genesis_fork_version=genesis_fork_version,
        bellatrix_fork_version=bellatrix_fork_version,
        signing_domains=signing_domains,
        proposal_tracking=proposal_tracking,
        cache_capacity=cache_capacity,
        keepalive_timeout=keepalive_timeout,
        metrics_port=metrics_port,
    )

    logger.info("Starting relay mock")
    logger.info(f"  Listen: {listen_addr}:{listen_port}")
    logger.info(f"  Proposal tracking: {proposal_tracking}")

    try:
        asyncio.run(run_relay(config))
    except FatalSetupError as e:
        logger.error(f"Setup failed: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Shutting down")
    sys.exit(0)


async def run_relay(config: RelayConfig) -> None:
    """Serve the relay until SIGINT or SIGTERM."""
    from . import metrics
    from .builder import RelayBackend, RelayServer

    backend = RelayBackend(config)
    server = RelayServer(
        backend,
        host=config.listen_host,
        port=config.listen_port,
        keepalive_timeout=config.keepalive_timeout,
    )
    if config.metrics_port:
        metrics.start_metrics_server(config.metrics_port)

    stop = asyncio.Event()
    _install_signal_handlers(stop.set)
    await server.start()
    try:
        await stop.wait()
    finally:
        await server.stop()


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
