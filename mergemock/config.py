"""Configuration for the consensus mock and the relay mock."""

import time
from dataclasses import dataclass, field
from typing import Optional

from .exceptions import FatalSetupError
from .spec.constants import BELLATRIX_FORK_VERSION, GENESIS_FORK_VERSION

MIN_SLOT_TIME = 0.05
ZERO_ROOT_HEX = "0x" + "00" * 32
TRACK_LATEST = "latest"
TRACK_PER_PAYLOAD = "per-payload"
PROPOSAL_TRACKING_MODES = (TRACK_LATEST, TRACK_PER_PAYLOAD)


def _hex_to_fixed_bytes(value: str, length: int, name: str) -> bytes:
    try:
        data = bytes.fromhex(value.strip().replace("0x", ""))
    except ValueError as e:
        raise FatalSetupError(f"{name} is not valid hex: {e}") from e
    if len(data) != length:
        raise FatalSetupError(f"{name} must be {length} bytes, got {len(data)}")
    return data


@dataclass
class ConsensusBehavior:
    """Probabilities and knobs that shape the mocked chain."""

    gap_freq: float = 0.05
    invalid_hash_freq: float = 0.0
    reorg_freq: float = 0.05
    reorg_max_depth: int = 64
    proposal_freq: float = 0.5
    seed: Optional[int] = None
    test_account_keys: list[str] = field(default_factory=list)

    def validate(self) -> None:
        for name in ("gap_freq", "invalid_hash_freq", "reorg_freq", "proposal_freq"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise FatalSetupError(f"{name} must be within [0, 1], got {value}")
        if self.reorg_max_depth < 0:
            raise FatalSetupError(f"reorg_max_depth must not be negative, got {self.reorg_max_depth}")


@dataclass
class ConsensusConfig:
    """Consensus mock configuration."""

    beacon_genesis_time: Optional[int] = None
    slot_time: float = 12.0
    slots_per_epoch: int = 32
    engine_addr: str = "http://127.0.0.1:8551"
    builder_addr: str = ""
    data_dir: str = ""
    genesis_path: str = "genesis.json"
    jwt_secret_path: str = "jwt.hex"
    enode: str = ""
    slot_bound: int = 0
    genesis_validators_root: str = ZERO_ROOT_HEX
    bellatrix_fork_version: str = "0x" + BELLATRIX_FORK_VERSION.hex()
    signing_domains: bool = False
    metrics_port: int = 0
    behavior: ConsensusBehavior = field(default_factory=ConsensusBehavior)

    def __post_init__(self):
        if self.beacon_genesis_time is None:
            self.beacon_genesis_time = int(time.time()) + 5

    def validate(self) -> None:
        if self.slot_time < MIN_SLOT_TIME:
            raise FatalSetupError(f"slot time {self.slot_time}s is too small")
        if self.slots_per_epoch <= 0:
            raise FatalSetupError(f"slots per epoch must be positive, got {self.slots_per_epoch}")
        if self.slot_bound < 0:
            raise FatalSetupError(f"slot bound must not be negative, got {self.slot_bound}")
        self.behavior.validate()
        self.genesis_validators_root_bytes
        self.bellatrix_fork_version_bytes

    @property
    def jwt_secret(self) -> bytes:
        try:
            with open(self.jwt_secret_path, "rb") as f:
                raw = f.read().decode().strip()
        except (OSError, UnicodeDecodeError) as e:
            raise FatalSetupError(f"Unable to read JWT secret {self.jwt_secret_path}: {e}") from e
        try:
            secret = bytes.fromhex(raw.replace("0x", ""))
        except ValueError as e:
            raise FatalSetupError(f"JWT secret {self.jwt_secret_path} is not valid hex") from e
        if not secret:
            raise FatalSetupError(f"JWT secret {self.jwt_secret_path} is empty")
        return secret

    @property
    def genesis_validators_root_bytes(self) -> bytes:
        return _hex_to_fixed_bytes(self.genesis_validators_root, 32, "genesis validators root")

    @property
    def bellatrix_fork_version_bytes(self) -> bytes:
        return _hex_to_fixed_bytes(self.bellatrix_fork_version, 4, "bellatrix fork version")


@dataclass
class RelayConfig:
    """Relay mock configuration."""

    listen_host: str = "127.0.0.1"
    listen_port: int = 28545
    genesis_validators_root: str = ZERO_ROOT_HEX
    genesis_fork_version: str = "0x" + GENESIS_FORK_VERSION.hex()
    bellatrix_fork_version: str = "0x" + BELLATRIX_FORK_VERSION.hex()
    signing_domains: bool = False
    proposal_tracking: str = TRACK_LATEST
    cache_capacity: int = 10
    keepalive_timeout: float = 300.0
    metrics_port: int = 0

    def validate(self) -> None:
        if self.proposal_tracking not in PROPOSAL_TRACKING_MODES:
            raise FatalSetupError(
                f"proposal tracking must be one of {PROPOSAL_TRACKING_MODES}, "
                f"got {self.proposal_tracking}"
            )
        if self.cache_capacity <= 0:
            raise FatalSetupError(f"cache capacity must be positive, got {self.cache_capacity}")
        self.genesis_validators_root_bytes
        self.genesis_fork_version_bytes
        self.bellatrix_fork_version_bytes

    @property
    def genesis_validators_root_bytes(self) -> bytes:
        return _hex_to_fixed_bytes(self.genesis_validators_root, 32, "genesis validators root")

    @property
    def genesis_fork_version_bytes(self) -> bytes:
        return _hex_to_fixed_bytes(self.genesis_fork_version, 4, "genesis fork version")

    @property
    def bellatrix_fork_version_bytes(self) -> bytes:
        return _hex_to_fixed_bytes(self.bellatrix_fork_version, 4, "bellatrix fork version")
