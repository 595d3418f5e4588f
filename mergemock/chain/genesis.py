"""Genesis configuration in the geth genesis.json format."""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from .types import Block, Header, EMPTY_LIST_ROOT, ZERO_HASH, commitment_root
from ..exceptions import FatalSetupError

logger = logging.getLogger(__name__)

INITIAL_BASE_FEE = 10**9


def parse_quantity(value, name: str) -> int:
    """Genesis numbers may be JSON integers, decimal strings or 0x-hex strings."""
    if isinstance(value, bool):
        raise FatalSetupError(f"genesis {name}: expected a number, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            if value.startswith(("0x", "0X")):
                return int(value, 16) if len(value) > 2 else 0
            return int(value)
        except ValueError as e:
            raise FatalSetupError(f"genesis {name}: invalid number {value!r}") from e
    raise FatalSetupError(f"genesis {name}: expected a number, got {value!r}")


def parse_hex(value: str, name: str, length: Optional[int] = None) -> bytes:
    try:
        data = bytes.fromhex(value[2:] if value.startswith("0x") else value)
    except (AttributeError, ValueError) as e:
        raise FatalSetupError(f"genesis {name}: invalid hex {value!r}") from e
    if length is not None and len(data) != length:
        raise FatalSetupError(f"genesis {name}: expected {length} bytes, got {len(data)}")
    return data


@dataclass
class AccountState:
    nonce: int = 0
    balance: int = 0


def state_root(accounts: dict[bytes, AccountState]) -> bytes:
    """Commitment over the sorted account set."""
    return commitment_root([
        [address, account.nonce, account.balance]
        for address, account in sorted(accounts.items())
    ])


@dataclass
class Genesis:
    """The subset of a geth genesis file the mock chain understands."""

    chain_id: int
    terminal_total_difficulty: Optional[int]
    difficulty: int
    gas_limit: int
    base_fee_per_gas: int
    timestamp: int
    extra_data: bytes
    coinbase: bytes = b"\x00" * 20
    mix_digest: bytes = ZERO_HASH
    alloc: dict[bytes, AccountState] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "Genesis":
        if not isinstance(data, dict):
            raise FatalSetupError("genesis must be a JSON object")
        config = data.get("config")
        if not isinstance(config, dict) or "chainId" not in config:
            raise FatalSetupError("genesis config.chainId is required")

        ttd = config.get("terminalTotalDifficulty")
        alloc = {}
        for address_hex, account in (data.get("alloc") or {}).items():
            address = parse_hex(address_hex, "alloc address", 20)
            alloc[address] = AccountState(
                nonce=parse_quantity(account.get("nonce", 0), "alloc nonce"),
                balance=parse_quantity(account.get("balance", 0), "alloc balance"),
            )

        return cls(
            chain_id=parse_quantity(config["chainId"], "chainId"),
            terminal_total_difficulty=(
                parse_quantity(ttd, "terminalTotalDifficulty") if ttd is not None else None
            ),
            difficulty=parse_quantity(data.get("difficulty", 0), "difficulty"),
            gas_limit=parse_quantity(data.get("gasLimit", 30_000_000), "gasLimit"),
            base_fee_per_gas=parse_quantity(
                data.get("baseFeePerGas", INITIAL_BASE_FEE), "baseFeePerGas"
            ),
            timestamp=parse_quantity(data.get("timestamp", 0), "timestamp"),
            extra_data=parse_hex(data.get("extraData", "0x"), "extraData"),
            coinbase=parse_hex(data.get("coinbase", "0x" + "00" * 20), "coinbase", 20),
            mix_digest=parse_hex(data.get("mixHash", "0x" + "00" * 32), "mixHash", 32),
            alloc=alloc,
        )

    def to_block(self) -> Block:
        header = Header(
            parent_hash=ZERO_HASH,
            coinbase=self.coinbase,
            state_root=state_root(self.alloc),
            transactions_root=EMPTY_LIST_ROOT,
            receipts_root=EMPTY_LIST_ROOT,
            number=0,
            gas_limit=self.gas_limit,
            gas_used=0,
            timestamp=self.timestamp,
            base_fee_per_gas=self.base_fee_per_gas,
            difficulty=self.difficulty,
            extra_data=self.extra_data,
            mix_digest=self.mix_digest,
        )
        return Block(header=header)


def load_genesis(path: str) -> Genesis:
    """Load a genesis file, raising FatalSetupError if it is unreadable or malformed."""
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise FatalSetupError(f"Unable to load genesis {path}: {e}") from e
    genesis = Genesis.from_dict(data)
    logger.info(
        f"Loaded genesis {path}: chain_id={genesis.chain_id}, "
        f"ttd={genesis.terminal_total_difficulty}, accounts={len(genesis.alloc)}"
    )
    return genesis
