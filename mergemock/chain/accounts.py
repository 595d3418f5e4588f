"""Test accounts used to put sample transactions into mocked blocks."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from coincurve import PrivateKey

from .types import Transaction, keccak256
from ..exceptions import FatalSetupError

logger = logging.getLogger(__name__)

GWEI = 10**9
DUMMY_TX_GAS = 30000
DUMMY_TX_FEE_CAP = 5 * GWEI
DUMMY_TX_TIP_CAP = 2


@dataclass
class TestAccount:
    """A secp256k1 key and the address derived from it."""

    __test__ = False

    private_key: bytes

    @classmethod
    def from_hex(cls, key: str) -> "TestAccount":
        try:
            private_key = bytes.fromhex(key.strip().replace("0x", ""))
        except ValueError as e:
            raise FatalSetupError(f"test account key is not valid hex: {e}") from e
        if len(private_key) != 32:
            raise FatalSetupError(f"test account key must be 32 bytes, got {len(private_key)}")
        return cls(private_key)

    @property
    def address(self) -> bytes:
        public_key = PrivateKey(self.private_key).public_key.format(compressed=False)
        return keccak256(public_key[1:])[12:]


NonceLookup = Callable[[bytes], int]
TxCreatorFn = Callable[[int, NonceLookup, list[TestAccount]], list[Transaction]]


def dummy_tx_creator(chain_id: int, nonce_of: NonceLookup, accounts: list[TestAccount]) -> list[Transaction]:
    """One signed zero-value transfer from the first account to itself."""
    if not accounts:
        return []
    sender = accounts[0]
    address = sender.address
    tx = Transaction(
        chain_id=chain_id,
        nonce=nonce_of(address),
        max_priority_fee_per_gas=DUMMY_TX_TIP_CAP,
        max_fee_per_gas=DUMMY_TX_FEE_CAP,
        gas=DUMMY_TX_GAS,
        to=address,
        data=b"",
    )
    return [tx.sign(sender.private_key)]


class TransactionsCreator:
    """Pairs the test accounts with the function that turns them into transactions."""

    def __init__(self, accounts: list[TestAccount], creator: Optional[TxCreatorFn] = None):
        self.accounts = accounts
        self.creator = creator or dummy_tx_creator

    def __call__(self, chain_id: int, nonce_of: NonceLookup) -> list[Transaction]:
        return self.creator(chain_id, nonce_of, self.accounts)
