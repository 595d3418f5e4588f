"""Mock execution chain: the local view of the chain the consensus mock drives.

Only the bookkeeping of a real client is mocked: blocks are linked by
keccak hashes of their RLP headers, transfers move balances and bump
nonces, every transaction costs a flat 21000 gas, and the state,
transaction and receipt roots are keccak commitments instead of tries.
"""

import logging
from typing import Optional

from .accounts import TransactionsCreator
from .genesis import AccountState, Genesis, load_genesis, state_root
from .store import ChainStore
from .types import (
    Block,
    Header,
    Transaction,
    EMPTY_UNCLE_HASH,
    ZERO_HASH,
    commitment_root,
)
from ..exceptions import FatalSetupError, NotFoundError, ProtocolError
from ..spec.types import ExecutionPayload

logger = logging.getLogger(__name__)

TX_GAS = 21000
ELASTICITY_MULTIPLIER = 2
BASE_FEE_CHANGE_DENOMINATOR = 8
MIN_POW_DIFFICULTY = 131072


def calc_base_fee(parent: Header) -> int:
    """EIP-1559 base fee of a child of parent."""
    target = parent.gas_limit // ELASTICITY_MULTIPLIER
    if target == 0 or parent.gas_used == target:
        return parent.base_fee_per_gas
    if parent.gas_used > target:
        delta = parent.base_fee_per_gas * (parent.gas_used - target) // target // BASE_FEE_CHANGE_DENOMINATOR
        return parent.base_fee_per_gas + max(delta, 1)
    delta = parent.base_fee_per_gas * (target - parent.gas_used) // target // BASE_FEE_CHANGE_DENOMINATOR
    return max(parent.base_fee_per_gas - delta, 0)


class MockChain:
    """Chain of mocked execution blocks on top of a genesis file."""

    def __init__(self, genesis_path: str, data_dir: str = "", genesis: Optional[Genesis] = None):
        self.genesis = genesis or load_genesis(genesis_path)
        self.store = ChainStore(data_dir)
        self.chain_id = self.genesis.chain_id

        genesis_block = self.genesis.to_block()
        if self.store.is_empty():
            self.store.put_block(genesis_block, self.genesis.difficulty, dict(self.genesis.alloc))
            self.store.set_head(genesis_block)
            logger.info(f"Initialized chain with genesis 0x{genesis_block.hash.hex()}")
        elif self.store.get_canonical_hash(0) != genesis_block.hash:
            raise FatalSetupError("database genesis does not match the genesis file")
        self.genesis_hash = genesis_block.hash

    @property
    def terminal_total_difficulty(self) -> Optional[int]:
        return self.genesis.terminal_total_difficulty

    def current_block(self) -> Block:
        block = self.store.get_block(self.store.head_hash)
        if block is None:
            raise NotFoundError("head block missing from store")
        return block

    def current_header(self) -> Header:
        return self.current_block().header

    def current_hash(self) -> bytes:
        return self.store.head_hash

    def current_td(self) -> int:
        return self.store.get_td(self.store.head_hash)

    def get_block_by_hash(self, block_hash: bytes) -> Optional[Block]:
        return self.store.get_block(block_hash)

    def get_header_by_hash(self, block_hash: bytes) -> Optional[Header]:
        block = self.store.get_block(block_hash)
        return block.header if block else None

    def get_block_by_number(self, number: int) -> Optional[Block]:
        block_hash = self.store.get_canonical_hash(number)
        return self.store.get_block(block_hash) if block_hash else None

    def get_header_by_number(self, number: int) -> Optional[Header]:
        block = self.get_block_by_number(number)
        return block.header if block else None

    def _parent(self, parent_hash: bytes) -> Block:
        parent = self.store.get_block(parent_hash)
        if parent is None:
            raise NotFoundError(f"unknown parent 0x{parent_hash.hex()}")
        return parent

    def _apply_transactions(
        self,
        accounts: dict[bytes, AccountState],
        transactions: list[Transaction],
        coinbase: bytes,
        base_fee: int,
    ) -> tuple[int, list]:
        """Apply transfers to accounts; returns gas used and receipt entries."""
        gas_used = 0
        receipts = []
        for tx in transactions:
            sender = tx.sender()
            sender_state = accounts.setdefault(sender, AccountState())
            tip = min(tx.max_priority_fee_per_gas, max(tx.max_fee_per_gas - base_fee, 0))
            cost = tx.value + TX_GAS * (base_fee + tip)
            sender_state.balance = max(sender_state.balance - cost, 0)
            sender_state.nonce += 1
            recipient = accounts.setdefault(tx.to, AccountState())
            recipient.balance += tx.value
            accounts.setdefault(coinbase, AccountState()).balance += TX_GAS * tip
            gas_used += TX_GAS
            receipts.append([1, gas_used, tx.hash])
        return gas_used, receipts

    def _insert(self, block: Block, accounts: dict[bytes, AccountState], td: int) -> None:
        self.store.put_block(block, td, accounts)
        self.store.set_head(block)

    def _build(
        self,
        parent: Block,
        coinbase: bytes,
        timestamp: int,
        gas_limit: int,
        transactions: list[Transaction],
        mix_digest: bytes,
        extra_data: bytes,
        difficulty: int,
        uncles: Optional[list[Header]] = None,
    ) -> tuple[Block, dict[bytes, AccountState]]:
        accounts = self.store.get_accounts(parent.hash)
        base_fee = calc_base_fee(parent.header)
        gas_used, receipts = self._apply_transactions(accounts, transactions, coinbase, base_fee)
        uncles = uncles or []
        header = Header(
            parent_hash=parent.hash,
            coinbase=coinbase,
            state_root=state_root(accounts),
            transactions_root=commitment_root([tx.encode() for tx in transactions]),
            receipts_root=commitment_root(receipts),
            number=parent.number + 1,
            gas_limit=gas_limit,
            gas_used=gas_used,
            timestamp=timestamp,
            base_fee_per_gas=base_fee,
            difficulty=difficulty,
            extra_data=extra_data,
            mix_digest=mix_digest,
            uncle_hash=commitment_root([u.to_rlp_list() for u in uncles]) if uncles else EMPTY_UNCLE_HASH,
        )
        return Block(header=header, transactions=transactions, uncles=uncles), accounts

    def mine_block(self, parent: Block, creator: Optional[TransactionsCreator] = None) -> Block:
        """Build a proof-of-work block on parent and make it the head.

        Difficulty stays constant and no seal is computed.
        """
        parent_block = self._parent(parent.hash)
        transactions = []
        if creator is not None:
            accounts = self.store.get_accounts(parent_block.hash)
            transactions = creator(self.chain_id, lambda a: accounts.get(a, AccountState()).nonce)
        difficulty = max(parent.header.difficulty, MIN_POW_DIFFICULTY)
        block, accounts = self._build(
            parent_block,
            coinbase=self.genesis.coinbase,
            timestamp=parent.header.timestamp + 1,
            gas_limit=parent.header.gas_limit,
            transactions=transactions,
            mix_digest=ZERO_HASH,
            extra_data=b"",
            difficulty=difficulty,
        )
        td = self.store.get_td(parent_block.hash) + difficulty
        self._insert(block, accounts, td)
        logger.debug(f"Mined PoW block {block.number} 0x{block.hash.hex()}, td={td}")
        return block

    def add_new_block(
        self,
        parent_hash: bytes,
        coinbase: bytes,
        timestamp: int,
        gas_limit: int,
        creator: Optional[TransactionsCreator],
        mix_digest: bytes,
        extra_data: bytes,
        uncles: Optional[list[Header]] = None,
        set_head: bool = True,
    ) -> Block:
        """Build a proof-of-stake block (difficulty 0) on parent_hash."""
        parent = self._parent(parent_hash)
        transactions = []
        if creator is not None:
            accounts = self.store.get_accounts(parent.hash)
            transactions = creator(self.chain_id, lambda a: accounts.get(a, AccountState()).nonce)
        block, accounts = self._build(
            parent,
            coinbase=coinbase,
            timestamp=timestamp,
            gas_limit=gas_limit,
            transactions=transactions,
            mix_digest=mix_digest,
            extra_data=extra_data,
            difficulty=0,
            uncles=uncles,
        )
        td = self.store.get_td(parent.hash)
        if set_head:
            self._insert(block, accounts, td)
        else:
            self.store.put_block(block, td, accounts)
        return block

    def process_payload(self, payload: ExecutionPayload) -> Block:
        """Import an execution payload and make it the head.

        The block is stored under the hash the payload declares.
        """
        parent = self._parent(bytes(payload.parent_hash))
        if int(payload.block_number) != parent.number + 1:
            raise ProtocolError(
                f"payload number {int(payload.block_number)} does not extend parent {parent.number}"
            )
        transactions = [Transaction.decode(bytes(tx)) for tx in payload.transactions]
        accounts = self.store.get_accounts(parent.hash)
        coinbase = bytes(payload.fee_recipient)
        self._apply_transactions(accounts, transactions, coinbase, int(payload.base_fee_per_gas))

        header = Header(
            parent_hash=parent.hash,
            coinbase=coinbase,
            state_root=bytes(payload.state_root),
            transactions_root=commitment_root([tx.encode() for tx in transactions]),
            receipts_root=bytes(payload.receipts_root),
            number=int(payload.block_number),
            gas_limit=int(payload.gas_limit),
            gas_used=int(payload.gas_used),
            timestamp=int(payload.timestamp),
            base_fee_per_gas=int(payload.base_fee_per_gas),
            extra_data=bytes(payload.extra_data),
            mix_digest=bytes(payload.prev_randao),
            bloom=bytes(payload.logs_bloom),
        )
        block = Block(header=header, transactions=transactions, declared_hash=bytes(payload.block_hash))
        self._insert(block, accounts, self.store.get_td(parent.hash))
        return block

    def close(self) -> None:
        self.store.close()
