"""Execution-layer block, header and transaction encodings (RLP)."""

from dataclasses import dataclass, field
from typing import Optional

import rlp
from coincurve import PrivateKey, PublicKey
from Crypto.Hash import keccak

from ..exceptions import ProtocolError

DYNAMIC_FEE_TX_TYPE = 0x02


def keccak256(data: bytes) -> bytes:
    """Compute the Keccak-256 hash used throughout the execution layer."""
    keccak_hash = keccak.new(digest_bits=256)
    keccak_hash.update(data)
    return keccak_hash.digest()


EMPTY_UNCLE_HASH = keccak256(rlp.encode([]))
EMPTY_LIST_ROOT = keccak256(rlp.encode([]))
EMPTY_BLOOM = b"\x00" * 256
ZERO_HASH = b"\x00" * 32


def _int(value: bytes) -> int:
    return int.from_bytes(value, "big")


@dataclass
class Header:
    """London block header."""

    parent_hash: bytes
    coinbase: bytes
    state_root: bytes
    transactions_root: bytes
    receipts_root: bytes
    number: int
    gas_limit: int
    gas_used: int
    timestamp: int
    base_fee_per_gas: int
    difficulty: int = 0
    extra_data: bytes = b""
    mix_digest: bytes = ZERO_HASH
    nonce: bytes = b"\x00" * 8
    uncle_hash: bytes = EMPTY_UNCLE_HASH
    bloom: bytes = EMPTY_BLOOM

    def to_rlp_list(self) -> list:
        return [
            self.parent_hash,
            self.uncle_hash,
            self.coinbase,
            self.state_root,
            self.transactions_root,
            self.receipts_root,
            self.bloom,
            self.difficulty,
            self.number,
            self.gas_limit,
            self.gas_used,
            self.timestamp,
            self.extra_data,
            self.mix_digest,
            self.nonce,
            self.base_fee_per_gas,
        ]

    @classmethod
    def from_rlp_list(cls, items: list) -> "Header":
        if len(items) != 16:
            raise ProtocolError(f"header must have 16 fields, got {len(items)}")
        return cls(
            parent_hash=items[0],
            uncle_hash=items[1],
            coinbase=items[2],
            state_root=items[3],
            transactions_root=items[4],
            receipts_root=items[5],
            bloom=items[6],
            difficulty=_int(items[7]),
            number=_int(items[8]),
            gas_limit=_int(items[9]),
            gas_used=_int(items[10]),
            timestamp=_int(items[11]),
            extra_data=items[12],
            mix_digest=items[13],
            nonce=items[14],
            base_fee_per_gas=_int(items[15]),
        )

    def encode(self) -> bytes:
        return rlp.encode(self.to_rlp_list())

    @property
    def hash(self) -> bytes:
        return keccak256(self.encode())


@dataclass
class Transaction:
    """EIP-1559 dynamic fee transaction."""

    chain_id: int
    nonce: int
    max_priority_fee_per_gas: int
    max_fee_per_gas: int
    gas: int
    to: bytes
    value: int = 0
    data: bytes = b""
    access_list: list = field(default_factory=list)
    y_parity: int = 0
    r: int = 0
    s: int = 0

    def _unsigned_fields(self) -> list:
        return [
            self.chain_id,
            self.nonce,
            self.max_priority_fee_per_gas,
            self.max_fee_per_gas,
            self.gas,
            self.to,
            self.value,
            self.data,
            self.access_list,
        ]

    def signing_hash(self) -> bytes:
        return keccak256(bytes([DYNAMIC_FEE_TX_TYPE]) + rlp.encode(self._unsigned_fields()))

    def sign(self, private_key: bytes) -> "Transaction":
        """Sign in place with a secp256k1 key and return self."""
        signature = PrivateKey(private_key).sign_recoverable(self.signing_hash(), hasher=None)
        self.r = _int(signature[:32])
        self.s = _int(signature[32:64])
        self.y_parity = signature[64]
        return self

    def sender(self) -> bytes:
        """Recover the sender address from the signature."""
        signature = self.r.to_bytes(32, "big") + self.s.to_bytes(32, "big") + bytes([self.y_parity])
        try:
            public_key = PublicKey.from_signature_and_message(
                signature, self.signing_hash(), hasher=None
            )
        except Exception as e:
            raise ProtocolError(f"cannot recover transaction sender: {e}") from e
        return keccak256(public_key.format(compressed=False)[1:])[12:]

    def encode(self) -> bytes:
        """Typed transaction envelope: 0x02 || rlp(fields)."""
        return bytes([DYNAMIC_FEE_TX_TYPE]) + rlp.encode(
            self._unsigned_fields() + [self.y_parity, self.r, self.s]
        )

    @property
    def hash(self) -> bytes:
        return keccak256(self.encode())

    @classmethod
    def decode(cls, raw: bytes) -> "Transaction":
        if not raw or raw[0] != DYNAMIC_FEE_TX_TYPE:
            raise ProtocolError("only EIP-1559 transactions are supported")
        try:
            items = rlp.decode(raw[1:])
        except rlp.DecodingError as e:
            raise ProtocolError(f"malformed transaction: {e}") from e
        if not isinstance(items, list) or len(items) != 12:
            raise ProtocolError("malformed transaction: expected 12 fields")
        return cls(
            chain_id=_int(items[0]),
            nonce=_int(items[1]),
            max_priority_fee_per_gas=_int(items[2]),
            max_fee_per_gas=_int(items[3]),
            gas=_int(items[4]),
            to=items[5],
            value=_int(items[6]),
            data=items[7],
            access_list=items[8],
            y_parity=_int(items[9]),
            r=_int(items[10]),
            s=_int(items[11]),
        )


@dataclass
class Block:
    """A block as stored by the mock chain.

    Blocks imported from an execution payload keep the hash the payload
    declares, which is what the engine and relay refer to them by.
    """

    header: Header
    transactions: list[Transaction] = field(default_factory=list)
    uncles: list[Header] = field(default_factory=list)
    declared_hash: Optional[bytes] = None

    @property
    def hash(self) -> bytes:
        if self.declared_hash is not None:
            return self.declared_hash
        return self.header.hash

    @property
    def number(self) -> int:
        return self.header.number

    def encoded_transactions(self) -> list[bytes]:
        return [tx.encode() for tx in self.transactions]

    def to_rlp_list(self) -> list:
        return [
            self.header.to_rlp_list(),
            self.encoded_transactions(),
            [uncle.to_rlp_list() for uncle in self.uncles],
        ]

    def encode(self) -> bytes:
        return rlp.encode(self.to_rlp_list())

    @classmethod
    def decode(cls, data: bytes, declared_hash: Optional[bytes] = None) -> "Block":
        try:
            header, txs, uncles = rlp.decode(data)
        except (rlp.DecodingError, ValueError) as e:
            raise ProtocolError(f"malformed block: {e}") from e
        return cls(
            header=Header.from_rlp_list(header),
            transactions=[Transaction.decode(tx) for tx in txs],
            uncles=[Header.from_rlp_list(u) for u in uncles],
            declared_hash=declared_hash,
        )


def commitment_root(items: list) -> bytes:
    """Keccak commitment over an RLP list, standing in for a trie root."""
    return keccak256(rlp.encode(items))
