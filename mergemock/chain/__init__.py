"""Mock execution chain collaborator."""

from .accounts import TestAccount, TransactionsCreator, dummy_tx_creator
from .chain import MockChain, calc_base_fee
from .genesis import Genesis, load_genesis
from .types import Block, Header, Transaction, keccak256

__all__ = [
    "MockChain",
    "calc_base_fee",
    "Genesis",
    "load_genesis",
    "Block",
    "Header",
    "Transaction",
    "keccak256",
    "TestAccount",
    "TransactionsCreator",
    "dummy_tx_creator",
]
