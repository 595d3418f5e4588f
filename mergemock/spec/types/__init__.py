"""SSZ types for the merge mock.

Types are organized by where they are defined:
- base.py: Basic types and primitives
- phase0.py: Phase 0 and Altair block body operations
- bellatrix.py: Execution payloads and blinded blocks
- builder.py: Builder API bids and validator registrations
"""

# Base types
from .base import (
    uint8, uint64, uint256,
    Bytes4, Bytes20, Bytes32, Bytes48, Bytes96, ByteVector,
    Container, Vector, List,
    Bitvector, Bitlist,
    Slot, Epoch, ValidatorIndex, Gwei,
    Root, Hash32, Version, DomainType, Domain,
    BLSPubkey, BLSSignature, ExecutionAddress,
    Transaction,
    ForkData, Checkpoint, SigningData,
)

# Phase 0 / Altair
from .phase0 import (
    AttestationData,
    Eth1Data,
    BeaconBlockHeader,
    SignedBeaconBlockHeader,
    ProposerSlashing,
    DepositData,
    Deposit,
    VoluntaryExit,
    SignedVoluntaryExit,
    Attestation,
    IndexedAttestation,
    AttesterSlashing,
    SyncAggregate,
)

# Bellatrix
from .bellatrix import (
    Transactions,
    ExecutionPayloadHeader,
    ExecutionPayload,
    BlindedBeaconBlockBody,
    BlindedBeaconBlock,
    SignedBlindedBeaconBlock,
)

# Builder API
from .builder import (
    BuilderBid,
    SignedBuilderBid,
    ValidatorRegistration,
    SignedValidatorRegistration,
)
