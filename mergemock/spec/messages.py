"""Builder API message codecs (bids, registrations, blinded blocks)."""

from .constants import BLS_PUBKEY_LENGTH, BLS_SIGNATURE_LENGTH, SYNC_COMMITTEE_SIZE
from .payload import (
    hex_to_bytes,
    bytes_to_hex,
    dec_to_quantity,
    header_from_rest_json,
    header_to_rest_json,
    UINT256_MAX,
    build_container,
    require_field,
)
from .types import (
    BuilderBid,
    SignedBuilderBid,
    ValidatorRegistration,
    SignedValidatorRegistration,
    BlindedBeaconBlockBody,
    BlindedBeaconBlock,
    SignedBlindedBeaconBlock,
    Eth1Data,
    SyncAggregate,
    Bitvector,
    BLSPubkey,
    BLSSignature,
    Bytes20,
    Bytes32,
    Root,
    uint64,
    uint256,
)
from ..exceptions import ProtocolError

OPERATION_FIELDS = (
    "proposer_slashings",
    "attester_slashings",
    "attestations",
    "deposits",
    "voluntary_exits",
)


def decode_pubkey(value) -> bytes:
    """Decode a BLS public key field, raising ProtocolError('invalid pubkey')."""
    try:
        return hex_to_bytes(value, "pubkey", BLS_PUBKEY_LENGTH)
    except ProtocolError as e:
        raise ProtocolError("invalid pubkey") from e


def decode_signature(value) -> bytes:
    """Decode a BLS signature field, raising ProtocolError('invalid signature')."""
    try:
        return hex_to_bytes(value, "signature", BLS_SIGNATURE_LENGTH)
    except ProtocolError as e:
        raise ProtocolError("invalid signature") from e


# =============================================================================
# Bids
# =============================================================================

def signed_bid_to_json(signed_bid: SignedBuilderBid) -> dict:
    bid = signed_bid.message
    return {
        "message": {
            "header": header_to_rest_json(bid.header),
            "value": str(int(bid.value)),
            "pubkey": bytes_to_hex(bid.pubkey),
        },
        "signature": bytes_to_hex(signed_bid.signature),
    }


def signed_bid_from_json(data: dict) -> SignedBuilderBid:
    message = require_field(data, "message")
    bid = build_container(BuilderBid, {
        "header": header_from_rest_json(require_field(message, "header")),
        "value": uint256(dec_to_quantity(require_field(message, "value"), "value", UINT256_MAX)),
        "pubkey": BLSPubkey(decode_pubkey(require_field(message, "pubkey"))),
    })
    return build_container(SignedBuilderBid, {
        "message": bid,
        "signature": BLSSignature(decode_signature(require_field(data, "signature"))),
    })


# =============================================================================
# Validator registrations
# =============================================================================

def registration_to_json(signed: SignedValidatorRegistration) -> dict:
    message = signed.message
    return {
        "message": {
            "fee_recipient": bytes_to_hex(message.fee_recipient),
            "gas_limit": str(int(message.gas_limit)),
            "timestamp": str(int(message.timestamp)),
            "pubkey": bytes_to_hex(message.pubkey),
        },
        "signature": bytes_to_hex(signed.signature),
    }


def registration_from_json(data: dict) -> SignedValidatorRegistration:
    """Decode a signed registration, checking pubkey then signature lengths."""
    message = require_field(data, "message")
    pubkey = decode_pubkey(require_field(message, "pubkey"))
    signature = decode_signature(require_field(data, "signature"))
    registration = build_container(ValidatorRegistration, {
        "fee_recipient": Bytes20(
            hex_to_bytes(require_field(message, "fee_recipient"), "fee_recipient", 20)
        ),
        "gas_limit": uint64(dec_to_quantity(require_field(message, "gas_limit"), "gas_limit")),
        "timestamp": uint64(dec_to_quantity(require_field(message, "timestamp"), "timestamp")),
        "pubkey": BLSPubkey(pubkey),
    })
    return build_container(SignedValidatorRegistration, {
        "message": registration,
        "signature": BLSSignature(signature),
    })


# =============================================================================
# Blinded blocks
# =============================================================================

def signed_blinded_block_to_json(signed: SignedBlindedBeaconBlock) -> dict:
    block = signed.message
    body = block.body
    for field in OPERATION_FIELDS:
        if len(getattr(body, field)) > 0:
            raise ProtocolError(f"blinded block {field} are not supported")
    return {
        "message": {
            "slot": str(int(block.slot)),
            "proposer_index": str(int(block.proposer_index)),
            "parent_root": bytes_to_hex(block.parent_root),
            "state_root": bytes_to_hex(block.state_root),
            "body": {
                "randao_reveal": bytes_to_hex(body.randao_reveal),
                "eth1_data": {
                    "deposit_root": bytes_to_hex(body.eth1_data.deposit_root),
                    "deposit_count": str(int(body.eth1_data.deposit_count)),
                    "block_hash": bytes_to_hex(body.eth1_data.block_hash),
                },
                "graffiti": bytes_to_hex(body.graffiti),
                **{field: [] for field in OPERATION_FIELDS},
                "sync_aggregate": {
                    "sync_committee_bits": bytes_to_hex(
                        body.sync_aggregate.sync_committee_bits.encode_bytes()
                    ),
                    "sync_committee_signature": bytes_to_hex(
                        body.sync_aggregate.sync_committee_signature
                    ),
                },
                "execution_payload_header": header_to_rest_json(body.execution_payload_header),
            },
        },
        "signature": bytes_to_hex(signed.signature),
    }


def signed_blinded_block_from_json(data: dict) -> SignedBlindedBeaconBlock:
    """Decode a signed blinded block.

    Only blocks without slashings, attestations, deposits or exits are
    accepted; this mock never produces them.
    """
    signature = decode_signature(require_field(data, "signature"))
    message = require_field(data, "message")
    body = require_field(message, "body")

    for field in OPERATION_FIELDS:
        ops = body.get(field, []) if isinstance(body, dict) else None
        if not isinstance(ops, list):
            raise ProtocolError(f"{field}: expected list")
        if ops:
            raise ProtocolError(f"blinded block {field} are not supported")

    eth1 = require_field(body, "eth1_data")
    sync = require_field(body, "sync_aggregate")
    bits = hex_to_bytes(
        require_field(sync, "sync_committee_bits"), "sync_committee_bits", SYNC_COMMITTEE_SIZE // 8
    )

    block_body = build_container(BlindedBeaconBlockBody, {
        "randao_reveal": BLSSignature(
            hex_to_bytes(require_field(body, "randao_reveal"), "randao_reveal", BLS_SIGNATURE_LENGTH)
        ),
        "eth1_data": build_container(Eth1Data, {
            "deposit_root": Root(
                hex_to_bytes(require_field(eth1, "deposit_root"), "deposit_root", 32)
            ),
            "deposit_count": uint64(
                dec_to_quantity(require_field(eth1, "deposit_count"), "deposit_count")
            ),
            "block_hash": Bytes32(hex_to_bytes(require_field(eth1, "block_hash"), "block_hash", 32)),
        }),
        "graffiti": Bytes32(hex_to_bytes(require_field(body, "graffiti"), "graffiti", 32)),
        "sync_aggregate": build_container(SyncAggregate, {
            "sync_committee_bits": _decode_bits(bits),
            "sync_committee_signature": BLSSignature(hex_to_bytes(
                require_field(sync, "sync_committee_signature"),
                "sync_committee_signature",
                BLS_SIGNATURE_LENGTH,
            )),
        }),
        "execution_payload_header": header_from_rest_json(
            require_field(body, "execution_payload_header")
        ),
    })
    block = build_container(BlindedBeaconBlock, {
        "slot": uint64(dec_to_quantity(require_field(message, "slot"), "slot")),
        "proposer_index": uint64(
            dec_to_quantity(require_field(message, "proposer_index"), "proposer_index")
        ),
        "parent_root": Root(hex_to_bytes(require_field(message, "parent_root"), "parent_root", 32)),
        "state_root": Root(hex_to_bytes(require_field(message, "state_root"), "state_root", 32)),
        "body": block_body,
    })
    return build_container(SignedBlindedBeaconBlock, {
        "message": block,
        "signature": BLSSignature(signature),
    })


def _decode_bits(data: bytes):
    try:
        return Bitvector[SYNC_COMMITTEE_SIZE].decode_bytes(data)
    except Exception as e:
        raise ProtocolError(f"sync_committee_bits: {e}") from e


__all__ = [
    "decode_pubkey",
    "decode_signature",
    "signed_bid_to_json",
    "signed_bid_from_json",
    "registration_to_json",
    "registration_from_json",
    "signed_blinded_block_to_json",
    "signed_blinded_block_from_json",
]
