"""Shared fixtures: a fake execution engine, genesis files and keys."""

import asyncio
import hashlib
import json
from pathlib import Path
from typing import Optional

import jwt
import pytest
from aiohttp import web

from mergemock.chain import MockChain
from mergemock.crypto import generate_secret_key, pubkey_from_privkey
from mergemock.p2p import Enode, LegacyPeer

JWT_SECRET = bytes.fromhex("ab" * 32)
GENESIS_GAS_LIMIT = 30_000_000
GENESIS_BASE_FEE = 10**9
CHAIN_ID = 1337

# Funded in the genesis file written by write_genesis.
TEST_ACCOUNT_KEY = "0x" + "45" * 32


def write_genesis(path: Path, ttd: Optional[int] = None, difficulty: int = 0,
                  alloc: Optional[dict] = None) -> Path:
    config = {"chainId": CHAIN_ID}
    if ttd is not None:
        config["terminalTotalDifficulty"] = ttd
    genesis = {
        "config": config,
        "difficulty": hex(difficulty),
        "gasLimit": hex(GENESIS_GAS_LIMIT),
        "baseFeePerGas": hex(GENESIS_BASE_FEE),
        "timestamp": "0x0",
        "extraData": "0x",
        "alloc": alloc or {},
    }
    path.write_text(json.dumps(genesis))
    return path


@pytest.fixture
def genesis_path(tmp_path):
    return write_genesis(tmp_path / "genesis.json")


@pytest.fixture
def chain(genesis_path):
    mock_chain = MockChain(str(genesis_path))
    yield mock_chain
    mock_chain.close()


@pytest.fixture
def jwt_secret_path(tmp_path):
    path = tmp_path / "jwt.hex"
    path.write_text("0x" + JWT_SECRET.hex())
    return path


@pytest.fixture(scope="session")
def proposer_key():
    sk = generate_secret_key(b"\x01" * 32)
    return sk, pubkey_from_privkey(sk)


@pytest.fixture(scope="session")
def relay_key():
    return generate_secret_key(b"\x02" * 32)


class FakeEngine:
    """JSON-RPC stand-in for an execution client's Engine API.

    Accepts every payload, builds an empty payload on request, and keeps a
    log of every call it served.
    """

    def __init__(self, genesis_hash: bytes, jwt_secret: bytes = JWT_SECRET):
        self.jwt_secret = jwt_secret
        self.calls: list[tuple[str, list]] = []
        self.numbers = {"0x" + genesis_hash.hex(): 0}
        self.payloads: dict[str, dict] = {}
        self.new_payload_status = "VALID"
        self.forkchoice_status = "VALID"
        self._next_id = 0
        self.app = web.Application()
        self.app.router.add_post("/", self.handle)

    def params_of(self, method: str) -> list[list]:
        return [params for name, params in self.calls if name == method]

    def _build_payload(self, state: dict, attributes: dict) -> tuple[str, dict]:
        self._next_id += 1
        payload_id = "0x" + self._next_id.to_bytes(8, "big").hex()
        parent = state["headBlockHash"]
        number = self.numbers.get(parent, 0) + 1
        block_hash = "0x" + hashlib.sha256(f"{payload_id}{parent}".encode()).hexdigest()
        payload = {
            "parentHash": parent,
            "feeRecipient": attributes["suggestedFeeRecipient"],
            "stateRoot": "0x" + "00" * 32,
            "receiptsRoot": "0x" + "00" * 32,
            "logsBloom": "0x" + "00" * 256,
            "prevRandao": attributes["prevRandao"],
            "blockNumber": hex(number),
            "gasLimit": hex(GENESIS_GAS_LIMIT),
            "gasUsed": "0x0",
            "timestamp": attributes["timestamp"],
            "extraData": "0x",
            "baseFeePerGas": hex(GENESIS_BASE_FEE),
            "blockHash": block_hash,
            "transactions": [],
        }
        self.numbers[block_hash] = number
        return payload_id, payload

    async def handle(self, request: web.Request) -> web.Response:
        auth = request.headers.get("Authorization", "")
        try:
            jwt.decode(auth.removeprefix("Bearer "), self.jwt_secret, algorithms=["HS256"])
        except jwt.PyJWTError:
            return web.Response(status=401, text="invalid token")

        body = await request.json()
        method, params = body["method"], body["params"]
        self.calls.append((method, params))

        if method == "engine_newPayloadV1":
            payload = params[0]
            self.numbers[payload["blockHash"]] = int(payload["blockNumber"], 16)
            valid = self.new_payload_status == "VALID"
            result = {
                "status": self.new_payload_status,
                "latestValidHash": payload["blockHash"] if valid else None,
                "validationError": None,
            }
        elif method == "engine_forkchoiceUpdatedV1":
            state, attributes = params
            result = {
                "payloadStatus": {
                    "status": self.forkchoice_status,
                    "latestValidHash": state["headBlockHash"],
                    "validationError": None,
                },
                "payloadId": None,
            }
            if attributes is not None:
                payload_id, payload = self._build_payload(state, attributes)
                self.payloads[payload_id] = payload
                result["payloadId"] = payload_id
        elif method == "engine_getPayloadV1":
            payload = self.payloads.get(params[0])
            if payload is None:
                return web.json_response({
                    "jsonrpc": "2.0",
                    "id": body["id"],
                    "error": {"code": -38001, "message": "Unknown payload"},
                })
            result = payload
        else:
            return web.json_response({
                "jsonrpc": "2.0",
                "id": body["id"],
                "error": {"code": -32601, "message": "Method not found"},
            })

        return web.json_response({"jsonrpc": "2.0", "id": body["id"], "result": result})


class FakeTime:
    """Manually advanced clock for SlotClock."""

    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


async def start_fake_peer(chain: MockChain, received: list):
    """Serve one peer handshake on localhost, then collect announced blocks.

    Returns the asyncio server and the enode URL to dial it.
    """

    async def on_connect(reader, writer):
        node = Enode(node_id=b"\x00" * 64, host="127.0.0.1", port=0)
        remote = LegacyPeer(reader, writer, node)
        try:
            await remote.peer(chain)
            while True:
                code, data = await remote.read_msg()
                received.append((code, data))
        except Exception:
            pass
        finally:
            await remote.close()

    server = await asyncio.start_server(on_connect, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    enode = f"enode://{'aa' * 64}@127.0.0.1:{port}"
    return server, enode


def sample_payload(parent_hash: bytes, number: int = 1, block_hash: Optional[bytes] = None,
                   timestamp: int = 12):
    """An empty ExecutionPayload on top of parent_hash."""
    from mergemock.spec.payload import payload_from_engine_json

    block_hash = block_hash or hashlib.sha256(parent_hash + number.to_bytes(8, "big")).digest()
    return payload_from_engine_json({
        "parentHash": "0x" + parent_hash.hex(),
        "feeRecipient": "0x" + "13" * 20,
        "stateRoot": "0x" + "00" * 32,
        "receiptsRoot": "0x" + "00" * 32,
        "logsBloom": "0x" + "00" * 256,
        "prevRandao": "0x" + "00" * 32,
        "blockNumber": hex(number),
        "gasLimit": hex(GENESIS_GAS_LIMIT),
        "gasUsed": "0x0",
        "timestamp": hex(timestamp),
        "extraData": "0x",
        "baseFeePerGas": hex(GENESIS_BASE_FEE),
        "blockHash": "0x" + block_hash.hex(),
        "transactions": [],
    })


def signed_registration(sk: int, pubkey: bytes, domain: Optional[bytes] = None):
    from mergemock.crypto import sign_object
    from mergemock.spec.types import (
        BLSPubkey, BLSSignature, Bytes20, SignedValidatorRegistration,
        ValidatorRegistration, uint64,
    )

    registration = ValidatorRegistration(
        fee_recipient=Bytes20(b"\x13" * 20),
        gas_limit=uint64(GENESIS_GAS_LIMIT),
        timestamp=uint64(1_700_000_000),
        pubkey=BLSPubkey(pubkey),
    )
    return SignedValidatorRegistration(
        message=registration,
        signature=BLSSignature(sign_object(sk, registration, domain)),
    )


def signed_blinded_block(sk: int, header, domain: Optional[bytes] = None, slot: int = 1):
    from mergemock.crypto import sign_object
    from mergemock.spec.types import (
        BLSSignature, BlindedBeaconBlock, BlindedBeaconBlockBody, Eth1Data,
        SignedBlindedBeaconBlock, SyncAggregate, uint64,
    )

    block = BlindedBeaconBlock(
        slot=uint64(slot),
        proposer_index=uint64(1),
        body=BlindedBeaconBlockBody(
            eth1_data=Eth1Data(),
            sync_aggregate=SyncAggregate(),
            execution_payload_header=header,
        ),
    )
    return SignedBlindedBeaconBlock(
        message=block,
        signature=BLSSignature(sign_object(sk, block, domain)),
    )
