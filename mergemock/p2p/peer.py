"""Legacy execution-layer peer used to feed proof-of-work blocks before the merge.

Messages follow the devp2p layout (``rlp(code) || rlp(data)``) with the
base protocol at codes 0x00-0x0f and eth/66 at 0x10 onwards. Frames are
sent as plaintext with a 4-byte big-endian length prefix; the RLPx
ECIES handshake and frame encryption are not implemented, so the remote
side must speak the same plaintext framing.
"""

import asyncio
import logging
import zlib
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import rlp
from coincurve import PrivateKey

from ..exceptions import FatalSetupError, ProtocolError, TransportError

logger = logging.getLogger(__name__)

BASE_PROTOCOL_VERSION = 5
ETH_PROTOCOL_VERSION = 66
CLIENT_ID = "mergemock"

MSG_HELLO = 0x00
MSG_DISCONNECT = 0x01
MSG_PING = 0x02
MSG_PONG = 0x03
ETH_OFFSET = 0x10
MSG_STATUS = ETH_OFFSET + 0x00
MSG_NEW_BLOCK = ETH_OFFSET + 0x07

MAX_FRAME_SIZE = 16 * 1024 * 1024
DIAL_TIMEOUT = 20.0


@dataclass
class Enode:
    """A parsed enode:// URL."""

    node_id: bytes
    host: str
    port: int

    def __str__(self) -> str:
        return f"enode://{self.node_id.hex()}@{self.host}:{self.port}"


def parse_enode(url: str) -> Enode:
    """Parse ``enode://<hex node id>@<host>:<port>``."""
    parsed = urlparse(url)
    if parsed.scheme != "enode":
        raise FatalSetupError(f"malformatted enode address ({url!r}): scheme must be enode")
    try:
        node_id = bytes.fromhex(parsed.username or "")
    except ValueError as e:
        raise FatalSetupError(f"malformatted enode address ({url!r}): {e}") from e
    if len(node_id) != 64:
        raise FatalSetupError(f"malformatted enode address ({url!r}): node id must be 64 bytes")
    try:
        port = parsed.port
    except ValueError as e:
        raise FatalSetupError(f"malformatted enode address ({url!r}): {e}") from e
    if not parsed.hostname or not port:
        raise FatalSetupError(f"malformatted enode address ({url!r}): missing host or port")
    return Enode(node_id=node_id, host=parsed.hostname, port=port)


def encode_message(code: int, data) -> bytes:
    """Frame one message: length prefix, then rlp(code) || rlp(data)."""
    body = rlp.encode(code) + rlp.encode(data)
    return len(body).to_bytes(4, "big") + body


def decode_message(body: bytes) -> tuple[int, object]:
    try:
        code_item, consumed = _split_first_item(body)
        code = int.from_bytes(rlp.decode(code_item), "big")
        data = rlp.decode(body[consumed:])
    except (rlp.DecodingError, ValueError) as e:
        raise ProtocolError(f"malformed peer message: {e}") from e
    return code, data


def _split_first_item(data: bytes) -> tuple[bytes, int]:
    if not data:
        raise ValueError("empty message")
    prefix = data[0]
    if prefix < 0x80:
        length = 1
    elif prefix <= 0xb7:
        length = 1 + prefix - 0x80
    else:
        raise ValueError("message code must be a short RLP string")
    return data[:length], length


class LegacyPeer:
    """A connection to an execution client speaking eth/66."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, node: Enode,
                 private_key: Optional[PrivateKey] = None):
        self.reader = reader
        self.writer = writer
        self.node = node
        self.private_key = private_key or PrivateKey()
        self._write_lock = asyncio.Lock()

    @property
    def node_id(self) -> bytes:
        return self.private_key.public_key.format(compressed=False)[1:]

    @classmethod
    async def dial(cls, node: Enode, timeout: float = DIAL_TIMEOUT) -> "LegacyPeer":
        """Open a TCP connection to the node."""
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(node.host, node.port), timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise TransportError(f"unable to connect to {node}: {e}") from e
        logger.info(f"Connected to peer {node.host}:{node.port}")
        return cls(reader, writer, node)

    async def write_msg(self, code: int, data) -> None:
        async with self._write_lock:
            try:
                self.writer.write(encode_message(code, data))
                await self.writer.drain()
            except (ConnectionError, OSError) as e:
                raise TransportError(f"failed to msg peer: {e}") from e

    async def read_msg(self) -> tuple[int, object]:
        try:
            header = await self.reader.readexactly(4)
            size = int.from_bytes(header, "big")
            if size > MAX_FRAME_SIZE:
                raise ProtocolError(f"peer frame of {size} bytes exceeds limit")
            body = await self.reader.readexactly(size)
        except (asyncio.IncompleteReadError, ConnectionError, OSError) as e:
            raise TransportError(f"peer connection lost: {e}") from e
        return decode_message(body)

    async def _expect(self, expected: int) -> object:
        code, data = await self.read_msg()
        if code == MSG_DISCONNECT:
            raise TransportError(f"peer disconnected: {data!r}")
        if code != expected:
            raise ProtocolError(f"expected message 0x{expected:02x}, got 0x{code:02x}")
        return data

    def _status(self, chain) -> list:
        genesis_hash = chain.genesis_hash
        fork_hash = zlib.crc32(genesis_hash).to_bytes(4, "big")
        return [
            ETH_PROTOCOL_VERSION,
            chain.chain_id,
            chain.current_td(),
            chain.current_hash(),
            genesis_hash,
            [fork_hash, 0],
        ]

    async def peer(self, chain) -> None:
        """Run the Hello and Status handshake against the local chain."""
        await self.write_msg(MSG_HELLO, [
            BASE_PROTOCOL_VERSION,
            CLIENT_ID.encode(),
            [[b"eth", ETH_PROTOCOL_VERSION]],
            0,
            self.node_id,
        ])
        hello = await self._expect(MSG_HELLO)
        if not isinstance(hello, list) or len(hello) < 5:
            raise ProtocolError("malformed hello")
        logger.info(f"Peer hello: client={hello[1].decode(errors='replace')}")

        await self.write_msg(MSG_STATUS, self._status(chain))
        status = await self._expect(MSG_STATUS)
        if not isinstance(status, list) or len(status) < 5:
            raise ProtocolError("malformed status")
        network_id = int.from_bytes(status[1], "big")
        if network_id != chain.chain_id:
            raise ProtocolError(f"network id mismatch: peer {network_id}, local {chain.chain_id}")
        if status[4] != chain.genesis_hash:
            raise ProtocolError(f"genesis mismatch: peer 0x{status[4].hex()}")
        logger.info(f"Peered with {self.node.host}:{self.node.port}")

    async def send_new_block(self, block, td: int) -> None:
        """Announce a block with its total difficulty."""
        await self.write_msg(MSG_NEW_BLOCK, [block.to_rlp_list(), td])

    async def keep_alive(self) -> None:
        """Answer pings until the peer disconnects or the task is cancelled."""
        while True:
            try:
                code, data = await self.read_msg()
            except TransportError as e:
                logger.warning(f"Peer connection closed: {e}")
                return
            if code == MSG_PING:
                await self.write_msg(MSG_PONG, [])
            elif code == MSG_DISCONNECT:
                logger.warning(f"Peer disconnected: {data!r}")
                return
            else:
                logger.debug(f"Ignoring peer message 0x{code:02x}")

    async def close(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass
