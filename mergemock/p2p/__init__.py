"""Legacy execution-layer peer connection."""

from .peer import Enode, LegacyPeer, parse_enode, encode_message, decode_message

__all__ = ["Enode", "LegacyPeer", "parse_enode", "encode_message", "decode_message"]
