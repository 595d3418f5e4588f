"""Builder API: relay mock server, relay client and the shared payload cache."""

from .cache import PayloadCache
from .client import BuilderClient
from .server import RelayBackend, RelayServer

__all__ = ["PayloadCache", "BuilderClient", "RelayBackend", "RelayServer"]
