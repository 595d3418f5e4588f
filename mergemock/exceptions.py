"""Error taxonomy shared by the consensus driver and the relay."""


class MergeMockError(Exception):
    """Base class for all mergemock errors."""


class ProtocolError(MergeMockError):
    """Malformed request or response, or a field with the wrong length."""


class VerificationError(MergeMockError):
    """Signature or commitment failure."""


class CommitmentError(VerificationError):
    """The object could not be canonically encoded for hashing."""


class InvalidSignatureEncoding(VerificationError):
    """Signature bytes do not decode to a signature."""


class InvalidPublicKeyEncoding(VerificationError):
    """Public key bytes do not decode to a public key."""


class NotFoundError(MergeMockError):
    """Cache or chain lookup miss."""


class TransportError(MergeMockError):
    """Timeout or connection failure towards the engine, a relay or a peer."""


class EngineAPIError(TransportError):
    """Error object returned by the Engine API."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"Engine API error {code}: {message}")


class BuilderAPIError(TransportError):
    """Non-200 response from a builder relay."""

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"Builder API error {status}: {message}")


class FatalSetupError(MergeMockError):
    """Bad configuration, unreadable secret or bad genesis."""


class ConsistencyError(MergeMockError):
    """The engine reported a non-valid status where valid was expected."""
