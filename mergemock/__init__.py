"""mergemock - mock consensus driver and builder relay for testing execution clients."""

__version__ = "0.1.0"
