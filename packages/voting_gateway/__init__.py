"""HTTP gateway for an on-chain voting contract."""

__version__ = "0.1.0"
