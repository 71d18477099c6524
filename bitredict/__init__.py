"""Bitredict off-chain backend."""

__version__ = "0.1.0"
