"""Wren wallet API: passkey wallets, Wren airdrops and durable-nonce transfers."""

__version__ = "0.1.0"
