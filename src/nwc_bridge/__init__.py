"""Nostr Wallet Connect bridge between external services and a user's wallet"""

from .bridge import NWCBridge
from .config import BridgeConfig
from .connections import ServiceConnection, User, UserConnection

__version__ = "0.1.0"

__all__ = ["NWCBridge", "BridgeConfig", "ServiceConnection", "User", "UserConnection"]
