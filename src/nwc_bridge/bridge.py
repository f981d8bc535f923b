"""
NWCBridge wires the store, the identity set, the forwarders and the engine
together and exposes the registration operations.
"""

import asyncio
import os
import time
from typing import Optional

from loguru import logger

from .config import BridgeConfig
from .connections import (ServiceConnection, User, UserConnection, connection_uri,
                          generate_service_connection, parse_external_connection)
from .engine import BridgeEngine
from .errors import DuplicateConnection, InvalidPubkey
from .forwarder import RequestForwarder, ResponseForwarder
from .keys import normalize_owner_pubkey
from .pending import PendingForwards
from .policy import SpendingPolicy
from .relay import RelayPool
from .store import ConnectionStore
from .subscriptions import SubscriptionManager


class NWCBridge:
    """
    Registration methods are synchronous and safe to call from any thread
    while run() drives the engine on the event loop.
    """

    def __init__(self, config: Optional[BridgeConfig] = None,
                 store: Optional[ConnectionStore] = None,
                 policy: Optional[SpendingPolicy] = None,
                 pool_factory=RelayPool):
        self.config = config or BridgeConfig()
        self.store = store or ConnectionStore(
            os.path.join(self.config.data_dir, "db.sqlite"),
            pool_size=self.config.db_pool_size,
            busy_timeout=self.config.db_busy_timeout)
        self.subscriptions = SubscriptionManager.from_store(self.store)
        self.pending = PendingForwards(ttl=self.config.pending_ttl)
        self.engine = BridgeEngine(
            self.store,
            self.subscriptions,
            RequestForwarder(self.store, self.pending, policy),
            ResponseForwarder(self.store, self.pending),
            default_relay=self.config.default_relay,
            handler_timeout=self.config.handler_timeout,
            reconnect_delay=self.config.reconnect_delay,
            pool_factory=pool_factory)

    def _ensure_user(self, user_pubkey: str) -> User:
        try:
            pubkey = normalize_owner_pubkey(user_pubkey)
        except ValueError as e:
            raise InvalidPubkey(str(e)) from e
        return self.store.create_user(User(pubkey=pubkey, created_at=int(time.time())))

    def register_user_connection(self, user_pubkey: str, uri: str) -> UserConnection:
        """
        store the user's wallet connect uri and start listening to the wallet

        Raises:
            InvalidPubkey, MalformedURI, DuplicateConnection, StoreUnavailable
        """
        user = self._ensure_user(user_pubkey)
        record = parse_external_connection(uri, user.pubkey)

        existing = self.store.find_user_connection_by_response_identity(
            record.response_identity)
        if existing:
            if existing.owner != user.pubkey:
                raise DuplicateConnection("wallet connection belongs to another user")
            record = existing
        else:
            record = self.store.insert_user_connection(record)
            logger.info(f"nwc registered wallet {record.request_identity} for {user.pubkey}")

        self.subscriptions.register(record.request_identity)
        return record

    def issue_service_connection(self, user_pubkey: str, service_name: str) -> str:
        """
        create a connection for service_name that spends from the user's wallet

        Returns:
            the nostr+walletconnect uri to hand to the service
        """
        user = self._ensure_user(user_pubkey)
        record = generate_service_connection(
            user.pubkey, service_name, relay_url=self.config.default_relay)
        self.store.insert_service_connection(record)
        self.subscriptions.register(record.request_identity)
        logger.info(f"nwc issued connection {record.request_identity} "
                    f"for {service_name} to {user.pubkey}")
        return connection_uri(record)

    def list_service_connections(self, user_pubkey: str) -> list[ServiceConnection]:
        try:
            pubkey = normalize_owner_pubkey(user_pubkey)
        except ValueError as e:
            raise InvalidPubkey(str(e)) from e
        return self.store.find_service_connections_by_owner(pubkey)

    async def run(self):
        try:
            await self.engine.run()
        finally:
            await asyncio.to_thread(self.store.close)

    def stop(self):
        self.engine.stop()
