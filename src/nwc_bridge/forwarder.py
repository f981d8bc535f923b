"""
Handlers that move NIP-47 traffic across the bridge.

RequestForwarder takes a request a service sent to one of our service
connections and re-issues it on the owner's wallet connection.
ResponseForwarder takes the wallet's answer and hands it back to the
service that asked.
"""

import asyncio
from typing import Optional

from loguru import logger

from . import nip04
from .errors import (AuthenticationFailed, MalformedEvent, NoWalletConnection,
                     UnknownIdentity, UnmatchedResponse)
from .event import Event
from .nip47 import (PAY_INVOICE, NIP47Request, NIP47Response,
                    build_request_event, build_response_event)
from .pending import PendingForward, PendingForwards
from .policy import AllowAllPolicy, SpendingPolicy


def _single_p_tag(event: Event) -> str:
    recipients = event.tags.p_tags
    if len(recipients) != 1:
        raise MalformedEvent(f"expected exactly one p tag, got {len(recipients)}")
    return recipients[0]


class RequestForwarder:
    """
    handles kind 23194 events addressed to a ServiceConnection

    every failure is raised as a BridgeError, nothing is published unless
    all checks pass
    """

    def __init__(self, store, pending: PendingForwards,
                 policy: SpendingPolicy = None):
        self.store = store
        self.pending = pending
        self.policy = policy or AllowAllPolicy()

    async def handle(self, event: Event, relays) -> Optional[Event]:
        """
        forward event to the owner's wallet

        Returns:
            the published event, None if the request was dropped on purpose
        """
        recipient = _single_p_tag(event)

        service = await asyncio.to_thread(
            self.store.find_service_connection_by_request_identity, recipient)
        if service is None:
            raise UnknownIdentity(f"no service connection for {recipient}")

        # authenticate before touching the content
        if event.pubkey != service.response_identity:
            raise AuthenticationFailed(
                f"sender {event.pubkey} does not hold the secret for {recipient}")
        if not event.verify():
            raise AuthenticationFailed(f"bad signature on {event.id}")

        content = nip04.decrypt(
            secret_key=service.response_secret,
            pubkey_hex=service.request_identity,
            data=event.content)
        request = NIP47Request.from_json(content)

        if request.method != PAY_INVOICE:
            logger.info(
                f"nwc dropping {request.method} request {event.id} "
                f"from service {service.service_name}")
            return None

        await self.policy.check(service, request)

        user_connections = await asyncio.to_thread(
            self.store.find_user_connections_by_owner, service.owner)
        if not user_connections:
            raise NoWalletConnection(f"user {service.owner} has no wallet connection")
        # newest registration wins
        user = user_connections[0]

        forwarded = build_request_event(
            NIP47Request.pay_invoice(request.invoice),
            secret=user.response_secret,
            wallet_pubkey=user.request_identity)

        self.pending.add(PendingForward(
            forwarded_event_id=forwarded.id,
            service_request_identity=service.request_identity,
            service_pubkey=event.pubkey,
            request_event_id=event.id,
            user_response_identity=user.response_identity))

        try:
            await relays.send_event_to(user.relay_url, forwarded)
        except BaseException:
            self.pending.discard(forwarded.id)
            raise

        logger.info(
            f"nwc forwarded pay_invoice {event.id} from {service.service_name} "
            f"as {forwarded.id} to {user.relay_url}")
        return forwarded


class ResponseForwarder:
    """
    handles kind 23195 events a wallet sent to one of our UserConnections
    """

    def __init__(self, store, pending: PendingForwards):
        self.store = store
        self.pending = pending

    async def handle(self, event: Event, relays) -> Event:
        recipient = _single_p_tag(event)
        referenced = event.tags.e_tags
        if not referenced:
            raise MalformedEvent(f"response {event.id} has no e tag")
        forwarded_id = referenced[0]

        user = await asyncio.to_thread(
            self.store.find_user_connection_by_response_identity, recipient)
        if user is None:
            raise UnknownIdentity(f"no user connection for {recipient}")

        if event.pubkey != user.request_identity:
            raise AuthenticationFailed(
                f"response author {event.pubkey} is not wallet {user.request_identity}")
        if not event.verify():
            raise AuthenticationFailed(f"bad signature on {event.id}")

        entry = self.pending.get(forwarded_id)
        if entry is None or entry.user_response_identity != recipient:
            raise UnmatchedResponse(f"no outstanding request {forwarded_id}")

        content = nip04.decrypt(
            secret_key=user.response_secret,
            pubkey_hex=user.request_identity,
            data=event.content)
        response = NIP47Response.from_json(content)
        # only a readable reply consumes the entry
        self.pending.discard(forwarded_id)

        service = await asyncio.to_thread(
            self.store.find_service_connection_by_request_identity,
            entry.service_request_identity)
        if service is None:
            raise UnknownIdentity(
                f"service connection {entry.service_request_identity} is gone")

        reply = build_response_event(
            response,
            secret=service.response_secret,
            encryption_pubkey=service.request_identity,
            recipient_pubkey=entry.service_pubkey,
            referenced_event_id=entry.request_event_id)

        await relays.send_event_to(service.relay_url, reply)

        logger.info(
            f"nwc returned {response.result_type} response for {entry.request_event_id} "
            f"to {service.service_name}")
        return reply
