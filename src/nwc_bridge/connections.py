"""
Connection records and the key scheme that lets the bridge stand between
an external service and a user's real wallet.

A ServiceConnection is made from two independent keypairs A and B. Only
A's public key (the request identity) and B's secret (the response
secret) are kept, and together they form the uri handed to the service.
ECDH(B.secret, A.public) equals ECDH(A.secret, B.public), so anything the
service encrypts with B.secret for A.public can be read with exactly
(B.secret, A.public) while A.secret is thrown away. Whoever signs with
B.secret is recognised by comparing the event pubkey with B.public.
"""

import time
from dataclasses import dataclass
from typing import Optional

from .errors import MalformedURI
from .keys import generate_keypair, get_hex_pubkey, normalize_owner_pubkey
from .nip47 import NIP47URI, URIOptions

DEFAULT_SERVICE_RELAY = "wss://relay.damus.io"


@dataclass(frozen=True)
class User:
    pubkey: str
    created_at: int


@dataclass(frozen=True)
class ServiceConnection:
    """a capability handed to an external service"""
    request_identity: str
    response_secret: str
    relay_url: str
    service_name: str
    owner: str
    created_at: int

    @property
    def response_identity(self) -> str:
        """the pubkey the service signs its requests with"""
        return get_hex_pubkey(self.response_secret)


@dataclass(frozen=True)
class UserConnection:
    """the user's real wallet connection, stored as supplied"""
    request_identity: str
    response_secret: str
    relay_url: str
    owner: str
    created_at: int
    lud16: Optional[str] = None

    @property
    def response_identity(self) -> str:
        """the pubkey the bridge signs forwarded requests with"""
        return get_hex_pubkey(self.response_secret)


def generate_service_connection(owner: str, service_name: str,
                                relay_url: str = DEFAULT_SERVICE_RELAY) -> ServiceConnection:
    """create a fresh connection record for service_name on behalf of owner"""
    _, request_identity = generate_keypair()
    response_secret, _ = generate_keypair()

    return ServiceConnection(
        request_identity=request_identity,
        response_secret=response_secret,
        relay_url=relay_url,
        service_name=service_name,
        owner=normalize_owner_pubkey(owner),
        created_at=int(time.time()),
    )


def connection_uri(record) -> str:
    """encode a connection record as a nostr+walletconnect uri"""
    return NIP47URI.construct_wallet_connect_url(URIOptions(
        relay_url=record.relay_url,
        secret=record.response_secret,
        wallet_pubkey=record.request_identity,
        lud16=getattr(record, "lud16", None),
    ))


def parse_external_connection(uri: str, owner: str) -> UserConnection:
    """
    store an externally issued wallet connect uri as a UserConnection

    Raises:
        MalformedURI: the uri cannot be parsed
    """
    try:
        options = NIP47URI.parse_wallet_connect_url(uri)
    except MalformedURI:
        raise
    except ValueError as e:
        raise MalformedURI(str(e)) from e

    return UserConnection(
        request_identity=options.wallet_pubkey,
        response_secret=options.secret,
        relay_url=options.relay_url,
        owner=normalize_owner_pubkey(owner),
        created_at=int(time.time()),
        lud16=options.lud16,
    )
