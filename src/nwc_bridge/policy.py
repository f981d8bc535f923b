"""Hook for deciding whether a service may spend through the bridge."""

from .connections import ServiceConnection
from .nip47 import NIP47Request


class SpendingPolicy:
    """
    Checked after a request has been authenticated and before it is
    forwarded. Reject by raising errors.PolicyRejected.
    """

    async def check(self, service_connection: ServiceConnection,
                    request: NIP47Request) -> None:
        raise NotImplementedError


class AllowAllPolicy(SpendingPolicy):
    """no limits: every pay_invoice request is forwarded"""

    async def check(self, service_connection: ServiceConnection,
                    request: NIP47Request) -> None:
        return None
