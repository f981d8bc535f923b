"""Error taxonomy for the bridge"""

from enum import Enum


class ErrorCodes(Enum):
    MALFORMED_EVENT = "MALFORMED_EVENT"
    UNKNOWN_IDENTITY = "UNKNOWN_IDENTITY"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    DECRYPTION_FAILED = "DECRYPTION_FAILED"
    MALFORMED_REQUEST = "MALFORMED_REQUEST"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    UNMATCHED_RESPONSE = "UNMATCHED_RESPONSE"
    NO_WALLET_CONNECTION = "NO_WALLET_CONNECTION"
    POLICY_REJECTED = "POLICY_REJECTED"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    RELAY_UNAVAILABLE = "RELAY_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    MALFORMED_URI = "MALFORMED_URI"
    INVALID_PUBKEY = "INVALID_PUBKEY"
    DUPLICATE_CONNECTION = "DUPLICATE_CONNECTION"


class BridgeError(Exception):
    """
    Base class for bridge errors.

    code: one of ErrorCodes
    message: human readable error message
    """
    code = None

    def __init__(self, message=None):
        super().__init__(message or self.code.value)
        self.message = message

    def __str__(self):
        if self.message:
            return f"{self.code.value}: {self.message}"
        return self.code.value


class MalformedEvent(BridgeError):
    code = ErrorCodes.MALFORMED_EVENT


class UnknownIdentity(BridgeError):
    code = ErrorCodes.UNKNOWN_IDENTITY


class AuthenticationFailed(BridgeError):
    code = ErrorCodes.AUTHENTICATION_FAILED


class DecryptionFailed(BridgeError):
    code = ErrorCodes.DECRYPTION_FAILED


class MalformedRequest(BridgeError):
    code = ErrorCodes.MALFORMED_REQUEST


class MalformedResponse(BridgeError):
    code = ErrorCodes.MALFORMED_RESPONSE


class UnmatchedResponse(BridgeError):
    code = ErrorCodes.UNMATCHED_RESPONSE


class NoWalletConnection(BridgeError):
    code = ErrorCodes.NO_WALLET_CONNECTION


class PolicyRejected(BridgeError):
    code = ErrorCodes.POLICY_REJECTED


class StoreUnavailable(BridgeError):
    code = ErrorCodes.STORE_UNAVAILABLE


class RelayUnavailable(BridgeError):
    code = ErrorCodes.RELAY_UNAVAILABLE


class HandlerTimeout(BridgeError):
    code = ErrorCodes.TIMEOUT


class MalformedURI(BridgeError):
    code = ErrorCodes.MALFORMED_URI


class InvalidPubkey(BridgeError):
    code = ErrorCodes.INVALID_PUBKEY


class DuplicateConnection(BridgeError):
    code = ErrorCodes.DUPLICATE_CONNECTION
