import json
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse, parse_qs, urlencode

from .errors import MalformedURI, MalformedRequest, MalformedResponse
from .event import Event
from .keys import is_valid_pubkey, is_valid_secret
from . import nip04

# https://github.com/nostr-protocol/nips/blob/master/47.md

REQUEST_KIND = 23194
RESPONSE_KIND = 23195

URI_SCHEMES = ("nostr+walletconnect", "nostrwalletconnect")

PAY_INVOICE = "pay_invoice"


@dataclass
class URIOptions:
    """defines the parts of a nostr wallet connect uri"""
    relay_url: Optional[str] = None
    secret: Optional[str] = None
    wallet_pubkey: Optional[str] = None
    lud16: Optional[str] = None


class NIP47URI:
    """parse and build nostr wallet connect uris"""
    @staticmethod
    def parse_wallet_connect_url(url: str) -> URIOptions:
        """
        parse a `nostr+walletconnect://<pubkey>?relay=..&secret=..` uri

        Raises:
            MalformedURI: wrong scheme, missing or invalid pubkey, secret or relay
        """
        if not isinstance(url, str):
            raise MalformedURI("uri must be a string")

        parsed = urlparse(url=url.strip())
        if parsed.scheme not in URI_SCHEMES:
            raise MalformedURI(f"unexpected uri scheme: {parsed.scheme!r}")

        options = URIOptions()
        options.wallet_pubkey = parsed.hostname

        query_params = parse_qs(parsed.query)
        options.secret = query_params.get("secret", [None])[0]
        options.relay_url = query_params.get("relay", [None])[0]
        options.lud16 = query_params.get("lud16", [None])[0]

        if not options.wallet_pubkey or not is_valid_pubkey(options.wallet_pubkey):
            raise MalformedURI("missing or invalid wallet pubkey")
        if not options.secret or not is_valid_secret(options.secret.lower()):
            raise MalformedURI("missing or invalid secret")
        if not options.relay_url:
            raise MalformedURI("missing relay url")
        relay = urlparse(options.relay_url)
        if relay.scheme not in ("ws", "wss") or not relay.netloc:
            raise MalformedURI(f"invalid relay url: {options.relay_url}")

        options.secret = options.secret.lower()
        return options

    @staticmethod
    def construct_wallet_connect_url(options: URIOptions) -> str:
        """builds and returns the nwc uri"""
        if not options.relay_url:
            raise ValueError("relay url is required")
        if not options.secret:
            raise ValueError("secret is required")
        if not options.wallet_pubkey:
            raise ValueError("wallet pubkey is required")

        query = {"relay": options.relay_url, "secret": options.secret}
        if options.lud16:
            query["lud16"] = options.lud16

        return f'nostr+walletconnect://{options.wallet_pubkey}?{urlencode(query)}'


# params a request must carry before it can be forwarded
required_params = {
    PAY_INVOICE: ["invoice"],
}


@dataclass
class NIP47Request:
    """decrypted content of a kind 23194 event"""
    method: str
    params: dict = field(default_factory=dict)

    @staticmethod
    def pay_invoice(invoice: str) -> "NIP47Request":
        return NIP47Request(method=PAY_INVOICE, params={"invoice": invoice})

    @staticmethod
    def from_json(content: str) -> "NIP47Request":
        """
        parse and validate a request payload

        any method is structurally valid, forwarded methods must also carry
        their required params
        """
        try:
            payload = json.loads(content)
        except (json.JSONDecodeError, TypeError) as e:
            raise MalformedRequest(f"request is not json: {e}") from e

        if not isinstance(payload, dict):
            raise MalformedRequest("request must be a json object")

        method = payload.get("method")
        if not isinstance(method, str) or not method:
            raise MalformedRequest("missing method")

        params = payload.get("params", {})
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise MalformedRequest("params must be a json object")

        for param in required_params.get(method, ()):
            if not params.get(param):
                raise MalformedRequest(f"missing parameter: {param}")

        if method == PAY_INVOICE and not isinstance(params["invoice"], str):
            raise MalformedRequest("invoice must be a string")

        return NIP47Request(method=method, params=params)

    @property
    def invoice(self) -> Optional[str]:
        return self.params.get("invoice")

    def to_json(self) -> str:
        return json.dumps({"method": self.method, "params": self.params})


@dataclass
class NIP47Response:
    """decrypted content of a kind 23195 event"""
    result_type: str
    result: Optional[dict] = None
    error: Optional[dict] = None

    @staticmethod
    def from_json(content: str) -> "NIP47Response":
        try:
            payload = json.loads(content)
        except (json.JSONDecodeError, TypeError) as e:
            raise MalformedResponse(f"response is not json: {e}") from e

        if not isinstance(payload, dict):
            raise MalformedResponse("response must be a json object")

        result_type = payload.get("result_type")
        if not isinstance(result_type, str) or not result_type:
            raise MalformedResponse("missing result_type")

        result = payload.get("result")
        error = payload.get("error")
        if result is not None and not isinstance(result, dict):
            raise MalformedResponse("result must be a json object")
        if error is not None and not isinstance(error, dict):
            raise MalformedResponse("error must be a json object")

        return NIP47Response(result_type=result_type, result=result, error=error)

    def to_json(self) -> str:
        return json.dumps({
            "result_type": self.result_type,
            "result": self.result,
            "error": self.error
        })


def build_request_event(request: NIP47Request, secret: str,
                        wallet_pubkey: str) -> Event:
    """create a signed kind 23194 event carrying request for wallet_pubkey"""
    encrypted_content = nip04.encrypt(
        secret_key=secret,
        pubkey_hex=wallet_pubkey,
        data=request.to_json()
    )

    event = Event(
        content=encrypted_content,
        tags=[['p', wallet_pubkey]],
        kind=REQUEST_KIND)

    return event.sign(secret)


def build_response_event(response: NIP47Response, secret: str,
                         encryption_pubkey: str, recipient_pubkey: str,
                         referenced_event_id: str) -> Event:
    """
    create a signed kind 23195 event carrying response

    the content is encrypted to encryption_pubkey, the event is tagged
    for recipient_pubkey and references the request it answers
    """
    encrypted_content = nip04.encrypt(
        secret_key=secret,
        pubkey_hex=encryption_pubkey,
        data=response.to_json()
    )

    event = Event(
        content=encrypted_content,
        tags=[
            ['p', recipient_pubkey],
            ['e', referenced_event_id]],
        kind=RESPONSE_KIND)

    return event.sign(secret)
