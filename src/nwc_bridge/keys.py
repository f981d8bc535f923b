"""key helpers"""

from coincurve import PrivateKey, PublicKey, PublicKeyXOnly


def get_hex_pubkey(privkey: str) -> str:
    """
    Compute the x-only public key from a private key
    """
    privkey_bytes = bytes.fromhex(privkey)
    compressed_hex_pubkey = PublicKey.from_secret(
        privkey_bytes).format().hex()
    x_only_hex_pubkey = compressed_hex_pubkey[2:]
    return x_only_hex_pubkey


def generate_keypair() -> tuple[str, str]:
    """
    Generate a fresh random keypair

    Returns:
        privkey: hex encoded 32-byte secret
        pubkey: hex encoded 32-byte x-only public key
    """
    privkey = PrivateKey()
    privkey_hex = privkey.secret.hex()

    return privkey_hex, get_hex_pubkey(privkey_hex)


def is_valid_pubkey(pubkey: str) -> bool:
    """check that pubkey is a hex encoded x-only point on secp256k1"""
    if not isinstance(pubkey, str) or len(pubkey) != 64:
        return False
    try:
        PublicKeyXOnly(bytes.fromhex(pubkey))
    except ValueError:
        return False
    return True


def is_valid_secret(secret: str) -> bool:
    """check that secret is a hex encoded, in-range secp256k1 scalar"""
    if not isinstance(secret, str) or len(secret) != 64:
        return False
    try:
        PrivateKey(bytes.fromhex(secret))
    except ValueError:
        return False
    return True


def normalize_owner_pubkey(pubkey: str) -> str:
    """
    Owners may be identified by a compressed (33-byte) or an x-only
    (32-byte) key; both are accepted and lowercased, nothing else is.
    """
    if not isinstance(pubkey, str):
        raise ValueError("pubkey must be a hex string")
    pubkey = pubkey.lower()
    if len(pubkey) == 66:
        PublicKey(bytes.fromhex(pubkey))
        return pubkey
    if is_valid_pubkey(pubkey):
        return pubkey
    raise ValueError(f"invalid pubkey: {pubkey}")
