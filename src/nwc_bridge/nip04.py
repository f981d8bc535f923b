from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives import padding
import base64
import binascii
import os

from .errors import DecryptionFailed

# NIP04 spec: https://github.com/nostr-protocol/nips/blob/master/04.md


def get_ecdh_key(secret_key: str, pubkey_hex: str) -> bytes:
    """
    Shared x coordinate of secret_key * pubkey.

    Only x is used, so an x-only key can be lifted with either prefix.
    """
    pubkey_bytes = bytes.fromhex('02' + pubkey_hex)

    ec_key = ec.EllipticCurvePublicKey.from_encoded_point(
        ec.SECP256K1(), pubkey_bytes)
    sk = ec.derive_private_key(int(secret_key, 16), ec.SECP256K1())

    return sk.exchange(ec.ECDH(), ec_key)


def process_aes(data: bytes, key: bytes, iv: bytes, mode: str) -> bytes:
    """AES-256-CBC over data, mode is 'encrypt' or 'decrypt' (which also unpads)"""
    cipher = Cipher(algorithms.AES(key), modes.CBC(iv))
    if mode == 'encrypt':
        processor = cipher.encryptor()
    elif mode == 'decrypt':
        processor = cipher.decryptor()
    else:
        raise ValueError(f"unknown aes mode: {mode}")

    result = processor.update(data) + processor.finalize()
    if mode == 'decrypt':
        unpadder = padding.PKCS7(128).unpadder()
        result = unpadder.update(result) + unpadder.finalize()

    return result


def encrypt(secret_key: str, pubkey_hex: str, data: str) -> str:
    """
    Encrypt data for pubkey_hex.

    Returns:
        str: base64 ciphertext followed by ?iv=<base64 iv>
    """
    shared_key = get_ecdh_key(secret_key, pubkey_hex)

    iv = os.urandom(16)

    padder = padding.PKCS7(128).padder()
    padded_data = padder.update(data.encode()) + padder.finalize()

    encrypted_data = process_aes(padded_data, shared_key, iv, 'encrypt')

    return base64.b64encode(encrypted_data).decode() + '?iv=' + base64.b64encode(iv).decode()


def decrypt(secret_key: str, pubkey_hex: str, data: str) -> str:
    """
    Decrypt a ciphertext produced by encrypt()

    Raises:
        DecryptionFailed: bad key, encoding, padding or utf-8
    """
    try:
        shared_key = get_ecdh_key(secret_key, pubkey_hex)

        encrypted_message_b64, iv_b64 = data.split('?iv=')
        encrypted_message = base64.b64decode(encrypted_message_b64, validate=True)
        iv = base64.b64decode(iv_b64, validate=True)

        decrypted_data = process_aes(encrypted_message, shared_key, iv, 'decrypt')

        return decrypted_data.decode('utf-8')
    except (ValueError, TypeError, AttributeError, binascii.Error) as e:
        raise DecryptionFailed(f"nip04 decrypt failed: {e}") from e
