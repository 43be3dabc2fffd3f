"""
Authenticated public-key encryption of individual secret values.

Values are sealed with a libsodium sealed box: every call uses a fresh
ephemeral keypair, so encrypting the same plaintext twice gives different
ciphertext. Deciding whether a value changed is the job of
:mod:`amber.changes`, never a comparison of ciphertexts.
"""

import re

from nacl.exceptions import CryptoError
from nacl.public import PrivateKey, PublicKey, SealedBox

from .errors import DecryptionFailedError, InvalidCiphertextEncodingError

_HEX = re.compile(r"(?:[0-9a-fA-F]{2})+")


def _as_bytes(plaintext) -> bytes:
    if isinstance(plaintext, str):
        return plaintext.encode("utf-8")
    return bytes(plaintext)


def encrypt(public_key: PublicKey, plaintext) -> bytes:
    """Seal ``plaintext`` (str or bytes) for the holder of ``public_key``."""
    return SealedBox(public_key).encrypt(_as_bytes(plaintext))


def decrypt(private_key: PrivateKey, ciphertext: bytes) -> bytes:
    """
    Open a sealed box.

    Raises DecryptionFailedError if the ciphertext was sealed for another
    key, is truncated, or fails authentication.
    """
    try:
        return SealedBox(private_key).decrypt(bytes(ciphertext))
    except CryptoError as e:
        raise DecryptionFailedError("Unable to decrypt secret") from e


def encode_cipher(ciphertext: bytes) -> str:
    return bytes(ciphertext).hex()


def decode_cipher(text, name: str = "") -> bytes:
    """Parse hex ciphertext from the document, ``name`` is for error messages only."""
    if not isinstance(text, str) or not _HEX.fullmatch(text):
        raise InvalidCiphertextEncodingError(name)
    return bytes.fromhex(text)
