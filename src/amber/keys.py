"""Keypair generation and hex encoding of keys."""

import re

from nacl.encoding import URLSafeBase64Encoder
from nacl.public import PrivateKey, PublicKey
from nacl.utils import random

from .errors import InvalidKeyEncodingError

KEY_SIZE = 32

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{%d}$" % (KEY_SIZE * 2))


def generate_keypair() -> tuple[PublicKey, PrivateKey]:
    """
    Create a fresh Curve25519 keypair from the libsodium CSPRNG.

    The caller stores the public key in the document and shows the private
    key to the user once. The private key must never be written anywhere else.
    """
    private_key = PrivateKey.generate()
    return private_key.public_key, private_key


def encode_key(key) -> str:
    """Render a public or private key as lowercase hex."""
    return bytes(key).hex()


def _decode(text, what: str) -> bytes:
    if not isinstance(text, str):
        raise InvalidKeyEncodingError(what)
    text = text.strip()
    if not _HEX_KEY.match(text):
        raise InvalidKeyEncodingError(what)
    return bytes.fromhex(text)


def decode_public_key(text: str, what: str = "public key") -> PublicKey:
    return PublicKey(_decode(text, what))


def decode_private_key(text: str, what: str = "secret key") -> PrivateKey:
    return PrivateKey(_decode(text, what))


def keys_match(private_key: PrivateKey, public_key: PublicKey) -> bool:
    return bytes(private_key.public_key) == bytes(public_key)


def generate_value(nbytes: int = 24) -> str:
    """Generate a strong random secret value (URL-safe, unpadded)."""
    if nbytes < 1:
        raise ValueError("nbytes must be positive")
    return URLSafeBase64Encoder.encode(random(nbytes)).decode("ascii").rstrip("=")
