"""Tests for key generation and encoding."""

import pytest

from amber import keys
from amber.errors import InvalidKeyEncodingError

KEY_HEX = "2a0fb64171010cd4584e2b658fc0a5effca4cd9ada2b2eea0262356852c60872"


class TestGenerateKeypair:
    """Tests for generate_keypair."""

    def test_keys_belong_together(self):
        """The public key is derived from the private key."""
        public_key, private_key = keys.generate_keypair()
        assert keys.keys_match(private_key, public_key)

    def test_fresh_each_call(self):
        """Two calls never return the same key."""
        _, first = keys.generate_keypair()
        _, second = keys.generate_keypair()
        assert bytes(first) != bytes(second)

    def test_mismatched_keys(self):
        """A private key does not match somebody else's public key."""
        public_key, _ = keys.generate_keypair()
        _, private_key = keys.generate_keypair()
        assert not keys.keys_match(private_key, public_key)


class TestKeyEncoding:
    """Tests for hex encoding of keys."""

    def test_encode_is_lowercase_hex(self):
        """Keys render as 64 lowercase hex characters."""
        public_key, private_key = keys.generate_keypair()
        for key in (public_key, private_key):
            encoded = keys.encode_key(key)
            assert len(encoded) == 64
            assert encoded == encoded.lower()
            int(encoded, 16)

    def test_decode_encode(self, secret_key_hex):
        """Decoding the fixture key and encoding it again gives the same text."""
        private_key = keys.decode_private_key(secret_key_hex)
        assert keys.encode_key(private_key) == secret_key_hex

    def test_decode_tolerates_whitespace_and_case(self, secret_key_hex):
        """Trailing newlines (from env files) and upper case are accepted."""
        private_key = keys.decode_private_key(secret_key_hex.upper() + "\n")
        assert keys.encode_key(private_key) == secret_key_hex

    @pytest.mark.parametrize("text", [
        "",
        "abcd",
        KEY_HEX[:-2],
        KEY_HEX + "00",
        "zz" + KEY_HEX[2:],
    ])
    def test_decode_rejects_bad_text(self, text):
        """Wrong length or non-hex characters fail."""
        with pytest.raises(InvalidKeyEncodingError):
            keys.decode_public_key(text)

    def test_decode_rejects_non_string(self):
        """Non-string YAML values fail the same way."""
        with pytest.raises(InvalidKeyEncodingError):
            keys.decode_public_key(12345)

    def test_error_names_the_key(self):
        """The error says which key was bad."""
        with pytest.raises(InvalidKeyEncodingError, match="secret key in AMBER_SECRET"):
            keys.decode_private_key("nope", "secret key in AMBER_SECRET")


class TestGenerateValue:
    """Tests for random secret values."""

    def test_length_and_alphabet(self):
        """24 random bytes make 32 URL-safe characters."""
        value = keys.generate_value(24)
        assert len(value) == 32
        assert all(c.isalnum() or c in "-_" for c in value)

    def test_values_differ(self):
        assert keys.generate_value() != keys.generate_value()

    def test_rejects_zero(self):
        with pytest.raises(ValueError):
            keys.generate_value(0)
