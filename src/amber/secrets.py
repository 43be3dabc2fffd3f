"""Core secrets management functionality.

A secrets file (amber.yaml) holds the public key and an ordered list of
records, each with the SHA-256 of the plaintext and the sealed ciphertext:

    file_format_version: 1
    public_key: <hex>
    secrets:
      - name: PASSWORD
        sha256: <hex>
        cipher: <hex>

Every command reads the whole document, applies one change and writes the
whole document back. There is no locking: two processes saving the same file
at once means the last write wins.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml
from nacl.public import PrivateKey, PublicKey

from . import cipher, keys
from .changes import EncryptOutcome, compute_hash, detect_change
from .config import SECRET_KEY_ENV
from .errors import (
    DecryptionFailedError,
    DuplicateSecretNameError,
    InvalidSecretNameError,
    KeyMismatchError,
    MalformedDocumentError,
    MissingSecretKeyError,
    SecretNotFoundError,
    SecretsNotFoundError,
    UnsupportedFormatVersionError,
)

logger = logging.getLogger(__name__)

# Current version of the file format
FILE_FORMAT_VERSION = 1

DOCUMENT_FIELDS = ("file_format_version", "public_key", "secrets")
RECORD_FIELDS = ("name", "sha256", "cipher")

_SECRET_NAME = re.compile(r"^[A-Z0-9_]+$")
_HEX_DIGEST = re.compile(r"[0-9a-fA-F]{64}")


class _IndentedDumper(yaml.SafeDumper):
    """Indent block sequences under their key so list items line up in diffs."""

    def increase_indent(self, flow=False, indentless=False):
        return super().increase_indent(flow, False)


def mask_value(value: str, peek_chars: int = 4) -> str:
    """
    Mask a secret value, showing only first and last N characters.

    Used for confirmation messages, so users can check they stored the
    right value without it ending up in their terminal scrollback.
    """
    if not value:
        return "(empty)"

    if len(value) <= peek_chars * 2:
        return "*" * len(value)

    first = value[:peek_chars]
    last = value[-peek_chars:]
    hidden_len = len(value) - (peek_chars * 2)
    return f"{first}{'*' * min(hidden_len, 8)}{last}"


def validate_name(name: str) -> str:
    """Secret names double as environment variable names: [A-Z0-9_]+."""
    if not name or not _SECRET_NAME.match(name):
        raise InvalidSecretNameError(name)
    return name


@dataclass
class SecretRecord:
    """One named secret, still encrypted."""

    name: str
    # Digest of the plaintext, to avoid unnecessary updates and minimize diffs
    sha256: bytes
    # Ciphertext sealed with the document's public key
    cipher: bytes

    @classmethod
    def seal(cls, name: str, value, public_key: PublicKey) -> "SecretRecord":
        """Encrypt ``value`` and hash it in one step so the two always agree."""
        return cls(
            name=name,
            sha256=compute_hash(value),
            cipher=cipher.encrypt(public_key, value),
        )

    def decrypt(self, private_key: PrivateKey) -> str:
        """Decrypt and verify against the stored hash."""
        try:
            plain = cipher.decrypt(private_key, self.cipher)
        except DecryptionFailedError as e:
            raise DecryptionFailedError(e.reason, name=self.name) from e

        digest = compute_hash(plain)
        if digest != self.sha256:
            raise DecryptionFailedError(
                f"Hash mismatch, expected {self.sha256.hex()}, received {digest.hex()}",
                name=self.name,
            )

        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionFailedError("Invalid UTF-8 encoding", name=self.name) from e

    def to_raw(self) -> dict:
        return {
            "name": self.name,
            "sha256": self.sha256.hex(),
            "cipher": cipher.encode_cipher(self.cipher),
        }

    @classmethod
    def from_raw(cls, raw, index: int) -> "SecretRecord":
        field = f"secrets[{index}]"
        if not isinstance(raw, dict):
            raise MalformedDocumentError("expected a mapping", field=field)

        unknown = sorted(str(k) for k in raw if k not in RECORD_FIELDS)
        if unknown:
            raise MalformedDocumentError(f"unknown field(s) {', '.join(unknown)}", field=field)
        for name in RECORD_FIELDS:
            if not isinstance(raw.get(name), str):
                raise MalformedDocumentError("missing or non-string value", field=f"{field}.{name}")

        name = raw["name"]
        if not _HEX_DIGEST.fullmatch(raw["sha256"]):
            raise MalformedDocumentError(
                f"non-hex or wrong length sha256 for secret {name}", field=f"{field}.sha256"
            )

        return cls(
            name=name,
            sha256=bytes.fromhex(raw["sha256"]),
            cipher=cipher.decode_cipher(raw["cipher"], name),
        )


class Document:
    """
    The secrets file: format version, public key and ordered records.

    Record order is kept as loaded; new records are appended and updated
    records keep their position.
    """

    def __init__(self, public_key: PublicKey, secrets: Optional[list] = None,
                 format_version: int = FILE_FORMAT_VERSION):
        self.format_version = format_version
        self.public_key = public_key
        self.secrets: list[SecretRecord] = []
        for record in secrets or []:
            self.add(record)

    @classmethod
    def new(cls) -> tuple[PrivateKey, "Document"]:
        """Create a new keypair and an empty document for it."""
        public_key, private_key = keys.generate_keypair()
        return private_key, cls(public_key)

    def __len__(self) -> int:
        return len(self.secrets)

    def __contains__(self, name) -> bool:
        return self._index(name) is not None

    def _index(self, name: str):
        for index, record in enumerate(self.secrets):
            if record.name == name:
                return index
        return None

    def names(self) -> list[str]:
        return [record.name for record in self.secrets]

    def find(self, name: str) -> SecretRecord:
        return self.secrets[self._index_or_raise(name)]

    def add(self, record: SecretRecord) -> None:
        """Append a record, refusing duplicate names."""
        if record.name in self:
            raise DuplicateSecretNameError(record.name)
        self.secrets.append(record)

    def encrypt(self, name: str, value: str) -> EncryptOutcome:
        """
        Encrypt a new value, replacing as necessary.

        Returns UNCHANGED without touching the record when the value hashes
        the same as the stored one, so saving afterwards produces identical
        bytes. An overwrite discards the old value for good.
        """
        index = self._index(name)
        existing = None if index is None else self.secrets[index]
        outcome = detect_change(existing, compute_hash(value))

        if outcome is EncryptOutcome.UNCHANGED:
            logger.info("New value for %s matches old value, doing nothing", name)
            return outcome

        record = SecretRecord.seal(name, value, self.public_key)
        if outcome is EncryptOutcome.ADDED:
            self.secrets.append(record)
            logger.info("Added secret %s", name)
        else:
            logger.warning("Overwriting old value of secret %s", name)
            self.secrets[index] = record
        return outcome

    def remove(self, name: str) -> None:
        del self.secrets[self._index_or_raise(name)]
        logger.info("Removed secret %s", name)

    def _index_or_raise(self, name: str) -> int:
        index = self._index(name)
        if index is None:
            raise SecretNotFoundError(name)
        return index

    def get(self, name: str, private_key: PrivateKey) -> str:
        """Look up and decrypt a single secret."""
        return self.find(name).decrypt(private_key)

    def decrypt_all(self, private_key: PrivateKey) -> list[tuple[str, str]]:
        """
        Decrypt every record in document order.

        The first failure aborts the whole batch with DecryptionFailedError
        naming the record; nothing is returned for the others.
        """
        return [(record.name, record.decrypt(private_key)) for record in self.secrets]

    def load_secret_key(self, environ=None) -> PrivateKey:
        """
        Get the secret key from the environment variable.

        Validates that it matches up with the document's public key.
        """
        environ = os.environ if environ is None else environ
        text = environ.get(SECRET_KEY_ENV)
        if not text:
            raise MissingSecretKeyError(SECRET_KEY_ENV)

        private_key = keys.decode_private_key(text, f"secret key in {SECRET_KEY_ENV}")
        if not keys.keys_match(private_key, self.public_key):
            raise KeyMismatchError(SECRET_KEY_ENV)
        return private_key

    def to_raw(self) -> dict:
        return {
            "file_format_version": self.format_version,
            "public_key": keys.encode_key(self.public_key),
            "secrets": [record.to_raw() for record in self.secrets],
        }


def load(data) -> Document:
    """Parse a secrets document from bytes or text."""
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise MalformedDocumentError(f"Invalid YAML: {e}") from e

    if not isinstance(raw, dict):
        raise MalformedDocumentError("expected a mapping at the top level")

    unknown = sorted(str(k) for k in raw if k not in DOCUMENT_FIELDS)
    if unknown:
        raise MalformedDocumentError(f"unknown field(s) {', '.join(unknown)}")

    if "file_format_version" not in raw:
        raise MalformedDocumentError("missing field", field="file_format_version")
    version = raw["file_format_version"]
    if isinstance(version, bool) or not isinstance(version, int) or version != FILE_FORMAT_VERSION:
        raise UnsupportedFormatVersionError(version, FILE_FORMAT_VERSION)

    if "public_key" not in raw:
        raise MalformedDocumentError("missing field", field="public_key")
    public_key = keys.decode_public_key(raw["public_key"])

    secrets = raw.get("secrets")
    if not isinstance(secrets, list):
        raise MalformedDocumentError("expected a list", field="secrets")

    document = Document(public_key, format_version=version)
    for index, item in enumerate(secrets):
        document.add(SecretRecord.from_raw(item, index))
    return document


def save(document: Document) -> bytes:
    """
    Serialize deterministically.

    Field order, record order and indentation are fixed, so saving a document
    that did not change gives byte-identical output.
    """
    text = yaml.dump(
        document.to_raw(),
        Dumper=_IndentedDumper,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        width=4096,
    )
    return text.encode("utf-8")


def read_document(secrets_file: Path) -> Document:
    """Read and parse the secrets file."""
    secrets_file = Path(secrets_file)
    if not secrets_file.exists():
        raise SecretsNotFoundError(f"Secrets file not found: {secrets_file}")
    return load(secrets_file.read_bytes())


def write_document(secrets_file: Path, document: Document) -> None:
    """Write the whole document, replacing the old file in one step."""
    secrets_file = Path(secrets_file)
    data = save(document)

    # Ensure parent directory exists
    secrets_file.parent.mkdir(parents=True, exist_ok=True)

    temp_file = secrets_file.with_name(secrets_file.name + ".tmp")
    try:
        temp_file.write_bytes(data)
        os.replace(temp_file, secrets_file)
    finally:
        # Clean up temp file if it still exists
        if temp_file.exists():
            temp_file.unlink()
