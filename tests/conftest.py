"""Shared fixtures for amber tests."""

import pytest
from nacl.public import PrivateKey

from amber import keys
from amber.config import SECRET_KEY_ENV, SECRETS_FILE_ENV
from amber.secrets import Document, write_document

SECRET_KEY = "2a0fb64171010cd4584e2b658fc0a5effca4cd9ada2b2eea0262356852c60872"


@pytest.fixture
def secret_key_hex():
    return SECRET_KEY


@pytest.fixture
def private_key():
    return keys.decode_private_key(SECRET_KEY)


@pytest.fixture
def public_key(private_key):
    return private_key.public_key


@pytest.fixture
def document(public_key):
    """An empty document for the fixed test keypair."""
    return Document(public_key)


@pytest.fixture
def other_private_key():
    return PrivateKey.generate()


@pytest.fixture
def secrets_file(tmp_path, document, monkeypatch):
    """An empty amber.yaml on disk, wired up through the environment."""
    path = tmp_path / "amber.yaml"
    write_document(path, document)
    monkeypatch.setenv(SECRETS_FILE_ENV, str(path))
    monkeypatch.setenv(SECRET_KEY_ENV, SECRET_KEY)
    return path
