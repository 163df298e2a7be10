"""Shared fixtures for A-Train tests."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from atrain.core.config import Account

TOKEN_URI = "https://oauth2.googleapis.com/token"


@pytest.fixture(scope="session")
def private_key() -> rsa.RSAPrivateKey:
    """Generate one RSA key for the whole test session."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(private_key: rsa.RSAPrivateKey) -> str:
    """PEM encoding of the session RSA key."""
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def account(private_key_pem: str) -> Account:
    """A service account using the session key."""
    return Account(
        client_email="primary@project.iam.gserviceaccount.com",
        private_key=private_key_pem,
        token_uri=TOKEN_URI,
    )


def write_account(path: Path, client_email: str, private_key_pem: str) -> Path:
    """Write a service account key file and return its path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(
            {
                "type": "service_account",
                "client_email": client_email,
                "private_key": private_key_pem,
                "token_uri": TOKEN_URI,
            }
        )
    )
    return path


@pytest.fixture
def make_account_file(private_key_pem: str):  # type: ignore[no-untyped-def]
    """Factory writing service account key files with the session key."""

    def make(path: Path, client_email: str) -> Path:
        return write_account(path, client_email, private_key_pem)

    return make
