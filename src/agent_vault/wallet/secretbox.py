"""Password-based AEAD for wallet secret fields at rest.

A password is stretched with PBKDF2-HMAC-SHA256 into a 256-bit key and the
field is sealed with AES-256-GCM. The sealed form is a small dict that the
CBOR serializer stores in place of the plaintext.
"""

from __future__ import annotations

import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from agent_vault.errors import DecryptionError

DEFAULT_KDF_ITERATIONS = 600_000
SALT_SIZE = 16
NONCE_SIZE = 12
SEALED_MARKER = "aes-256-gcm/pbkdf2-sha256"


def derive_key(password: str, salt: bytes, iterations: int = DEFAULT_KDF_ITERATIONS) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations)
    return kdf.derive(password.encode("utf-8"))


def seal(plaintext: str, password: str, iterations: int = DEFAULT_KDF_ITERATIONS) -> dict[str, Any]:
    """Encrypt *plaintext* with a key stretched from *password*."""
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    key = derive_key(password, salt, iterations)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return {
        "alg": SEALED_MARKER,
        "salt": salt,
        "nonce": nonce,
        "iterations": iterations,
        "ciphertext": ciphertext,
    }


def is_sealed(value: Any) -> bool:
    return isinstance(value, dict) and value.get("alg") == SEALED_MARKER


def unseal(sealed: dict[str, Any], password: str) -> str:
    """Reverse :func:`seal`.

    Raises
    ------
    DecryptionError
        If the password is wrong or the sealed blob was tampered with.
    """
    try:
        key = derive_key(password, sealed["salt"], int(sealed["iterations"]))
        plaintext = AESGCM(key).decrypt(sealed["nonce"], sealed["ciphertext"], None)
    except InvalidTag:
        raise DecryptionError("Wrong password or tampered wallet secret") from None
    except (KeyError, TypeError, ValueError) as exc:
        raise DecryptionError(f"Malformed sealed secret: {exc}") from exc
    return plaintext.decode("utf-8")
