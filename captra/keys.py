# captra/keys.py
from __future__ import annotations

import base64
import binascii
from pathlib import Path
from typing import Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

PUBLIC_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64


class KeyFileError(RuntimeError):
    pass


def generate_signing_key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.generate()


def public_key_bytes(key: Union[Ed25519PrivateKey, Ed25519PublicKey]) -> bytes:
    if isinstance(key, Ed25519PrivateKey):
        key = key.public_key()
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def encode_public_key(key: Union[Ed25519PrivateKey, Ed25519PublicKey]) -> str:
    return base64.b64encode(public_key_bytes(key)).decode("ascii")


def decode_public_key(text: str) -> Ed25519PublicKey:
    """Accept standard or urlsafe base64, padded or not."""
    s = text.strip()
    try:
        pad = "=" * (-len(s) % 4)
        if "-" in s or "_" in s:
            raw = base64.b64decode(s + pad, altchars=b"-_", validate=True)
        else:
            raw = base64.b64decode(s + pad, validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyFileError(f"public key is not valid base64: {e}") from e
    if len(raw) != PUBLIC_KEY_LENGTH:
        raise KeyFileError(f"public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(raw)}")
    return Ed25519PublicKey.from_public_bytes(raw)


def save_signing_key(key: Ed25519PrivateKey, path: Union[str, Path]) -> Path:
    path = Path(path)
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(pem)
        tmp.chmod(0o600)
        tmp.replace(path)
    except OSError as e:
        raise KeyFileError(f"cannot write signing key {str(path)!r}: {e}") from e
    return path


def save_public_key(key: Union[Ed25519PrivateKey, Ed25519PublicKey], path: Union[str, Path]) -> Path:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(encode_public_key(key) + "\n", encoding="utf-8")
    except OSError as e:
        raise KeyFileError(f"cannot write public key {str(path)!r}: {e}") from e
    return path


def load_signing_key(path: Union[str, Path]) -> Ed25519PrivateKey:
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise KeyFileError(f"cannot read signing key {str(path)!r}: {e}") from e
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError) as e:
        raise KeyFileError(f"{str(path)!r} is not an unencrypted PEM private key: {e}") from e
    if not isinstance(key, Ed25519PrivateKey):
        raise KeyFileError(f"{str(path)!r} is not an Ed25519 key")
    return key


def load_public_key(path: Union[str, Path]) -> Ed25519PublicKey:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise KeyFileError(f"cannot read public key {str(path)!r}: {e}") from e
    return decode_public_key(text)


__all__ = [
    "KeyFileError",
    "PUBLIC_KEY_LENGTH",
    "SIGNATURE_LENGTH",
    "decode_public_key",
    "encode_public_key",
    "generate_signing_key",
    "load_public_key",
    "load_signing_key",
    "public_key_bytes",
    "save_public_key",
    "save_signing_key",
]
