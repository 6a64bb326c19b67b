"""
Vault Crypto Core — Key derivation, encryption/decryption and PIN hashing.

- Item keys: PBKDF2-HMAC-SHA256(pin, per-item salt) → AEAD key
- Content: AES-256-GCM (or ChaCha20-Poly1305) with a random 96-bit nonce
  generated inside every ``encrypt`` call
- PIN credential: scrypt(pin, credential salt), never the same primitive
  as the item key derivation

Security Note:
    Never log plaintext, ciphertext or key material.
    Keys exist only for the duration of a single encrypt/decrypt call.
"""
import os
import hmac
import base64
import binascii
import logging
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from .exceptions import EncryptionError, DecryptionError

logger = logging.getLogger("navigator.vault")

NONCE_SIZE = 12  # 96-bit nonce
SALT_SIZE = 16
KEY_LENGTH = 32  # AES-256
TAG_SIZE = 16
PBKDF2_ITERATIONS = 600_000

SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1
_PIN_HASH_SCHEME = "scrypt"

_CIPHERS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


def get_cipher_cls(name: str = "aesgcm") -> type:
    """Return the AEAD cipher class for a backend name."""
    try:
        return _CIPHERS[name.lower()]
    except KeyError:
        raise ValueError(f"Unsupported cipher backend: {name}") from None


def _to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return value


# ---------------------------------------------------------------------------
# Storage encoding
# ---------------------------------------------------------------------------

def encode_bytes(data: bytes) -> str:
    """Encode binary data as base64 text for the document store."""
    return base64.b64encode(data).decode("ascii")


def decode_bytes(data: str) -> bytes:
    """Decode base64 text from the document store.

    Raises:
        ValueError: If the text is not valid base64.
    """
    try:
        return base64.b64decode(data.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as err:
        raise ValueError(f"Malformed base64 value: {err}") from err


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def generate_salt() -> bytes:
    """Generate a random per-item salt."""
    return os.urandom(SALT_SIZE)


def derive_key(
    pin: str,
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS
) -> bytes:
    """Derive a 32-byte item key from a PIN and a salt using PBKDF2.

    The same (pin, salt) pair always yields the same key; a different
    salt yields an unrelated key for the same PIN.

    Args:
        pin: User PIN.
        salt: Per-item random salt.
        iterations: PBKDF2 work factor.

    Returns:
        32-byte derived key.
    """
    if not salt:
        raise ValueError("Key derivation requires a non-empty salt")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(pin.encode("utf-8"))


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def encrypt(
    plaintext: Union[str, bytes],
    key: bytes,
    cipher_cls: Optional[type] = None
) -> tuple[bytes, bytes]:
    """Encrypt plaintext with a fresh random nonce.

    Args:
        plaintext: Data to encrypt (str is encoded as UTF-8).
        key: 32-byte key from ``derive_key``.
        cipher_cls: AEAD class, AES-GCM by default.

    Returns:
        Tuple of (ciphertext with tag, iv).

    Raises:
        EncryptionError: If the cipher primitive fails.
    """
    cipher_cls = cipher_cls or AESGCM
    iv = os.urandom(NONCE_SIZE)
    try:
        cipher = cipher_cls(key)
        ciphertext = cipher.encrypt(iv, _to_bytes(plaintext), None)
    except Exception as err:
        raise EncryptionError(f"Encryption failed: {err}") from err
    return ciphertext, iv


def decrypt(
    ciphertext: bytes,
    key: bytes,
    iv: bytes,
    cipher_cls: Optional[type] = None
) -> bytes:
    """Decrypt and authenticate ciphertext.

    Args:
        ciphertext: Encrypted payload including the 16-byte tag.
        key: 32-byte key from ``derive_key``.
        iv: Nonce used at encryption time.
        cipher_cls: AEAD class, AES-GCM by default.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        DecryptionError: On a wrong key, wrong iv or corrupted data.
    """
    cipher_cls = cipher_cls or AESGCM
    if len(iv) != NONCE_SIZE:
        raise DecryptionError(
            f"Invalid iv length: {len(iv)} bytes (expected {NONCE_SIZE})"
        )
    if len(ciphertext) < TAG_SIZE:
        raise DecryptionError(
            f"ciphertext too short: {len(ciphertext)} bytes "
            f"(minimum {TAG_SIZE})"
        )
    try:
        cipher = cipher_cls(key)
        return cipher.decrypt(iv, ciphertext, None)
    except InvalidTag:
        raise DecryptionError() from None
    except Exception as err:
        raise DecryptionError(f"Decryption failed: {err}") from err


# ---------------------------------------------------------------------------
# PIN hashing
# ---------------------------------------------------------------------------

def _scrypt(pin: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(pin.encode("utf-8"))


def hash_pin(pin: str, salt: Optional[bytes] = None) -> str:
    """Hash a PIN for local verification.

    Format: ``scrypt$<salt b64>$<hash b64>``

    Args:
        pin: User PIN.
        salt: Credential salt, random when omitted.

    Returns:
        Encoded one-way hash.
    """
    salt = salt or os.urandom(SALT_SIZE)
    digest = _scrypt(pin, salt)
    return f"{_PIN_HASH_SCHEME}${encode_bytes(salt)}${encode_bytes(digest)}"


def verify_pin_hash(pin: str, encoded: str) -> bool:
    """Check a PIN against an encoded hash in constant time.

    Returns:
        True on match; False on mismatch or a malformed hash.
    """
    try:
        scheme, salt_b64, digest_b64 = encoded.split("$")
        if scheme != _PIN_HASH_SCHEME:
            return False
        salt = decode_bytes(salt_b64)
        expected = decode_bytes(digest_b64)
    except (ValueError, AttributeError):
        logger.warning("Stored PIN credential is malformed")
        return False
    return hmac.compare_digest(_scrypt(pin, salt), expected)
