"""
Key material for dynger.

Derives the per-installation master secret with Argon2id and computes the
keyed BLAKE2b digests that password tokens are made of. Master secrets and
tokens travel as unpadded base64url text.
"""

import base64
import binascii
import hashlib
import logging
import os
import re
import secrets
from dataclasses import dataclass

from argon2.low_level import Type, hash_secret_raw

from dynger_errors import RandomnessUnavailable, SecretDecodeError

logger = logging.getLogger(__name__)

# Size of randomly generated seeds and salts in bytes
RAND_BYTES_LEN = 32

# Size of BLAKE2b digests in bytes
DIGEST_SIZE = 32

# Argon2id parameters (time=1 and 64 MiB as recommended by the Argon2 draft RFC)
KEY_LEN = 32
ARGON2_TIME_COST = 1
ARGON2_MEMORY_COST = 64 * 1024  # KiB

# Joins user and domain into a login string
CREDS_DELIMITER = ":"

# Joins salt and key in the salted text form of a derived key
SALT_DELIMITER = "$"

_B64URL_RE = re.compile(r"[A-Za-z0-9_-]*")


def random_bytes(size: int = RAND_BYTES_LEN) -> bytes:
    """
    Read bytes from the operating system's secure random source.

    Raises:
        RandomnessUnavailable: If the source cannot be read.
    """
    try:
        return secrets.token_bytes(size)
    except (OSError, NotImplementedError) as e:
        raise RandomnessUnavailable(f"Secure random source unavailable: {e}") from e


def b64encode(data: bytes) -> str:
    """Encode bytes as unpadded base64url text."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64decode(text: str | bytes) -> bytes:
    """
    Decode unpadded base64url text.

    Padding, characters outside the URL-safe alphabet, impossible lengths and
    non-zero trailing bits are rejected, so each byte string has exactly one
    accepted encoding.

    Raises:
        SecretDecodeError: If the text is not valid unpadded base64url.
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("ascii")
        except UnicodeDecodeError as e:
            raise SecretDecodeError("base64url text must be ASCII") from e
    if not isinstance(text, str):
        raise SecretDecodeError(f"Expected base64url text, got {type(text).__name__}")
    if not _B64URL_RE.fullmatch(text):
        raise SecretDecodeError("Illegal character in base64url text")
    if len(text) % 4 == 1:
        raise SecretDecodeError(f"Illegal base64url length {len(text)}")

    padded = text + "=" * (-len(text) % 4)
    try:
        data = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as e:
        raise SecretDecodeError(f"Can't decode base64url text: {e}") from e
    if b64encode(data) != text:
        raise SecretDecodeError("Non-canonical base64url text (trailing bits set)")
    return data


class Blake2bDigest:
    """
    Keyed BLAKE2b digests of a fixed size.

    The key goes straight into BLAKE2b's own key parameter, no HMAC wrapping.
    An empty key gives a plain (unkeyed) digest.
    """

    def __init__(self, size: int = DIGEST_SIZE) -> None:
        if not 1 <= size <= hashlib.blake2b.MAX_DIGEST_SIZE:
            raise ValueError(f"BLAKE2b digest size must be 1..{hashlib.blake2b.MAX_DIGEST_SIZE}, got {size}")
        self.size = size

    def digest(self, key: bytes, message: bytes) -> bytes:
        if len(key) > hashlib.blake2b.MAX_KEY_SIZE:
            raise ValueError(f"BLAKE2b key can't exceed {hashlib.blake2b.MAX_KEY_SIZE} bytes")
        return hashlib.blake2b(message, digest_size=self.size, key=key).digest()

    def hex(self, key: bytes, message: bytes) -> str:
        return self.digest(key, message).hex()

    def b64(self, key: bytes, message: bytes) -> str:
        return b64encode(self.digest(key, message))


def argon2_parallelism() -> int:
    """Number of lanes for Argon2: one per available CPU."""
    cpus = os.cpu_count() or 1
    return max(1, min(cpus, 255))


@dataclass(frozen=True)
class DerivedKey:
    """Argon2id output together with the salt it was derived with."""

    salt: bytes
    key: bytes

    def b64(self) -> str:
        return b64encode(self.key)

    def salted_b64(self, delimiter: str = SALT_DELIMITER) -> str:
        """Encode as ``b64(salt) + delimiter + b64(key)``."""
        return f"{b64encode(self.salt)}{delimiter}{b64encode(self.key)}"

    @classmethod
    def from_salted_b64(cls, text: str, delimiter: str = SALT_DELIMITER) -> "DerivedKey":
        """
        Parse the output of salted_b64().

        Raises:
            SecretDecodeError: If the delimiter is missing or either side is malformed.
        """
        salt_text, sep, key_text = text.partition(delimiter)
        if not sep:
            raise SecretDecodeError(f"Missing {delimiter!r} between salt and key")
        return cls(salt=b64decode(salt_text), key=b64decode(key_text))


def derive_key(password: bytes, salt: bytes | None = None) -> DerivedKey:
    """
    Stretch a password into KEY_LEN bytes with Argon2id.

    Args:
        password: Input material
        salt: Fixed salt, for reproducible tests only. A fresh random salt
              is generated when omitted.

    Returns:
        DerivedKey holding the salt and the derived key

    Raises:
        RandomnessUnavailable: If a salt is needed and the random source fails.
    """
    if salt is None:
        salt = random_bytes(RAND_BYTES_LEN)

    parallelism = argon2_parallelism()
    logger.debug(
        f"Deriving key: time_cost={ARGON2_TIME_COST}, memory_cost={ARGON2_MEMORY_COST} KiB, "
        f"parallelism={parallelism}"
    )
    key = hash_secret_raw(
        secret=password,
        salt=salt,
        time_cost=ARGON2_TIME_COST,
        memory_cost=ARGON2_MEMORY_COST,
        parallelism=parallelism,
        hash_len=KEY_LEN,
        type=Type.ID,
    )
    return DerivedKey(salt=salt, key=key)


class MasterSecret(bytes):
    """The key for every login digest of a deployment."""

    @classmethod
    def from_b64(cls, text: str) -> "MasterSecret":
        """
        Decode a master secret from configuration text.

        Raises:
            SecretDecodeError: If the text is not valid unpadded base64url.
        """
        return cls(b64decode(text.strip()))

    def b64(self) -> str:
        return b64encode(self)

    def __repr__(self) -> str:
        # keep the key out of logs and tracebacks
        return f"MasterSecret(<{len(self)} bytes>)"


def derive_master_secret(pin: bytes | str | None = None, salt: bytes | None = None) -> MasterSecret:
    """
    Generate a new master secret.

    Args:
        pin: Operator chosen PIN. When empty, RAND_BYTES_LEN random bytes
             are used as input material instead.
        salt: Fixed salt, for reproducible tests only

    Returns:
        MasterSecret of KEY_LEN bytes

    Raises:
        RandomnessUnavailable: If the random source cannot be read.
    """
    if isinstance(pin, str):
        pin = pin.encode("utf-8")
    if not pin:
        logger.debug("No PIN supplied, using random input material")
        pin = random_bytes(RAND_BYTES_LEN)

    return MasterSecret(derive_key(pin, salt).key)


def login_identity(user: str, domain: str) -> bytes:
    """Build the login string ``user:domain`` that password tokens are digests of."""
    return f"{user}{CREDS_DELIMITER}{domain}".encode("utf-8")


def issue_token(secret: bytes, user: str, domain: str) -> str:
    """Compute the password token a client must present for user@domain."""
    return Blake2bDigest(DIGEST_SIZE).b64(secret, login_identity(user, domain))


def random_token() -> str:
    """Generate a random base64url token (a BLAKE2b digest of fresh random bytes)."""
    return Blake2bDigest(DIGEST_SIZE).b64(b"", random_bytes(RAND_BYTES_LEN))
