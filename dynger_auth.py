"""
Login verification for dynamic DNS clients.

A client's password token is the keyed BLAKE2b digest of its login string
``user:domain`` under the deployment's master secret, so no password is stored
anywhere. The verifier recomputes the digest and compares it in constant time.
"""

import hmac
import logging
from dataclasses import dataclass

from dynger_crypto import DIGEST_SIZE, Blake2bDigest, MasterSecret, b64decode, login_identity
from dynger_errors import DyngerError, SecretDecodeError, SecretNotInitialized

logger = logging.getLogger(__name__)

MASTER_SECRET_LEN = 32


@dataclass(frozen=True)
class Verification:
    """
    Outcome of a login check.

    Attributes:
        verified: True only if the token matched exactly
        error: Why the token could not be checked (e.g. it was not valid
               base64url). Informational only; it never changes the outcome.
    """

    verified: bool
    error: DyngerError | None = None

    def __bool__(self) -> bool:
        return self.verified


def check_master_secret(secret: bytes) -> None:
    """
    Reject master secrets no deployment should run with.

    Raises:
        SecretNotInitialized: If the secret is empty, has the wrong length
                              or is all zero bytes.
    """
    if not secret:
        raise SecretNotInitialized("Master secret is empty")
    if len(secret) != MASTER_SECRET_LEN:
        raise SecretNotInitialized(f"Master secret must be {MASTER_SECRET_LEN} bytes, got {len(secret)}")
    if not any(secret):
        raise SecretNotInitialized("Master secret is all zero bytes")


def load_master_secret(text: str | None) -> MasterSecret:
    """
    Decode and check the base64url master secret found in configuration.

    Raises:
        SecretNotInitialized: If no secret text was supplied or the secret is unusable.
        SecretDecodeError: If the text is not valid base64url.
    """
    if not text or not text.strip():
        raise SecretNotInitialized("No master secret configured")
    secret = MasterSecret.from_b64(text)
    check_master_secret(secret)
    return secret


class CredentialVerifier:
    """Checks password tokens against one master secret, fixed at construction."""

    def __init__(self, secret: bytes) -> None:
        """
        Args:
            secret: Raw master secret bytes

        Raises:
            SecretNotInitialized: If the secret is empty, has the wrong length
                                  or is all zero bytes.
        """
        check_master_secret(secret)
        self._secret = MasterSecret(secret)
        self._digest = Blake2bDigest(DIGEST_SIZE)

    @classmethod
    def from_b64(cls, text: str | None) -> "CredentialVerifier":
        """
        Build a verifier from the base64url master secret found in configuration.

        Raises:
            SecretNotInitialized: If no secret text was supplied or the secret is unusable.
            SecretDecodeError: If the text is not valid base64url.
        """
        return cls(load_master_secret(text))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(<secret>)"

    def verify_login(self, domain: str, user: str, token: str) -> Verification:
        """
        Check that token is the password for user on domain.

        Args:
            domain: Host name the client wants to update
            user: User name from the client's credentials
            token: Password from the client's credentials (base64url)

        Returns:
            Verification that is truthy only on an exact match
        """
        expected = self._digest.digest(self._secret, login_identity(user, domain))

        error: SecretDecodeError | None = None
        try:
            presented = b64decode(token)
        except SecretDecodeError as e:
            error = e
            presented = b""

        # Malformed or wrong-sized tokens are still compared against a buffer
        # of the right size so they cost the same as a well-formed miss.
        well_formed = len(presented) == DIGEST_SIZE
        if not well_formed:
            presented = bytes(DIGEST_SIZE)

        matched = hmac.compare_digest(expected, presented)
        if error is not None:
            logger.debug(f"Undecodable password token for {user}@{domain}")
        return Verification(verified=matched and well_formed, error=error)
