# clientguard/utils/security.py
"""Credential hashing for the client management portal

Implements salted PBKDF2-HMAC with a configurable, floor-enforced iteration
count. Salts and derived keys are base64-encoded for storage.
"""
import base64
import binascii
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Dict

import bcrypt

from clientguard.exceptions import ConfigurationError

DEFAULT_ITERATIONS = 100000
MIN_ITERATIONS = 10000
DIGEST = 'sha256'
ALGORITHM = 'pbkdf2_sha256'
LEGACY_ALGORITHM = 'bcrypt'
SALT_LENGTH = 32  # 256 bits
KEY_LENGTH = 64  # 512 bits

# Fixed dummy salt used to keep the malformed-input path as slow as a real check
_DUMMY_SALT = b'\x00' * SALT_LENGTH


@dataclass(frozen=True)
class CredentialRecord:
    """Stored form of a hashed password"""
    hash: str
    salt: str
    iterations: int
    algorithm: str = ALGORITHM

    def to_dict(self) -> Dict:
        return {
            'hash': self.hash,
            'salt': self.salt,
            'iterations': self.iterations,
            'algorithm': self.algorithm,
        }


class PasswordHasher:
    """
    PBKDF2 password hasher

    Every call to ``hash`` draws a fresh random salt, so hashing the same
    password twice yields two different records.
    """

    def __init__(self, iterations: int = DEFAULT_ITERATIONS, digest: str = DIGEST):
        self.iterations = iterations
        self.digest = digest

    def hash(self, password: str) -> CredentialRecord:
        """
        Hash password using PBKDF2-HMAC

        Args:
            password: Plain text password

        Returns:
            CredentialRecord with base64 salt and hash
        """
        salt = secrets.token_bytes(SALT_LENGTH)
        derived = self._derive(password, salt, self.iterations)

        return CredentialRecord(
            hash=base64.b64encode(derived).decode('ascii'),
            salt=base64.b64encode(salt).decode('ascii'),
            iterations=self.iterations,
            algorithm=ALGORITHM,
        )

    def verify(self, password: str, salt: str, stored_hash: str, iterations: int) -> bool:
        """
        Verify password against stored hash using constant-time comparison

        Corrupted stored values never raise: the derivation still runs on a
        dummy salt and the result is a plain mismatch.

        Args:
            password: Plain text password to verify
            salt: Base64-encoded salt
            stored_hash: Base64-encoded stored hash
            iterations: Iteration count the stored hash was made with

        Returns:
            True if password matches, False otherwise
        """
        try:
            salt_bytes = _b64decode(salt)
            expected = _b64decode(stored_hash)
        except (binascii.Error, ValueError, TypeError):
            salt_bytes = expected = None

        try:
            rounds = int(iterations)
            if rounds < 1:
                raise ValueError('iterations must be positive')
        except (TypeError, ValueError):
            rounds = None

        if salt_bytes is None or expected is None or rounds is None:
            self._derive(password or '', _DUMMY_SALT, self.iterations)
            return False

        try:
            computed = self._derive(password, salt_bytes, rounds)
        except (TypeError, ValueError, OverflowError, AttributeError):
            return False

        return hmac.compare_digest(computed, expected)

    def needs_rehash(self, iterations: int, algorithm: str) -> bool:
        """Check whether a stored credential is weaker than the current settings"""
        return algorithm != ALGORITHM or (iterations or 0) < self.iterations

    def set_iterations(self, iterations: int) -> None:
        """
        Set number of iterations

        Raises:
            ConfigurationError: If iterations is below the safety minimum
        """
        if iterations < MIN_ITERATIONS:
            raise ConfigurationError(
                f'Iterations must be at least {MIN_ITERATIONS:,} for security'
            )
        self.iterations = iterations

    def get_config(self) -> Dict:
        return {
            'iterations': self.iterations,
            'salt_length': SALT_LENGTH,
            'hash_length': KEY_LENGTH,
            'algorithm': self.digest,
        }

    def _derive(self, password: str, salt: bytes, iterations: int) -> bytes:
        return hashlib.pbkdf2_hmac(
            self.digest,
            password.encode('utf-8'),
            salt,
            iterations,
            dklen=KEY_LENGTH
        )


def _b64decode(value: str) -> bytes:
    if not isinstance(value, (str, bytes)) or not value:
        raise ValueError('empty or non-string value')
    return base64.b64decode(value, validate=True)


def verify_legacy_password(password: str, stored_hash: str) -> bool:
    """
    Verify a credential imported from the previous bcrypt-based system

    Returns False for malformed hashes instead of raising.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), stored_hash.encode('utf-8'))
    except (ValueError, TypeError, AttributeError):
        return False


def hash_legacy_password(password: str, rounds: int = 12) -> str:
    """Produce a bcrypt hash in the legacy format (used by imports and tests)"""
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds)).decode('utf-8')


def generate_secure_token(length: int = 32) -> str:
    """
    Generate cryptographically secure random token

    Args:
        length: Number of random bytes

    Returns:
        URL-safe secure random token
    """
    return secrets.token_urlsafe(length)


def verify_credential(hasher: PasswordHasher, password: str, record: CredentialRecord) -> bool:
    """Verify against a stored record of either the current or the legacy scheme"""
    if record.algorithm == LEGACY_ALGORITHM:
        return verify_legacy_password(password, record.hash)
    return hasher.verify(password, record.salt, record.hash, record.iterations)
