"""
Pseudonymization of user identifiers.

Uses HMAC-SHA256 keyed with a secret pepper. The pepper lives outside the
analytics code path (an environment variable by default), so holding the
anonymized store alone is not enough to recompute or reverse a pseudonym.
There is no inverse mapping.
"""

import hmac
import hashlib
import logging
import os
from typing import Union


logger = logging.getLogger(__name__)

MIN_PEPPER_BYTES = 16
PSEUDONYM_HEX_LENGTH = 32


class Pseudonymizer:
    """
    Deterministic, one-way mapping from raw user id to pseudonymous id.

    The same raw id always maps to the same pseudonym for a given pepper,
    so a user's records stay linkable to each other (required for chain
    mining) without being linkable back to the user.
    """

    def __init__(self, pepper: Union[str, bytes]):
        """
        Initialize the Pseudonymizer.

        Args:
            pepper: Secret key. Must be at least 16 bytes.
        """
        key = pepper.encode('utf-8') if isinstance(pepper, str) else bytes(pepper)
        if len(key) < MIN_PEPPER_BYTES:
            raise ValueError(f"Pepper must be at least {MIN_PEPPER_BYTES} bytes, got {len(key)}")
        self._key = key

    @classmethod
    def from_env(cls, env_var: str = "TRIP_ANALYTICS_PEPPER") -> "Pseudonymizer":
        """Build a Pseudonymizer from the pepper held in an environment variable."""
        pepper = os.environ.get(env_var)
        if not pepper:
            raise ValueError(f"Pseudonymization pepper not set: environment variable {env_var} is empty")
        logger.info(f"Pseudonymizer initialized from ${env_var}")
        return cls(pepper)

    def pseudonymize(self, raw_user_id: str) -> str:
        """
        Map a raw user id to its pseudonym.

        Returns:
            32 lowercase hex characters (128 bits of the HMAC digest)
        """
        if raw_user_id is None or str(raw_user_id) == "":
            raise ValueError("raw_user_id must be a non-empty value")
        digest = hmac.new(self._key, str(raw_user_id).encode('utf-8'), hashlib.sha256).hexdigest()
        return digest[:PSEUDONYM_HEX_LENGTH]

    def __repr__(self) -> str:
        return "Pseudonymizer(<pepper hidden>)"
