"""
Secret resolution for provider client credentials.

Provider rows store environment variable names, never the secrets
themselves; the values are read at call time.
"""

import logging
import os


logger = logging.getLogger(__name__)


class EnvSecretResolver:
    """Resolves a secret reference by reading the named environment variable."""

    def resolve(self, ref: str) -> str:
        value = os.getenv(ref)
        if value is None:
            logger.warning(f"Secret reference '{ref}' is not set in the environment")
            return ""
        return value
