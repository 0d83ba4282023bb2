"""
Password hashing adapter.
"""

import bcrypt


class BcryptPasswordHasher:
    """Hashes secrets with bcrypt."""

    def __init__(self, rounds: int = 12):
        self._rounds = rounds

    def hash(self, secret: str) -> str:
        return bcrypt.hashpw(secret.encode(), bcrypt.gensalt(rounds=self._rounds)).decode()
