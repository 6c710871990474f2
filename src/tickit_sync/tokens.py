"""API token generation and hashing.

Tokens are shown to the operator once and stored only as argon2 PHC hashes
(``$argon2id$...``) in the config file. Entries written by older servers
may hold the plain token; those are still accepted.
"""

from __future__ import annotations

import hmac
import secrets
import string

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

TOKEN_PREFIX = "tks_"
TOKEN_LENGTH = 32
HASH_PREFIX = "$argon2"

_ALPHABET = string.ascii_letters + string.digits
_HASHER = PasswordHasher()


def generate_token() -> str:
    """Generate a new API token: ``tks_`` followed by 32 alphanumerics."""
    return TOKEN_PREFIX + "".join(secrets.choice(_ALPHABET) for _ in range(TOKEN_LENGTH))


def hash_token(token: str, hasher: PasswordHasher | None = None) -> str:
    """Hash a token for storage as an argon2 PHC string."""
    return (hasher or _HASHER).hash(token)


def is_hashed(token_hash: str) -> bool:
    return token_hash.startswith(HASH_PREFIX)


def verify_token(token: str, token_hash: str) -> bool:
    """Check a presented token against one stored entry.

    The cost parameters come from the stored hash. Entries without the
    argon2 prefix are legacy plain tokens, compared in constant time. A
    damaged argon2 entry matches nothing.
    """
    if not is_hashed(token_hash):
        return hmac.compare_digest(token.encode("utf-8"), token_hash.encode("utf-8"))
    try:
        return _HASHER.verify(token_hash, token)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False
