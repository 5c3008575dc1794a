"""
API key handling for POS integrations.
"""
import hashlib
import secrets


def hash_api_key(api_key: str) -> str:
    """
    Hash an integration API key for storage and lookup.

    Only the hash is stored so a leaked database does not expose usable keys.
    """
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def generate_api_key() -> str:
    """Create a new random API key (shown to the user once, stored hashed)."""
    return f"sr_{secrets.token_urlsafe(32)}"
