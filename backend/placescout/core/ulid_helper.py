"""ULID generation helper utilities."""

import ulid


def generate_ulid() -> str:
    """Generate a new ULID string (operation and job ids)."""
    return str(ulid.ULID())
