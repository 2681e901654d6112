"""Instance identifier codec.

Agents identify themselves with a 16-byte instance uid.  The registry keys
everything by the canonical UUID string form; outbound messages need the
bytes back.
"""

from __future__ import annotations

import uuid

from fleetd.errors import InvalidIdentity

INSTANCE_UID_SIZE = 16


def uid_to_identity(instance_uid: bytes) -> str:
    """Return the canonical string identity for a binary instance uid."""
    if len(instance_uid) != INSTANCE_UID_SIZE:
        raise InvalidIdentity(
            instance_uid.hex(),
            f"expected {INSTANCE_UID_SIZE} bytes, got {len(instance_uid)}",
        )
    return str(uuid.UUID(bytes=bytes(instance_uid)))


def identity_to_uid(identity: str) -> bytes:
    """Convert a canonical identity back to its 16-byte wire form."""
    try:
        return uuid.UUID(identity).bytes
    except (ValueError, AttributeError, TypeError) as e:
        raise InvalidIdentity(identity, str(e)) from e


def is_valid_identity(identity: str) -> bool:
    try:
        identity_to_uid(identity)
    except InvalidIdentity:
        return False
    return True


def new_instance_uid() -> bytes:
    """Generate a fresh random instance uid (used by clients)."""
    return uuid.uuid4().bytes
