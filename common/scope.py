"""Owner scope passed to every tracker operation."""
from dataclasses import dataclass

from common.errors import ErrorCode, ValidationError


@dataclass(frozen=True)
class OwnerScope:
    """The single user whose data an operation may read or write.

    Identity is resolved by the caller; the tracker trusts the owner_id.
    """
    owner_id: str

    def __post_init__(self):
        if not isinstance(self.owner_id, str) or not self.owner_id.strip():
            raise ValidationError(
                ErrorCode.INVALID_SCOPE, "Owner scope requires a non-empty owner_id"
            )


def require_scope(scope) -> OwnerScope:
    """Reject raw user ids and other unscoped values."""
    if not isinstance(scope, OwnerScope):
        raise TypeError(
            f"Expected OwnerScope, got {type(scope).__name__}"
        )
    return scope
