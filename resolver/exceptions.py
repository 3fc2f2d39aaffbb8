"""
Exception hierarchy shared by the resolution services.
"""


class ResolverError(Exception):
    """Base class for resolution service errors."""


class ConfigurationError(ResolverError):
    """Missing or invalid configuration; fatal at startup."""


class ChainError(ResolverError):
    """An on-chain call or transaction failed."""


class AlreadyClaimedError(ChainError):
    """The dispute reward was already claimed on-chain."""


class InvalidTransitionError(ResolverError):
    """A status change that would skip or reverse a lifecycle step."""


ALREADY_CLAIMED_MARKERS = ("already claimed", "alreadyclaimed")


def is_already_claimed(error: Exception) -> bool:
    """Recognize the contract's 'already claimed' revert in any error message."""
    if isinstance(error, AlreadyClaimedError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in ALREADY_CLAIMED_MARKERS)
