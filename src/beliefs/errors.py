"""
Exception types shared across the belief revision package.
"""


class BeliefError(Exception):
    """Base class for belief revision errors."""
    pass


class ShapeError(BeliefError, ValueError):
    """Raised when priors, likelihoods or categories have mismatched shapes."""
    pass


class SnapshotError(BeliefError):
    """Raised when a session snapshot cannot be written, read or validated."""
    pass


class ConfigError(BeliefError):
    """Raised when configuration values are invalid."""
    pass
