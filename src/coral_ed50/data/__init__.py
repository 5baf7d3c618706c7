"""
Observation table validation (validate_observations).
"""

from .validation import validate_observations

__all__ = [
    "validate_observations",
]
