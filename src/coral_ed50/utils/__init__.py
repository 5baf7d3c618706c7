"""
Utility functions shared across the analysis pipeline.
"""

from .natural_sort import natural_sort_key

__all__ = [
    "natural_sort_key",
]
