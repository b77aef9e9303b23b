"""
Utility functions for tensor learning.

This module provides helper functions for:
- sample and target canonicalization
- design matrix validation
"""

from tensorlearning.utils.shapes import (
    canonicalize_samples,
    canonicalize_target,
    validate_bases_eval,
    validate_learning_data,
)

__all__ = [
    "canonicalize_samples",
    "canonicalize_target",
    "validate_bases_eval",
    "validate_learning_data",
]
