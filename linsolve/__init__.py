"""Cached, algorithm-agnostic linear system solving."""

from __future__ import annotations

import logging

__all__ = [
    "DEFAULT_ALGORITHM",
    "__version__",
    "assumptions",
    "common",
    "default",
    "operators",
    "primitives",
    "problem",
    "solvers",
    "static",
]

__version__ = "0.1.0"

DEFAULT_ALGORITHM = "LUFactorization"

logging.getLogger(__name__).addHandler(logging.NullHandler())
