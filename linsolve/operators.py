"""Operators used as default preconditioners."""

from __future__ import annotations

from typing import Any

import numpy as np
from numpy.typing import NDArray
from scipy.sparse.linalg import LinearOperator

__all__ = ["IdentityOperator", "default_precs", "is_identity"]


class IdentityOperator(LinearOperator):
    """The ``n x n`` identity as a ``scipy`` linear operator.

    Examples
    --------
    >>> import numpy as np
    >>> op = IdentityOperator(3)
    >>> op.shape
    (3, 3)
    >>> op @ np.ones(3)
    array([1., 1., 1.])
    """

    def __init__(self, n: int, dtype: Any = np.float64) -> None:
        self.n = int(n)
        super().__init__(dtype=np.dtype(dtype), shape=(self.n, self.n))

    def _matvec(self, x: NDArray) -> NDArray:
        return np.asarray(x).reshape(-1)

    def _rmatvec(self, x: NDArray) -> NDArray:
        return np.asarray(x).reshape(-1)

    def _matmat(self, x: NDArray) -> NDArray:
        return np.asarray(x)

    def _adjoint(self) -> IdentityOperator:
        return self

    def _transpose(self) -> IdentityOperator:
        return self

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IdentityOperator):
            return NotImplemented
        return self.n == other.n

    def __hash__(self) -> int:
        return hash((IdentityOperator, self.n))

    def __repr__(self) -> str:
        return f"IdentityOperator({self.n})"


def default_precs(a: Any, p: Any) -> tuple[IdentityOperator, IdentityOperator]:  # noqa: ARG001
    """Identity left and right preconditioners sized to ``a``."""

    nrows, ncols = a.shape
    return IdentityOperator(nrows), IdentityOperator(ncols)


def is_identity(op: Any) -> bool:
    return op is None or isinstance(op, IdentityOperator)
