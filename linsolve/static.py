"""Small fixed-size, immutable arrays.

Static arrays carry their size as part of the value and are never mutated in
place. The solve routines never copy them and can skip cache construction
altogether for them (see :func:`linsolve.common.solve`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np
from numpy.typing import ArrayLike, DTypeLike, NDArray

__all__ = ["SMatrix", "SVector", "StaticArray", "static_like"]


def _frozen(data: ArrayLike, ndim: int, dtype: DTypeLike | None = None) -> NDArray:
    arr = np.array(data, dtype=dtype, copy=True)
    if arr.ndim != ndim:
        raise ValueError(f"Expected {ndim}-dimensional data, got shape {arr.shape}")
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True, eq=False)
class StaticArray:
    """Base class for immutable fixed-size arrays."""

    data: NDArray = field(repr=False)

    @property
    def shape(self) -> tuple[int, ...]:
        return self.data.shape

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    @property
    def size(self) -> int:
        return self.data.size

    @property
    def ndim(self) -> int:
        return self.data.ndim

    def __array__(self, dtype: DTypeLike | None = None, copy: bool | None = None) -> NDArray:
        if dtype is None:
            return self.data.copy() if copy else self.data
        return self.data.astype(dtype)

    def __len__(self) -> int:
        return len(self.data)

    def __getitem__(self, key: Any) -> Any:
        return self.data[key]

    def __iter__(self):
        return iter(self.data)

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.shape == other.shape and bool(np.array_equal(self.data, other.data))

    def __hash__(self) -> int:
        return hash((type(self), self.shape, self.data.tobytes()))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.data.tolist()!r})"


class SVector(StaticArray):
    """Immutable fixed-length vector.

    Examples
    --------
    >>> v = SVector([1.0, 2.0])
    >>> v.shape
    (2,)
    >>> SVector.zeros(3, dtype=int)
    SVector([0, 0, 0])
    """

    def __init__(self, data: ArrayLike, dtype: DTypeLike | None = None) -> None:
        object.__setattr__(self, "data", _frozen(data, 1, dtype))

    @classmethod
    def zeros(cls, n: int, dtype: DTypeLike = np.float64) -> SVector:
        return cls(np.zeros(n, dtype=dtype))


class SMatrix(StaticArray):
    """Immutable fixed-size matrix.

    Examples
    --------
    >>> m = SMatrix([[2.0, 0.0], [0.0, 4.0]])
    >>> m.shape
    (2, 2)
    >>> m.T == m
    True
    """

    def __init__(self, data: ArrayLike, dtype: DTypeLike | None = None) -> None:
        object.__setattr__(self, "data", _frozen(data, 2, dtype))

    @property
    def T(self) -> SMatrix:
        return SMatrix(self.data.T)


def static_like(template: Any, data: ArrayLike) -> Any:
    """Wrap ``data`` in the static type of ``template``."""

    if isinstance(template, SMatrix):
        return SMatrix(data)
    return SVector(data)
