"""Operator assumptions used to steer default algorithm selection."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any

__all__ = ["OperatorAssumptions", "OperatorCondition", "issquare"]


class OperatorCondition(IntEnum):
    """Expected conditioning of the operator.

    Computing a condition number is usually as expensive as the solve itself,
    so the caller declares what to expect instead. The more ill-conditioned the
    operator is assumed to be, the safer (and slower) the default algorithm.
    ``IllConditioned`` is the default; ``WellConditioned`` allows the fastest
    algorithms. Members compare in declaration order.

    Examples
    --------
    >>> OperatorCondition.IllConditioned < OperatorCondition.WellConditioned
    True
    """

    IllConditioned = 0
    """Minor ill-conditioning; safe standard factorizations are used."""

    VeryIllConditioned = 1
    """Fairly major ill-conditioning; plain LU is not trusted."""

    SuperIllConditioned = 2
    """Extreme ill-conditioning; the most stable algorithm is used."""

    WellConditioned = 3
    """Contained conditioning; the fastest algorithm is used."""


@dataclass(frozen=True, slots=True)
class OperatorAssumptions:
    """Assumptions about the operator ``A`` used by the default algorithm.

    Parameters
    ----------
    issq
        Whether ``A`` is square, or ``None`` if unknown.
    condition
        Expected conditioning of ``A``.

    Examples
    --------
    >>> a = OperatorAssumptions(True, condition=OperatorCondition.WellConditioned)
    >>> a.issquare, a.conditioning.name
    (True, 'WellConditioned')
    >>> OperatorAssumptions().conditioning is OperatorCondition.IllConditioned
    True
    """

    issq: bool | None = None
    condition: OperatorCondition = OperatorCondition.IllConditioned

    def __init__(
        self,
        issquare: bool | None = None,
        *,
        condition: OperatorCondition = OperatorCondition.IllConditioned,
    ) -> None:
        if not isinstance(condition, OperatorCondition):
            raise TypeError(f"Invalid operator condition: {condition!r}")
        object.__setattr__(self, "issq", issquare)
        object.__setattr__(self, "condition", condition)

    @property
    def issquare(self) -> bool | None:
        return self.issq

    @property
    def conditioning(self) -> OperatorCondition:
        return self.condition


def issquare(a: Any) -> bool | None:
    """Return whether ``a`` is square, or ``None`` if its shape is unknown."""

    shape = getattr(a, "shape", None)
    if shape is None or len(shape) != 2:
        return None
    return shape[0] == shape[1]
