"""Problem and solution containers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

__all__ = [
    "NULL_PARAMETERS",
    "LinearProblem",
    "LinearSolveAdjoint",
    "LinearSolution",
    "NullParameters",
    "ReturnCode",
    "build_linear_solution",
]


class NullParameters:
    """Sentinel for a problem without parameters."""

    _instance: NullParameters | None = None

    def __new__(cls) -> NullParameters:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NullParameters()"


NULL_PARAMETERS = NullParameters()


class ReturnCode(Enum):
    """Outcome reported by an algorithm's solve hook."""

    Default = "Default"
    Success = "Success"
    MaxIters = "MaxIters"
    Failure = "Failure"


@dataclass
class LinearProblem:
    """The linear system ``A u = b``.

    Parameters
    ----------
    A
        Operator. Dense ``numpy`` arrays, ``scipy.sparse`` matrices and arrays,
        ``scipy.sparse.linalg.LinearOperator`` and
        :class:`linsolve.static.SMatrix` are supported.
    b
        Right-hand side.
    u0
        Optional initial guess, used by iterative algorithms as a warm start.
    p
        Parameters forwarded to preconditioner builders.
    """

    A: Any
    b: Any
    u0: Any = None
    p: Any = NULL_PARAMETERS


@dataclass(frozen=True)
class LinearSolution:
    """Result of a solve.

    ``cache`` references the :class:`linsolve.common.LinearCache` that produced
    the solution, or the :class:`LinearProblem` when the static fast path was
    taken.
    """

    u: Any
    resid: Any = None
    alg: Any = None
    retcode: ReturnCode = ReturnCode.Default
    iters: int = 0
    cache: Any = None

    @property
    def successful(self) -> bool:
        return self.retcode in (ReturnCode.Default, ReturnCode.Success)


def build_linear_solution(
    alg: Any,
    u: Any,
    resid: Any,
    cache: Any,
    *,
    retcode: ReturnCode = ReturnCode.Success,
    iters: int = 0,
) -> LinearSolution:
    return LinearSolution(
        u=u, resid=resid, alg=alg, retcode=retcode, iters=iters, cache=cache
    )


@dataclass(frozen=True)
class LinearSolveAdjoint:
    """Adjoint sensitivity strategy.

    Derivatives of a solve are obtained by solving the transposed system.
    ``linsolve`` selects the algorithm used for those solves; ``None`` reuses
    the cache's algorithm together with its cached factorization.
    """

    linsolve: Any = None
