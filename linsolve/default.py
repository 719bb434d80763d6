"""Default algorithm selection.

:func:`defaultalg` picks an algorithm from the operator type, the right-hand
side and the :class:`~linsolve.assumptions.OperatorAssumptions`. The choice is
wrapped in a :class:`DefaultLinearSolver`, whose cache payload is a
:class:`DefaultLinearSolverInit` tagged with the chosen algorithm.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from numpy.typing import NDArray
from scipy.sparse import issparse
from scipy.sparse.linalg import LinearOperator

from linsolve.assumptions import OperatorAssumptions, OperatorCondition
from linsolve.problem import LinearSolution
from linsolve.solvers import LinearSolveAlgorithm, _is_diagonal, get_algorithm
from linsolve.static import SMatrix

if TYPE_CHECKING:
    from linsolve.common import LinearCache

__all__ = [
    "DefaultAlgorithmChoice",
    "DefaultLinearSolver",
    "DefaultLinearSolverInit",
    "defaultalg",
]


class DefaultAlgorithmChoice(Enum):
    """Algorithms :func:`defaultalg` can dispatch to."""

    DirectLdiv = "DirectLdiv"
    LUFactorization = "LUFactorization"
    QRFactorization = "QRFactorization"
    NormalCholeskyFactorization = "NormalCholeskyFactorization"
    SVDFactorization = "SVDFactorization"
    SparseLUFactorization = "SparseLUFactorization"
    KrylovGMRES = "KrylovGMRES"


@dataclass
class DefaultLinearSolverInit:
    """Cache payload of :class:`DefaultLinearSolver`.

    Holds the payload of exactly one concrete algorithm, tagged by ``choice``.
    """

    choice: DefaultAlgorithmChoice
    payload: Any = None

    def get(self, choice: DefaultAlgorithmChoice) -> Any:
        if choice is not self.choice:
            raise TypeError(f"Payload holds {self.choice.name}, not {choice.name}")
        return self.payload

    def set(self, choice: DefaultAlgorithmChoice, payload: Any) -> None:
        if choice is not self.choice:
            raise TypeError(f"Payload holds {self.choice.name}, not {choice.name}")
        self.payload = payload


@dataclass(frozen=True)
class DefaultLinearSolver(LinearSolveAlgorithm):
    """Defers every hook to the algorithm named by ``choice``.

    Examples
    --------
    >>> alg = DefaultLinearSolver(DefaultAlgorithmChoice.QRFactorization)
    >>> alg.algorithm
    QRFactorization()
    """

    choice: DefaultAlgorithmChoice

    @property
    def algorithm(self) -> LinearSolveAlgorithm:
        return _lookup(self.choice)

    def init_cacheval(self, A, b, u, Pl, Pr, maxiters, abstol, reltol, verbose, assumptions):
        payload = self.algorithm.init_cacheval(
            A, b, u, Pl, Pr, maxiters, abstol, reltol, verbose, assumptions
        )
        return DefaultLinearSolverInit(self.choice, payload)

    def update_cacheval(self, cache: LinearCache, cacheval: Any, name: str, x: Any) -> Any:
        payload = self.algorithm.update_cacheval(cache, cacheval.get(self.choice), name, x)
        cacheval.set(self.choice, payload)
        return cacheval

    def solve(self, cache: LinearCache) -> LinearSolution:
        sol = self.algorithm.solve(cache)
        return dataclasses.replace(sol, alg=self)

    def solve_transpose(self, cache: LinearCache, rhs: NDArray) -> NDArray:
        return self.algorithm.solve_transpose(cache, rhs)

    def __repr__(self) -> str:
        return f"DefaultLinearSolver({self.choice.name})"


_ALGORITHMS: dict[DefaultAlgorithmChoice, LinearSolveAlgorithm] = {}


def _lookup(choice: DefaultAlgorithmChoice) -> LinearSolveAlgorithm:
    if choice not in _ALGORITHMS:
        _ALGORITHMS[choice] = get_algorithm(choice.value)
    return _ALGORITHMS[choice]


def _dense_choice(issq: bool | None, condition: OperatorCondition) -> DefaultAlgorithmChoice:
    if issq is False:
        match condition:
            case OperatorCondition.WellConditioned:
                return DefaultAlgorithmChoice.NormalCholeskyFactorization
            case OperatorCondition.IllConditioned | OperatorCondition.VeryIllConditioned:
                return DefaultAlgorithmChoice.QRFactorization
            case OperatorCondition.SuperIllConditioned:
                return DefaultAlgorithmChoice.SVDFactorization
    match condition:
        case OperatorCondition.WellConditioned | OperatorCondition.IllConditioned:
            return DefaultAlgorithmChoice.LUFactorization
        case OperatorCondition.VeryIllConditioned:
            return DefaultAlgorithmChoice.QRFactorization
        case OperatorCondition.SuperIllConditioned:
            return DefaultAlgorithmChoice.SVDFactorization
        case _:
            raise ValueError(f"Invalid operator condition: {condition}")


def defaultalg(A: Any, b: Any, assumptions: OperatorAssumptions) -> DefaultLinearSolver:  # noqa: ARG001
    """Select an algorithm for ``A u = b``.

    Parameters
    ----------
    A
        Operator.
    b
        Right-hand side.
    assumptions
        Declared squareness and conditioning of ``A``. An unknown squareness
        is resolved from ``A.shape``.

    Examples
    --------
    >>> import numpy as np
    >>> from linsolve.assumptions import OperatorAssumptions
    >>> defaultalg(np.eye(3), np.ones(3), OperatorAssumptions(True))
    DefaultLinearSolver(LUFactorization)
    """

    issq = assumptions.issquare
    if issq is None and getattr(A, "shape", None) is not None:
        issq = A.shape[0] == A.shape[1]

    if isinstance(A, SMatrix):
        choice = DefaultAlgorithmChoice.DirectLdiv
    elif isinstance(A, LinearOperator):
        choice = DefaultAlgorithmChoice.KrylovGMRES
    elif issparse(A):
        if _is_diagonal(A):
            choice = DefaultAlgorithmChoice.DirectLdiv
        elif issq is False:
            choice = DefaultAlgorithmChoice.QRFactorization
        else:
            choice = DefaultAlgorithmChoice.SparseLUFactorization
    else:
        choice = _dense_choice(issq, assumptions.conditioning)
    return DefaultLinearSolver(choice)
