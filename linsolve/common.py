"""The linear cache and its lifecycle.

A :class:`LinearCache` bundles a linear system with the algorithm chosen to
solve it and the algorithm's cached state, so that repeated solves with an
updated operator, right-hand side or parameters can reuse work.

Examples
--------
>>> import numpy as np
>>> from linsolve.problem import LinearProblem
>>> from linsolve.solvers import LUFactorization
>>> cache = init(LinearProblem(np.array([[4.0, 1.0], [1.0, 3.0]]), np.array([1.0, 2.0])),
...              LUFactorization())
>>> cache.isfresh
True
>>> sol = solve_(cache)
>>> cache.isfresh
False
>>> cache.b = np.array([2.0, 4.0])
>>> cache.isfresh
False
"""

from __future__ import annotations

import copy
import logging
from typing import Any

import numpy as np
from scipy.sparse import csc_array, csc_matrix, issparse

from linsolve.assumptions import OperatorAssumptions, issquare
from linsolve.default import DefaultLinearSolver, DefaultLinearSolverInit, defaultalg
from linsolve.operators import default_precs
from linsolve.problem import (
    NULL_PARAMETERS,
    LinearProblem,
    LinearSolveAdjoint,
    LinearSolution,
    ReturnCode,
    build_linear_solution,
)
from linsolve.solvers import (
    AbstractKrylovSubspaceMethod,
    AbstractSparseFactorization,
    CholeskyFactorization,
    DirectLdiv,
    LinearSolveAlgorithm,
    LUFactorization,
    NormalCholeskyFactorization,
    QRFactorization,
    SVDFactorization,
    _is_diagonal,
)
from linsolve.static import SMatrix, StaticArray, SVector, static_like

__all__ = [
    "LinearCache",
    "default_alias_A",
    "default_alias_b",
    "default_tol",
    "init",
    "reinit",
    "solve",
    "solve_",
]

logger = logging.getLogger(__name__)


class LinearCache:
    """Mutable state of a linear solve.

    Assigning ``A`` or ``p`` marks the cached payload as stale
    (``isfresh = True``). Assigning ``b`` leaves ``isfresh`` alone and lets the
    algorithm update its payload through ``update_cacheval``. All other fields
    are plain attributes.

    ``isfresh`` means ``cacheval`` must be rebuilt against ``A`` before it can
    be used; ``False`` means ``cacheval`` is valid as-is.
    """

    def __init__(
        self,
        A: Any,
        b: Any,
        u: Any,
        p: Any,
        alg: LinearSolveAlgorithm,
        cacheval: Any,
        isfresh: bool,
        Pl: Any,
        Pr: Any,
        abstol: Any,
        reltol: Any,
        maxiters: int,
        verbose: bool,
        assumptions: OperatorAssumptions,
        sensealg: Any,
    ) -> None:
        self._A = A
        self._b = b
        self.u = u
        self._p = p
        self.alg = alg
        self._cacheval = cacheval
        self.isfresh = isfresh
        self.Pl = Pl
        self.Pr = Pr
        self.abstol = abstol
        self.reltol = reltol
        self.maxiters = maxiters
        self.verbose = verbose
        self.assumptions = assumptions
        self.sensealg = sensealg

    @property
    def A(self) -> Any:
        return self._A

    @A.setter
    def A(self, value: Any) -> None:
        self.set_operator(value)

    @property
    def b(self) -> Any:
        return self._b

    @b.setter
    def b(self, value: Any) -> None:
        self.set_rhs(value)

    @property
    def p(self) -> Any:
        return self._p

    @p.setter
    def p(self, value: Any) -> None:
        self.set_parameters(value)

    @property
    def cacheval(self) -> Any:
        """The raw payload; a :class:`DefaultLinearSolverInit` under the default solver."""
        return self._cacheval

    @cacheval.setter
    def cacheval(self, value: Any) -> None:
        self.set_cacheval(value)

    def set_operator(self, A: Any) -> None:
        self.isfresh = True
        self._A = A

    def set_parameters(self, p: Any) -> None:
        self.isfresh = True
        self._p = p

    def set_rhs(self, b: Any) -> None:
        self._cacheval = self.alg.update_cacheval(self, self._cacheval, "b", b)
        self._b = b

    def set_cacheval(self, value: Any) -> None:
        if isinstance(self.alg, DefaultLinearSolver):
            if not isinstance(self._cacheval, DefaultLinearSolverInit):
                raise TypeError(
                    f"Default solver payload must be DefaultLinearSolverInit, "
                    f"got {type(self._cacheval).__name__}"
                )
            self._cacheval.set(self.alg.choice, value)
        else:
            self._cacheval = value

    def get_cacheval(self) -> Any:
        """Return the payload of the active algorithm."""
        if isinstance(self.alg, DefaultLinearSolver):
            return self._cacheval.get(self.alg.choice)
        return self._cacheval

    def __repr__(self) -> str:
        return (
            f"LinearCache(alg={self.alg!r}, shape={getattr(self._A, 'shape', None)}, "
            f"isfresh={self.isfresh})"
        )


def default_tol(dtype: Any) -> Any:
    """Default absolute and relative tolerance for elements of type ``dtype``.

    Floating point types get the square root of their machine epsilon, exact
    types (integers, booleans and ``object`` arrays of e.g. fractions) get 0.

    Examples
    --------
    >>> import numpy as np
    >>> bool(default_tol(np.float64) == np.sqrt(np.finfo(np.float64).eps))
    True
    >>> int(default_tol(np.int64))
    0
    """

    dtype = np.dtype(dtype)
    if np.issubdtype(dtype, np.inexact):
        finfo = np.finfo(dtype)
        return finfo.dtype.type(np.sqrt(finfo.eps))
    if np.issubdtype(dtype, np.integer) or np.issubdtype(dtype, np.bool_):
        return dtype.type(0)
    if dtype == np.dtype(object):
        return 0
    raise TypeError(f"No default tolerance for element type {dtype}")


def _real_dtype(dtype: Any) -> np.dtype:
    dtype = np.dtype(dtype)
    if np.issubdtype(dtype, np.inexact):
        return np.finfo(dtype).dtype
    if np.issubdtype(dtype, np.integer) or np.issubdtype(dtype, np.bool_):
        return dtype
    if dtype == np.dtype(object):
        return dtype
    raise TypeError(f"Element type {dtype} has no real counterpart")


def _coerce_tol(value: Any, dtype: np.dtype, name: str) -> Any:
    if value < 0:
        raise ValueError(f"{name} must be nonnegative, got {value}")
    if dtype == np.dtype(object):
        return value
    coerced = dtype.type(value)
    if not np.issubdtype(dtype, np.inexact) and coerced != value:
        raise ValueError(f"{name}={value} cannot be represented as {dtype}")
    return coerced


def default_alias_A(alg: LinearSolveAlgorithm, A: Any, b: Any) -> bool:  # noqa: ARG001
    """Whether ``init`` reuses the caller's operator by default."""
    return isinstance(alg, AbstractKrylovSubspaceMethod | AbstractSparseFactorization)


def default_alias_b(alg: LinearSolveAlgorithm, A: Any, b: Any) -> bool:  # noqa: ARG001
    """Whether ``init`` reuses the caller's right-hand side by default."""
    return isinstance(alg, AbstractKrylovSubspaceMethod | AbstractSparseFactorization)


def _copy_array(x: Any) -> Any:
    if type(x) is np.ndarray:
        return x.copy()
    if isinstance(x, csc_matrix | csc_array):
        # new structure sharing the index and value buffers
        return type(x)((x.data, x.indices, x.indptr), shape=x.shape, copy=False)
    return copy.deepcopy(x)


def _prepare_operator(A: Any, alias: bool) -> Any:
    if alias or isinstance(A, SMatrix):
        return A
    return _copy_array(A)


def _prepare_rhs(b: Any, A: Any, alias: bool) -> Any:
    if issparse(b) and not _is_diagonal(A):
        # the solution of a linear solve is dense
        dense = b.toarray()
        return dense.ravel() if dense.ndim == 2 and dense.shape[1] == 1 else dense
    if alias or isinstance(b, StaticArray):
        return b
    return _copy_array(b)


def _init_u0(A: Any, b: Any) -> Any:
    ncols = A.shape[1]
    if isinstance(A, SMatrix):
        return SVector.zeros(ncols, dtype=b.dtype)
    if issparse(b):
        if b.ndim == 1:
            return type(b)((ncols,), dtype=b.dtype)
        return csc_matrix((ncols, *b.shape[1:]), dtype=b.dtype)
    return np.zeros((ncols, *b.shape[1:]), dtype=b.dtype)


def init(
    prob: LinearProblem,
    alg: LinearSolveAlgorithm | None = None,
    *,
    alias_A: bool | None = None,
    alias_b: bool | None = None,
    abstol: Any = None,
    reltol: Any = None,
    maxiters: int | None = None,
    verbose: bool = False,
    Pl: Any = None,
    Pr: Any = None,
    assumptions: OperatorAssumptions | None = None,
    sensealg: Any = None,
) -> LinearCache:
    """Build a :class:`LinearCache` for ``prob``.

    Parameters
    ----------
    prob
        The linear problem.
    alg
        Algorithm; selected by :func:`linsolve.default.defaultalg` when omitted.
    alias_A, alias_b
        Use the caller's operator/right-hand side instead of a copy. Defaults to
        ``True`` for Krylov and sparse factorization algorithms.
    abstol, reltol
        Tolerances, coerced to the real element type of ``prob.b``.
    maxiters
        Iteration cap for iterative algorithms; defaults to ``prob.b.size``.
    verbose
        Let the algorithm log at ``INFO`` level.
    Pl, Pr
        Left and right preconditioners. Fall back to the algorithm's ``precs``
        and then to identity operators.
    assumptions
        Operator assumptions; defaults to ``OperatorAssumptions(issquare(A))``.
    sensealg
        Sensitivity strategy; defaults to :class:`linsolve.problem.LinearSolveAdjoint`.
    """

    if assumptions is None:
        assumptions = OperatorAssumptions(issquare(prob.A))
    if alg is None:
        alg = defaultalg(prob.A, prob.b, assumptions)
    if sensealg is None:
        sensealg = LinearSolveAdjoint()
    if alias_A is None:
        alias_A = default_alias_A(alg, prob.A, prob.b)
    if alias_b is None:
        alias_b = default_alias_b(alg, prob.A, prob.b)

    A = _prepare_operator(prob.A, alias_A)
    b = _prepare_rhs(prob.b, A, alias_b)
    u0 = prob.u0 if prob.u0 is not None else _init_u0(A, b)
    p = prob.p

    precs = getattr(alg, "precs", None) or default_precs
    _Pl, _Pr = precs(A, p)
    if Pl is None:
        Pl = _Pl
    if Pr is None:
        Pr = _Pr

    real = _real_dtype(b.dtype)
    abstol = default_tol(real) if abstol is None else _coerce_tol(abstol, real, "abstol")
    reltol = default_tol(real) if reltol is None else _coerce_tol(reltol, real, "reltol")

    if maxiters is None:
        maxiters = int(np.prod(b.shape))
    elif maxiters <= 0:
        raise ValueError(f"maxiters must be positive, got {maxiters}")

    cacheval = alg.init_cacheval(
        A, b, u0, Pl, Pr, maxiters, abstol, reltol, verbose, assumptions
    )
    isfresh = not isinstance(alg, AbstractKrylovSubspaceMethod)

    logger.debug(
        "init: alg=%r alias_A=%s alias_b=%s abstol=%s reltol=%s maxiters=%d",
        alg,
        alias_A,
        alias_b,
        abstol,
        reltol,
        maxiters,
    )
    return LinearCache(
        A, b, u0, p, alg, cacheval, isfresh, Pl, Pr, abstol, reltol, maxiters, verbose,
        assumptions, sensealg,
    )


def reinit(
    cache: LinearCache,
    *,
    A: Any = None,
    b: Any = None,
    u: Any = None,
    p: Any = None,
    reinit_cache: bool = False,
) -> LinearCache:
    """Point ``cache`` at a changed problem.

    Unsupplied ``A``, ``b`` and ``u`` keep their current values, an unsupplied
    ``p`` resets the parameters. With ``reinit_cache=False`` the cache is
    updated in place; with ``reinit_cache=True`` a new cache sharing the
    algorithm and its payload is returned. Either way the next solve rebuilds
    the payload.
    """

    A = cache.A if A is None else A
    b = cache.b if b is None else b
    u = cache.u if u is None else u
    p = NULL_PARAMETERS if p is None else p

    if reinit_cache:
        return LinearCache(
            A, b, u, p, cache.alg, cache.cacheval, True, cache.Pl, cache.Pr,
            cache.abstol, cache.reltol, cache.maxiters, cache.verbose,
            cache.assumptions, cache.sensealg,
        )

    cache.A = A
    cache.b = b
    cache.u = u
    cache.p = p
    cache.isfresh = True
    return cache


def solve_(cache: LinearCache) -> LinearSolution:
    """Solve the system held by ``cache`` with its algorithm."""
    return cache.alg.solve(cache)


_STATIC_ALGORITHMS = (
    DirectLdiv,
    LUFactorization,
    QRFactorization,
    CholeskyFactorization,
    NormalCholeskyFactorization,
    SVDFactorization,
)


def _is_static_problem(prob: LinearProblem) -> bool:
    return isinstance(prob.A, SMatrix) and isinstance(prob.b, SMatrix | SVector)


def solve(
    prob: LinearProblem, alg: LinearSolveAlgorithm | None = None, **kwargs: Any
) -> LinearSolution:
    """Solve ``prob``.

    Small static problems (an :class:`~linsolve.static.SMatrix` operator and a
    static right-hand side) solved with a direct algorithm skip the cache and
    factorize directly. Everything else is ``solve_(init(prob, alg, **kwargs))``.

    Examples
    --------
    >>> import numpy as np
    >>> from linsolve.problem import LinearProblem
    >>> from linsolve.static import SMatrix, SVector
    >>> sol = solve(LinearProblem(SMatrix([[2.0, 0.0], [0.0, 4.0]]), SVector([2.0, 2.0])))
    >>> sol.u
    SVector([1.0, 0.5])
    """

    if _is_static_problem(prob) and (alg is None or isinstance(alg, _STATIC_ALGORITHMS)):
        direct = DirectLdiv() if alg is None else alg
        u = direct.ldiv(direct.factorize(prob.A), prob.b)
        return build_linear_solution(
            alg, static_like(prob.b, u), None, prob, retcode=ReturnCode.Success
        )
    return solve_(init(prob, alg, **kwargs))
