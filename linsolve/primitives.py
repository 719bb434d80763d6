"""Autograd primitives for differentiating through cached linear solves."""

from collections.abc import Callable
from typing import Any

import numpy as np
from autograd.extend import defjvp, defvjp, primitive
from numpy.typing import NDArray
from scipy.sparse import coo_matrix

from linsolve.common import LinearCache, solve, solve_
from linsolve.problem import LinearProblem
from linsolve.solvers import KrylovWorkspace, _transpose


def _solve_rhs(cache: LinearCache, rhs: NDArray) -> NDArray:
    """Solve with a different right-hand side.

    ``cache.b``, ``cache.u`` and the convergence statistics of a Krylov
    workspace are left as they were after the forward solve.
    """

    b, u = cache.b, cache.u
    ws = cache.get_cacheval()
    stats = (ws.iters, ws.resid, ws.info) if isinstance(ws, KrylovWorkspace) else None
    try:
        cache.b = rhs
        return solve_(cache).u
    finally:
        cache.b = b
        cache.u = u
        if stats is not None:
            ws.iters, ws.resid, ws.info = stats


def _solve_transpose(cache: LinearCache, rhs: NDArray) -> NDArray:
    """Solve ``cache.A.T @ x = rhs`` as prescribed by ``cache.sensealg``."""

    alg = getattr(cache.sensealg, "linsolve", None)
    if alg is None:
        return cache.alg.solve_transpose(cache, rhs)
    return solve(LinearProblem(_transpose(cache.A), rhs), alg).u


@primitive
def solve_coo(
    entries: NDArray,
    indices: tuple[NDArray[np.int_], NDArray[np.int_]],
    rhs: NDArray,
    cache: LinearCache,
) -> NDArray:
    """Solve a sparse linear system in COO format using ``cache``.

    The operator is assembled with the shape of ``cache.A`` and assigned to
    the cache together with ``rhs``, so the cache's algorithm refactorizes and
    its payload is reused across calls. Derivatives reuse the same cache; the
    cache must not be solved again between a call and its derivative.

    Parameters
    ----------
    entries : array-like
        Non-zero matrix entries.
    indices : tuple[array-like, array-like]
        Row and column indices for ``entries``.
    rhs : array-like
        Right-hand side vector.
    cache : linsolve.common.LinearCache
        Cache providing the algorithm and its state.

    Returns
    -------
    numpy.ndarray
        Solution vector.

    Examples
    --------
    >>> import numpy as np
    >>> from scipy.sparse import coo_matrix
    >>> from linsolve.common import init
    >>> from linsolve.primitives import solve_coo
    >>> from linsolve.problem import LinearProblem
    >>> from linsolve.solvers import SparseLUFactorization
    >>> m = coo_matrix([[4.0, 1.0], [1.0, 3.0]])
    >>> b = np.array([1.0, 2.0])
    >>> cache = init(LinearProblem(m.tocsc(), b), SparseLUFactorization())
    >>> np.round(solve_coo(m.data, (m.row, m.col), b, cache), 8)
    array([0.09090909, 0.63636364])
    """

    a = coo_matrix((entries, indices), shape=cache.A.shape).tocsc()
    cache.A = a
    cache.b = rhs
    return solve_(cache).u


def solve_coo_entries_jvp(
    g: NDArray,
    x: NDArray,
    entries: NDArray,  # noqa: ARG001
    indices: tuple[NDArray[np.int_], NDArray[np.int_]],
    rhs: NDArray,  # noqa: ARG001
    cache: LinearCache,
) -> NDArray:
    """Forward-mode derivative of :func:`solve_coo` with respect to ``entries``."""

    a = coo_matrix((g, indices), shape=cache.A.shape).tocsc()
    return _solve_rhs(cache, -(a @ x))


def solve_coo_b_jvp(
    g: NDArray,
    x: NDArray,  # noqa: ARG001
    entries: NDArray,  # noqa: ARG001
    indices: tuple[NDArray[np.int_], NDArray[np.int_]],  # noqa: ARG001
    rhs: NDArray,  # noqa: ARG001
    cache: LinearCache,
) -> NDArray:
    """Forward-mode derivative of :func:`solve_coo` with respect to ``rhs``."""

    return _solve_rhs(cache, g)


defjvp(solve_coo, solve_coo_entries_jvp, None, solve_coo_b_jvp)


def solve_coo_entries_vjp(
    ans: NDArray,
    entries: NDArray,  # noqa: ARG001
    indices: tuple[NDArray[np.int_], NDArray[np.int_]],
    rhs: NDArray,  # noqa: ARG001
    cache: LinearCache,
) -> Callable[[NDArray], NDArray]:
    """Reverse-mode derivative of :func:`solve_coo` for ``entries``."""

    def vjp(g: NDArray) -> NDArray:
        x = _solve_transpose(cache, g)
        i, j = indices
        return -x[i] * ans[j]

    return vjp


def solve_coo_b_vjp(
    ans: NDArray,  # noqa: ARG001
    entries: NDArray,  # noqa: ARG001
    indices: tuple[NDArray[np.int_], NDArray[np.int_]],  # noqa: ARG001
    rhs: NDArray,  # noqa: ARG001
    cache: LinearCache,
) -> Callable[[NDArray], NDArray]:
    """Reverse-mode derivative of :func:`solve_coo` for ``rhs``."""

    def vjp(g: NDArray) -> NDArray:
        return _solve_transpose(cache, g)

    return vjp


defvjp(solve_coo, solve_coo_entries_vjp, None, solve_coo_b_vjp)


def linear_solve_derivatives(cache: LinearCache, g: Any) -> tuple[NDArray, NDArray]:
    """Adjoint derivatives of ``u = A^-1 b`` for a cotangent ``g`` of ``u``.

    Returns ``(dA, db)`` with ``db = A^-T g`` and ``dA = -db u^T``, evaluated at
    the cache's current solution.
    """

    db = _solve_transpose(cache, np.asarray(g))
    da = -np.multiply.outer(db, np.asarray(cache.u))
    return da, db
