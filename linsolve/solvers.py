"""Linear solve algorithms.

Every algorithm plugs into :class:`linsolve.common.LinearCache` through a small
set of hooks:

``precs``
    Optional callable ``precs(A, p) -> (Pl, Pr)`` building preconditioners.
``init_cacheval``
    Builds the algorithm-specific payload stored as ``cache.cacheval``.
``update_cacheval``
    Called when the right-hand side of an existing cache is replaced.
``solve``
    Solves ``cache.A @ u = cache.b``, rebuilding the payload first when
    ``cache.isfresh`` is set.
``solve_transpose``
    Solves ``cache.A.T @ x = rhs`` without touching ``cache.b`` or ``cache.u``.

The numerics are delegated to :mod:`numpy.linalg`, :mod:`scipy.linalg` and
:mod:`scipy.sparse.linalg`.
"""

from __future__ import annotations

import logging
import warnings
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np
import scipy.linalg as sla
from numpy.typing import NDArray
from scipy.sparse import csc_matrix, issparse
from scipy.sparse.linalg import (
    LinearOperator,
    aslinearoperator,
    bicgstab,
    cg,
    gmres,
    lsqr,
    minres,
    splu,
    spsolve,
)

from linsolve import DEFAULT_ALGORITHM
from linsolve.operators import is_identity
from linsolve.problem import LinearSolution, ReturnCode, build_linear_solution

if TYPE_CHECKING:
    from linsolve.common import LinearCache

__all__ = [
    "AbstractDenseFactorization",
    "AbstractFactorization",
    "AbstractKrylovSubspaceMethod",
    "AbstractSparseFactorization",
    "CholeskyFactorization",
    "DirectLdiv",
    "KrylovBiCGStab",
    "KrylovCG",
    "KrylovGMRES",
    "KrylovMINRES",
    "KrylovWorkspace",
    "LUFactorization",
    "LinearSolveAlgorithm",
    "NormalCholeskyFactorization",
    "QRFactorization",
    "SVDFactorization",
    "SparseLUFactorization",
    "SparseLUWorkspace",
    "get_algorithm",
]

logger = logging.getLogger(__name__)


def _dense(a: Any) -> NDArray:
    if issparse(a):
        return a.toarray()
    return np.asarray(a)


def _is_diagonal(a: Any) -> bool:
    """Return ``True`` if ``a`` is a sparse matrix stored as a pure main diagonal."""

    return issparse(a) and a.format == "dia" and bool(np.all(a.offsets == 0))


def _transpose(a: Any) -> Any:
    if isinstance(a, LinearOperator):
        return a.T
    if issparse(a):
        return a.transpose()
    return np.asarray(a).T


class LinearSolveAlgorithm(ABC):
    """Abstract interface for linear solve algorithms."""

    precs: Callable[[Any, Any], tuple[Any, Any]] | None = None

    def init_cacheval(self, A, b, u, Pl, Pr, maxiters, abstol, reltol, verbose, assumptions):  # noqa: ARG002
        """Build the algorithm-specific cache payload."""
        return None

    def update_cacheval(self, cache: LinearCache, cacheval: Any, name: str, x: Any) -> Any:  # noqa: ARG002
        """React to ``cache.<name>`` being replaced by ``x``; return the new payload."""
        return cacheval

    @abstractmethod
    def solve(self, cache: LinearCache) -> LinearSolution:
        """Solve the system held by ``cache``."""

    @abstractmethod
    def solve_transpose(self, cache: LinearCache, rhs: NDArray) -> NDArray:
        """Solve ``cache.A.T @ x = rhs``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class DirectLdiv(LinearSolveAlgorithm):
    """Plain left division without any cached state.

    Square dense operators use :func:`numpy.linalg.solve`, non-square ones a
    least-squares solve. Sparse operators use :func:`scipy.sparse.linalg.spsolve`
    (or :func:`~scipy.sparse.linalg.lsqr` when non-square), and diagonal sparse
    operators are divided element-wise.
    """

    @staticmethod
    def factorize(a: Any) -> Any:
        if isinstance(a, LinearOperator):
            raise TypeError("DirectLdiv requires an explicit matrix operator")
        return a

    @staticmethod
    def ldiv(a: Any, b: Any) -> NDArray:
        if issparse(a):
            rhs = _dense(b)
            if _is_diagonal(a):
                d = a.diagonal()
                return rhs / (d if rhs.ndim == 1 else d[:, None])
            if a.shape[0] != a.shape[1]:
                return lsqr(a, rhs)[0]
            return spsolve(csc_matrix(a), rhs)
        a = np.asarray(a)
        rhs = _dense(b)
        if a.shape[0] == a.shape[1]:
            return np.linalg.solve(a, rhs)
        return np.linalg.lstsq(a, rhs, rcond=None)[0]

    def solve(self, cache: LinearCache) -> LinearSolution:
        u = self.ldiv(self.factorize(cache.A), cache.b)
        cache.u = u
        return build_linear_solution(self, u, None, cache)

    def solve_transpose(self, cache: LinearCache, rhs: NDArray) -> NDArray:
        return self.ldiv(_transpose(self.factorize(cache.A)), rhs)


class AbstractFactorization(LinearSolveAlgorithm):
    """Algorithms that factorize the operator once and reuse the factors.

    The factorization is stored as ``cache.cacheval``. It is recomputed the
    next time the cache is solved after ``cache.isfresh`` was set, i.e. after
    the operator or the parameters were replaced.
    """

    @abstractmethod
    def factorize(self, a: Any) -> Any:
        """Factorize the operator ``a``."""

    @abstractmethod
    def ldiv(self, fact: Any, b: Any) -> NDArray:
        """Solve ``a @ x = b`` using the factorization ``fact`` of ``a``."""

    @abstractmethod
    def ldiv_transpose(self, fact: Any, b: Any) -> NDArray:
        """Solve ``a.T @ x = b`` using the factorization ``fact`` of ``a``."""

    def refresh(self, cache: LinearCache) -> Any:
        """Return a factorization that is valid for ``cache.A``."""

        if cache.isfresh:
            logger.debug("%r: factorizing operator of shape %s", self, cache.A.shape)
            cache.cacheval = self.factorize(cache.A)
            cache.isfresh = False
        return cache.get_cacheval()

    def solve(self, cache: LinearCache) -> LinearSolution:
        fact = self.refresh(cache)
        u = self.ldiv(fact, cache.b)
        cache.u = u
        return build_linear_solution(self, u, None, cache)

    def solve_transpose(self, cache: LinearCache, rhs: NDArray) -> NDArray:
        return self.ldiv_transpose(self.refresh(cache), rhs)


class AbstractDenseFactorization(AbstractFactorization):
    """Factorizations operating on dense arrays."""


class AbstractSparseFactorization(AbstractFactorization):
    """Factorizations operating on sparse matrices."""


@dataclass(repr=False)
class LUFactorization(AbstractDenseFactorization):
    """LU factorization with partial pivoting (:func:`scipy.linalg.lu_factor`)."""

    check_finite: bool = True

    def factorize(self, a: Any) -> tuple[NDArray, NDArray]:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", sla.LinAlgWarning)
            lu, piv = sla.lu_factor(_dense(a), check_finite=self.check_finite)
        if np.any(np.diag(lu) == 0):
            raise np.linalg.LinAlgError("Singular matrix")
        return lu, piv

    def ldiv(self, fact: Any, b: Any) -> NDArray:
        return sla.lu_solve(fact, _dense(b), check_finite=self.check_finite)

    def ldiv_transpose(self, fact: Any, b: Any) -> NDArray:
        return sla.lu_solve(fact, _dense(b), trans=1, check_finite=self.check_finite)


@dataclass
class _QR:
    q: NDArray
    r: NDArray
    perm: NDArray
    adjoint: bool


@dataclass(repr=False)
class QRFactorization(AbstractDenseFactorization):
    """Householder QR factorization (:func:`scipy.linalg.qr`).

    Over-determined systems are solved in the least-squares sense. For
    under-determined systems the adjoint is factorized and the minimum-norm
    solution is returned.
    """

    pivoting: bool = False

    def factorize(self, a: Any) -> _QR:
        a = _dense(a)
        adjoint = a.shape[0] < a.shape[1]
        if adjoint:
            a = a.conj().T
        if self.pivoting:
            q, r, perm = sla.qr(a, mode="economic", pivoting=True)
        else:
            q, r = sla.qr(a, mode="economic")
            perm = np.arange(a.shape[1])
        return _QR(q, r, perm, adjoint)

    def ldiv(self, fact: _QR, b: Any) -> NDArray:
        b = _dense(b)
        if fact.adjoint:
            z = sla.solve_triangular(fact.r, b[fact.perm], trans="C")
            return fact.q @ z
        y = sla.solve_triangular(fact.r, fact.q.conj().T @ b)
        x = np.empty_like(y)
        x[fact.perm] = y
        return x

    def ldiv_transpose(self, fact: _QR, b: Any) -> NDArray:
        b = _dense(b)
        if fact.adjoint:
            y = sla.solve_triangular(fact.r.conj(), fact.q.T @ b)
            x = np.empty_like(y)
            x[fact.perm] = y
            return x
        w = sla.solve_triangular(fact.r, b[fact.perm], trans="T")
        return fact.q.conj() @ w


@dataclass(repr=False)
class CholeskyFactorization(AbstractDenseFactorization):
    """Cholesky factorization of a Hermitian positive definite operator."""

    lower: bool = False

    def factorize(self, a: Any) -> tuple[NDArray, bool]:
        return sla.cho_factor(_dense(a), lower=self.lower)

    def ldiv(self, fact: Any, b: Any) -> NDArray:
        return sla.cho_solve(fact, _dense(b))

    def ldiv_transpose(self, fact: Any, b: Any) -> NDArray:
        return sla.cho_solve(fact, _dense(b).conj()).conj()


@dataclass
class _NormalCholesky:
    chol: tuple[NDArray, bool]
    a: NDArray


@dataclass(repr=False)
class NormalCholeskyFactorization(AbstractDenseFactorization):
    """Cholesky factorization of the normal equations ``A^H A x = A^H b``.

    Fast for well-conditioned over-determined systems; squares the condition
    number.
    """

    def factorize(self, a: Any) -> _NormalCholesky:
        a = _dense(a)
        return _NormalCholesky(sla.cho_factor(a.conj().T @ a), a)

    def ldiv(self, fact: _NormalCholesky, b: Any) -> NDArray:
        return sla.cho_solve(fact.chol, fact.a.conj().T @ _dense(b))

    def ldiv_transpose(self, fact: _NormalCholesky, b: Any) -> NDArray:
        # minimum-norm solution of A^T x = b
        return fact.a.conj() @ sla.cho_solve(fact.chol, _dense(b).conj()).conj()


@dataclass
class _SVD:
    u: NDArray
    s: NDArray
    vh: NDArray


@dataclass(repr=False)
class SVDFactorization(AbstractDenseFactorization):
    """Singular value decomposition; the most robust and the slowest choice.

    Singular values below ``rtol * s.max()`` are treated as zero. ``rtol``
    defaults to ``max(m, n) * eps``.
    """

    rtol: float | None = None

    def factorize(self, a: Any) -> _SVD:
        u, s, vh = sla.svd(_dense(a), full_matrices=False)
        return _SVD(u, s, vh)

    def _inverse_singular_values(self, fact: _SVD) -> NDArray:
        s = fact.s
        if s.size == 0:
            return s
        rtol = self.rtol
        if rtol is None:
            rtol = max(fact.u.shape[0], fact.vh.shape[1]) * np.finfo(s.dtype).eps
        keep = s > rtol * s[0]
        return np.where(keep, 1 / np.where(keep, s, 1), 0)

    def ldiv(self, fact: _SVD, b: Any) -> NDArray:
        b = _dense(b)
        sinv = self._inverse_singular_values(fact)
        y = fact.u.conj().T @ b
        y = y * (sinv if y.ndim == 1 else sinv[:, None])
        return fact.vh.conj().T @ y

    def ldiv_transpose(self, fact: _SVD, b: Any) -> NDArray:
        b = _dense(b)
        sinv = self._inverse_singular_values(fact)
        y = fact.vh.conj() @ b
        y = y * (sinv if y.ndim == 1 else sinv[:, None])
        return fact.u.conj() @ y


def _pattern_signature(m: csc_matrix) -> tuple[NDArray[np.int_], NDArray[np.int_], tuple[int, int]]:
    """Return a signature describing the sparsity pattern of ``m``."""

    return m.indices.copy(), m.indptr.copy(), m.shape


def _same_pattern(
    m: csc_matrix, sig: tuple[NDArray[np.int_], NDArray[np.int_], tuple[int, int]]
) -> bool:
    """Return ``True`` if ``m`` matches the sparsity pattern ``sig``."""

    indices, indptr, shape = sig
    return (
        m.shape == shape and np.array_equal(m.indices, indices) and np.array_equal(m.indptr, indptr)
    )


@dataclass
class SparseLUWorkspace:
    """Cache payload of :class:`SparseLUFactorization`.

    ``factor_full`` performs a complete (symbolic and numeric) factorization,
    ``refactor_numerical`` is used when the sparsity pattern is unchanged.
    ``scipy``'s ``splu`` does not expose the symbolic/numeric split, so both
    recompute the factorization; the counters record which path was taken.
    """

    splu: Callable[[csc_matrix], Any]
    factorization: Any = None
    pattern: tuple | None = None
    full_factorizations: int = 0
    numerical_refactorizations: int = 0

    def factor_full(self, m: csc_matrix) -> None:
        self.factorization = self.splu(m)
        self.pattern = _pattern_signature(m)
        self.full_factorizations += 1

    def refactor_numerical(self, m: csc_matrix) -> None:
        self.factorization = self.splu(m)
        self.numerical_refactorizations += 1

    def update(self, m: csc_matrix) -> None:
        if self.pattern is not None and _same_pattern(m, self.pattern):
            self.refactor_numerical(m)
        else:
            self.clear()
            self.factor_full(m)

    def clear(self) -> None:
        """Remove cached factorization and sparsity pattern."""
        self.factorization = None
        self.pattern = None


class SparseLUFactorization(AbstractSparseFactorization):
    """`scipy.sparse.linalg.splu` wrapper.

    Keyword options are forwarded to ``splu``.

    Examples
    --------
    >>> alg = SparseLUFactorization(permc_spec="COLAMD")
    >>> alg.options
    {'permc_spec': 'COLAMD'}
    """

    def __init__(self, **options: float | int | bool | str | Mapping[str, bool]) -> None:
        self.options = dict(options)

    def init_cacheval(self, A, b, u, Pl, Pr, maxiters, abstol, reltol, verbose, assumptions):  # noqa: ARG002
        return SparseLUWorkspace(partial(splu, **self.options))

    def factorize(self, a: Any) -> SparseLUWorkspace:
        ws = SparseLUWorkspace(partial(splu, **self.options))
        ws.factor_full(csc_matrix(a))
        return ws

    def refresh(self, cache: LinearCache) -> SparseLUWorkspace:
        ws = cache.get_cacheval()
        if ws is None:
            # payload was reset
            logger.debug("%r: factorizing operator of shape %s", self, cache.A.shape)
            ws = self.factorize(cache.A)
            cache.cacheval = ws
            cache.isfresh = False
        elif cache.isfresh or ws.factorization is None:
            logger.debug("%r: factorizing operator of shape %s", self, cache.A.shape)
            ws.update(csc_matrix(cache.A))
            cache.cacheval = ws
            cache.isfresh = False
        return ws

    def ldiv(self, fact: SparseLUWorkspace, b: Any) -> NDArray:
        return fact.factorization.solve(_dense(b))

    def ldiv_transpose(self, fact: SparseLUWorkspace, b: Any) -> NDArray:
        return fact.factorization.solve(_dense(b), trans="T")

    def __repr__(self) -> str:
        opts = ", ".join(f"{k}={v!r}" for k, v in self.options.items())
        return f"SparseLUFactorization({opts})"


@dataclass
class KrylovWorkspace:
    """Cache payload of the Krylov methods."""

    b: Any
    iters: int = 0
    resid: float | None = None
    info: int | None = None


@dataclass(repr=False)
class AbstractKrylovSubspaceMethod(LinearSolveAlgorithm):
    """Iterative methods from :mod:`scipy.sparse.linalg`.

    The current ``cache.u`` is used as the starting guess, so repeated solves
    with slowly changing systems are warm started. Preconditioners follow the
    ``scipy`` convention: they approximate the inverse of the operator.
    ``Pl`` is passed as ``M``; a non-identity ``Pr`` solves ``A Pr y = b`` and
    returns ``x = Pr y``.
    """

    precs: Callable[[Any, Any], tuple[Any, Any]] | None = None
    method: ClassVar[Callable[..., tuple[NDArray, int]]]

    def init_cacheval(self, A, b, u, Pl, Pr, maxiters, abstol, reltol, verbose, assumptions):  # noqa: ARG002
        return KrylovWorkspace(b=b)

    def update_cacheval(self, cache: LinearCache, cacheval: Any, name: str, x: Any) -> Any:  # noqa: ARG002
        if name == "b" and isinstance(cacheval, KrylovWorkspace):
            cacheval.b = x
            cacheval.iters = 0
        return cacheval

    def _options(self, cache: LinearCache) -> dict[str, Any]:
        return {
            "rtol": float(cache.reltol),
            "atol": float(cache.abstol),
            "maxiter": cache.maxiters,
        }

    def _iterate(
        self, a: LinearOperator, b: NDArray, x0: NDArray | None, cache: LinearCache
    ) -> tuple[NDArray, int, int]:
        count = 0

        def callback(_: Any) -> None:
            nonlocal count
            count += 1

        kwargs = self._options(cache)
        if not is_identity(cache.Pl):
            kwargs["M"] = cache.Pl
        x, info = type(self).method(a, b, x0=x0, callback=callback, **kwargs)
        return x, info, count

    def solve(self, cache: LinearCache) -> LinearSolution:
        ws = cache.get_cacheval()
        a = aslinearoperator(_as_operator(cache.A))
        b = _dense(cache.b)
        x0 = _dense(cache.u) if cache.u is not None else None

        if is_identity(cache.Pr):
            x, info, iters = self._iterate(a, b, x0, cache)
        else:
            pr = aslinearoperator(cache.Pr)
            y, info, iters = self._iterate(a @ pr, b, None, cache)
            x = pr @ y

        resid = float(np.linalg.norm(b - a @ x))
        if info == 0:
            retcode = ReturnCode.Success
        elif info > 0:
            retcode = ReturnCode.MaxIters
        else:
            retcode = ReturnCode.Failure
        if isinstance(ws, KrylovWorkspace):
            ws.iters, ws.resid, ws.info = iters, resid, info

        level = logging.INFO if cache.verbose else logging.DEBUG
        logger.log(
            level, "%r: %s after %d iterations, residual %.3e", self, retcode.name, iters, resid
        )

        cache.u = x
        cache.isfresh = False
        return build_linear_solution(self, x, resid, cache, retcode=retcode, iters=iters)

    def solve_transpose(self, cache: LinearCache, rhs: NDArray) -> NDArray:
        a = aslinearoperator(_as_operator(cache.A)).T
        x, _, _ = self._iterate(a, _dense(rhs), None, cache)
        return x


def _as_operator(a: Any) -> Any:
    if isinstance(a, LinearOperator) or issparse(a):
        return a
    return np.asarray(a)


@dataclass(repr=False)
class KrylovGMRES(AbstractKrylovSubspaceMethod):
    """Restarted GMRES (:func:`scipy.sparse.linalg.gmres`)."""

    restart: int | None = None
    method = staticmethod(gmres)

    def _options(self, cache: LinearCache) -> dict[str, Any]:
        return {**super()._options(cache), "restart": self.restart, "callback_type": "pr_norm"}


@dataclass(repr=False)
class KrylovCG(AbstractKrylovSubspaceMethod):
    """Conjugate gradients for Hermitian positive definite operators."""

    method = staticmethod(cg)


@dataclass(repr=False)
class KrylovBiCGStab(AbstractKrylovSubspaceMethod):
    """Stabilized bi-conjugate gradients."""

    method = staticmethod(bicgstab)


@dataclass(repr=False)
class KrylovMINRES(AbstractKrylovSubspaceMethod):
    """MINRES for Hermitian (possibly indefinite) operators."""

    method = staticmethod(minres)

    def _options(self, cache: LinearCache) -> dict[str, Any]:
        opts = super()._options(cache)
        del opts["atol"]
        return opts


def get_algorithm(name: str = DEFAULT_ALGORITHM) -> LinearSolveAlgorithm:
    """Return an algorithm instance by name.

    Parameters
    ----------
    name
        Class name of the algorithm, e.g. ``"LUFactorization"`` or
        ``"KrylovGMRES"``.

    Examples
    --------
    >>> from linsolve.solvers import get_algorithm, LinearSolveAlgorithm
    >>> alg = get_algorithm("QRFactorization")
    >>> isinstance(alg, LinearSolveAlgorithm)
    True
    """
    match name:
        case "DirectLdiv":
            return DirectLdiv()
        case "LUFactorization":
            return LUFactorization()
        case "QRFactorization":
            return QRFactorization()
        case "CholeskyFactorization":
            return CholeskyFactorization()
        case "NormalCholeskyFactorization":
            return NormalCholeskyFactorization()
        case "SVDFactorization":
            return SVDFactorization()
        case "SparseLUFactorization":
            return SparseLUFactorization()
        case "KrylovGMRES":
            return KrylovGMRES()
        case "KrylovCG":
            return KrylovCG()
        case "KrylovBiCGStab":
            return KrylovBiCGStab()
        case "KrylovMINRES":
            return KrylovMINRES()
        case _:
            raise ValueError(f"Invalid algorithm: {name}")
