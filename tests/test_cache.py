import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal
from scipy.sparse import coo_array, csc_matrix, diags, issparse
from scipy.sparse.linalg import aslinearoperator

from linsolve.assumptions import OperatorAssumptions
from linsolve.common import LinearCache, default_tol, init, reinit, solve, solve_
from linsolve.operators import IdentityOperator
from linsolve.problem import NULL_PARAMETERS, LinearProblem, LinearSolveAdjoint
from linsolve.solvers import (
    DirectLdiv,
    KrylovCG,
    KrylovGMRES,
    LUFactorization,
    QRFactorization,
    SparseLUFactorization,
)
from linsolve.static import SMatrix, SVector


@pytest.fixture
def rng():
    seed = 36523523
    return np.random.default_rng(seed)


@pytest.fixture
def system(rng):
    a = rng.random((5, 5)) + 5 * np.eye(5)
    b = rng.random(5)
    return a, b


class TestAliasing:
    def test_alias_a_keeps_identity(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), LUFactorization(), alias_A=True)
        assert cache.A is a

    def test_no_alias_copies_dense(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), LUFactorization(), alias_A=False, alias_b=False)
        assert cache.A is not a
        assert_array_equal(cache.A, a)
        assert cache.b is not b
        assert_array_equal(cache.b, b)

    def test_factorizations_copy_by_default(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), QRFactorization())
        assert cache.A is not a
        assert cache.b is not b

    @pytest.mark.parametrize("alg", [KrylovGMRES(), KrylovCG(), SparseLUFactorization()])
    def test_krylov_and_sparse_alias_by_default(self, system, alg):
        a, b = system
        a = csc_matrix(a)
        cache = init(LinearProblem(a, b), alg)
        assert cache.A is a
        assert cache.b is b

    def test_explicit_flag_wins(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), KrylovGMRES(), alias_A=False, alias_b=False)
        assert cache.A is not a
        assert cache.b is not b

    def test_csc_copy_shares_buffers(self, system):
        a, b = system
        a = csc_matrix(a)
        cache = init(LinearProblem(a, b), LUFactorization())
        assert cache.A is not a
        assert isinstance(cache.A, csc_matrix)
        assert np.shares_memory(cache.A.data, a.data)
        assert np.shares_memory(cache.A.indices, a.indices)

    def test_other_operators_are_deep_copied(self, system):
        a, b = system
        op = aslinearoperator(a)
        cache = init(LinearProblem(op, b), LUFactorization())
        assert cache.A is not op
        assert not np.shares_memory(cache.A.A, op.A)

    def test_static_operator_never_copied(self):
        a = SMatrix([[2.0, 1.0], [1.0, 2.0]])
        b = SVector([1.0, 1.0])
        cache = init(LinearProblem(a, b), LUFactorization(), alias_A=False, alias_b=False)
        assert cache.A is a
        assert cache.b is b

    def test_sparse_rhs_is_densified(self, system):
        a, b = system
        cache = init(LinearProblem(a, csc_matrix(b[:, None])), LUFactorization(), alias_b=True)
        assert isinstance(cache.b, np.ndarray)
        assert cache.b.shape == (5,)
        assert_array_equal(cache.b, b)

    def test_sparse_rhs_kept_for_diagonal_operator(self):
        a = diags([1.0, 2.0, 4.0])
        b = csc_matrix(np.ones((3, 1)))
        cache = init(LinearProblem(a, b), LUFactorization())
        assert issparse(cache.b)
        assert issparse(cache.u)
        assert cache.u.shape == (3, 1)

    def test_one_dimensional_sparse_rhs_for_diagonal_operator(self):
        a = diags([2.0, 4.0], 0, format="dia")
        b = coo_array([2.0, 4.0])
        cache = init(LinearProblem(a, b), DirectLdiv())
        assert issparse(cache.u)
        assert cache.u.shape == (2,)
        assert type(cache.u) is coo_array
        assert_allclose(solve_(cache).u, [1.0, 1.0])


class TestInitialGuess:
    def test_zero_vector_from_columns(self, rng):
        a = rng.random((6, 4))
        b = rng.random(6).astype(np.float32)
        cache = init(LinearProblem(a, b), QRFactorization())
        assert cache.u.shape == (4,)
        assert cache.u.dtype == np.float32
        assert not np.any(cache.u)

    def test_static_zero_vector(self):
        a = SMatrix(np.eye(3))
        b = SVector([1, 2, 3])
        cache = init(LinearProblem(a, b), LUFactorization())
        assert isinstance(cache.u, SVector)
        assert cache.u == SVector.zeros(3, dtype=b.dtype)

    def test_supplied_guess_is_used(self, system):
        a, b = system
        u0 = np.ones(5)
        cache = init(LinearProblem(a, b, u0=u0), KrylovGMRES())
        assert cache.u is u0


class TestTolerances:
    def test_float64_defaults(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), LUFactorization())
        expected = np.sqrt(np.finfo(np.float64).eps)
        assert cache.abstol == cache.reltol == expected

    def test_float32_defaults(self, system):
        a, b = system
        cache = init(LinearProblem(a, b.astype(np.float32)), LUFactorization())
        assert cache.abstol.dtype == np.float32
        assert cache.abstol == np.float32(np.sqrt(np.finfo(np.float32).eps))

    def test_complex_uses_real_type(self, system):
        a, b = system
        cache = init(LinearProblem(a, b.astype(np.complex128)), LUFactorization())
        assert cache.reltol.dtype == np.float64
        assert cache.reltol == np.sqrt(np.finfo(np.float64).eps)

    def test_integer_defaults_to_zero(self, system):
        a, _ = system
        cache = init(LinearProblem(a, np.array([1, 2, 3, 4, 5])), LUFactorization())
        assert cache.abstol == 0
        assert cache.reltol == 0

    def test_user_values_are_coerced(self, system):
        a, b = system
        cache = init(
            LinearProblem(a, b.astype(np.float32)), KrylovGMRES(), abstol=1e-6, reltol=1e-4
        )
        assert cache.abstol.dtype == np.float32
        assert cache.reltol.dtype == np.float32
        assert_allclose(cache.reltol, 1e-4)

    def test_negative_tolerance(self, system):
        a, b = system
        with pytest.raises(ValueError, match="nonnegative"):
            init(LinearProblem(a, b), LUFactorization(), abstol=-1.0)

    def test_inexact_integer_tolerance(self, system):
        a, _ = system
        with pytest.raises(ValueError, match="cannot be represented"):
            init(LinearProblem(a, np.arange(5)), LUFactorization(), reltol=1e-3)

    def test_unsupported_element_type(self):
        with pytest.raises(TypeError):
            init(LinearProblem(np.eye(2), np.array(["a", "b"])), LUFactorization())

    @pytest.mark.parametrize(
        ("dtype", "expected"),
        [
            (np.float64, np.sqrt(np.finfo(np.float64).eps)),
            (np.complex64, np.sqrt(np.finfo(np.float32).eps)),
            (np.int32, 0),
            (np.bool_, 0),
            (object, 0),
        ],
    )
    def test_default_tol(self, dtype, expected):
        assert default_tol(dtype) == expected


class TestOptions:
    def test_default_preconditioners(self, rng):
        a = rng.random((6, 4))
        cache = init(LinearProblem(a, rng.random(6)), QRFactorization())
        assert cache.Pl == IdentityOperator(6)
        assert cache.Pr == IdentityOperator(4)

    def test_algorithm_preconditioners(self, system):
        a, b = system
        pl = aslinearoperator(np.diag(1 / np.diag(a)))

        def precs(a_, p):
            return pl, IdentityOperator(a_.shape[1])

        cache = init(LinearProblem(a, b), KrylovGMRES(precs=precs))
        assert cache.Pl is pl

    def test_explicit_preconditioners_win(self, system):
        a, b = system
        pl = aslinearoperator(np.eye(5))
        cache = init(LinearProblem(a, b), KrylovGMRES(precs=lambda a_, p: (None, None)), Pl=pl)
        assert cache.Pl is pl
        assert cache.Pr is None

    def test_maxiters_default(self, system):
        a, b = system
        assert init(LinearProblem(a, b), KrylovGMRES()).maxiters == 5

    def test_invalid_maxiters(self, system):
        a, b = system
        with pytest.raises(ValueError, match="maxiters"):
            init(LinearProblem(a, b), KrylovGMRES(), maxiters=0)

    def test_remaining_defaults(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), LUFactorization())
        assert cache.assumptions == OperatorAssumptions(True)
        assert cache.sensealg == LinearSolveAdjoint()
        assert cache.verbose is False
        assert cache.p is NULL_PARAMETERS


class TestFreshness:
    def test_factorization_starts_fresh(self, system):
        a, b = system
        assert init(LinearProblem(a, b), LUFactorization()).isfresh is True

    def test_krylov_starts_not_fresh(self, system):
        a, b = system
        assert init(LinearProblem(a, b), KrylovGMRES()).isfresh is False

    def test_operator_write_forces_fresh(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), LUFactorization())
        solve_(cache)
        assert cache.isfresh is False
        cache.A = 2 * a
        assert cache.isfresh is True

    def test_operator_write_on_krylov(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), KrylovGMRES())
        cache.set_operator(a.T)
        assert cache.isfresh is True

    def test_parameter_write_forces_fresh(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), LUFactorization())
        solve_(cache)
        cache.p = {"scale": 2.0}
        assert cache.isfresh is True
        assert cache.p == {"scale": 2.0}

    @pytest.mark.parametrize("fresh", [True, False])
    def test_rhs_write_keeps_freshness(self, system, fresh):
        a, b = system
        cache = init(LinearProblem(a, b), LUFactorization())
        cache.isfresh = fresh
        cache.b = 2 * b
        assert cache.isfresh is fresh

    def test_rhs_write_runs_hook(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), KrylovGMRES())
        solve_(cache)
        assert cache.cacheval.iters > 0
        new_b = 2 * b
        cache.set_rhs(new_b)
        assert cache.cacheval.b is new_b
        assert cache.cacheval.iters == 0
        assert cache.b is new_b

    def test_factorization_reused_between_solves(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), LUFactorization())
        solve_(cache)
        fact = cache.cacheval
        cache.b = 3 * b
        sol = solve_(cache)
        assert cache.cacheval is fact
        assert_allclose(sol.u, np.linalg.solve(a, 3 * b))

    def test_refactorization_after_operator_change(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), LUFactorization())
        solve_(cache)
        fact = cache.cacheval
        cache.A = 2 * a
        sol = solve_(cache)
        assert cache.cacheval is not fact
        assert_allclose(sol.u, np.linalg.solve(2 * a, b))


class TestReinit:
    def test_in_place(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), LUFactorization(), alias_A=True)
        solve_(cache)
        a2 = 2 * a
        out = reinit(cache, A=a2)
        assert out is cache
        assert cache.A is a2
        assert cache.isfresh is True
        assert cache.p is NULL_PARAMETERS

    def test_in_place_keeps_unsupplied_fields(self, system):
        a, b = system
        cache = init(LinearProblem(a, b, p=1.0), LUFactorization())
        old_a, old_b, old_u = cache.A, cache.b, cache.u
        reinit(cache)
        assert cache.A is old_a
        assert cache.b is old_b
        assert cache.u is old_u
        assert cache.p is NULL_PARAMETERS

    def test_in_place_with_parameters(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), LUFactorization())
        reinit(cache, p=3)
        assert cache.p == 3

    def test_new_cache(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), LUFactorization())
        solve_(cache)
        a2 = 2 * a
        new = reinit(cache, A=a2, reinit_cache=True)
        assert new is not cache
        assert isinstance(new, LinearCache)
        assert new.alg is cache.alg
        assert new.cacheval is cache.cacheval
        assert new.isfresh is True
        assert new.A is a2
        assert new.b is cache.b
        assert new.abstol == cache.abstol
        assert cache.A is not a2

    def test_new_cache_with_other_element_type(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), LUFactorization())
        new = reinit(cache, A=a.astype(np.complex128), b=b.astype(np.complex128), reinit_cache=True)
        sol = solve_(new)
        assert_allclose(sol.u, np.linalg.solve(a, b))

    def test_repeated_solves_are_idempotent(self, system):
        a, b = system
        cache = init(LinearProblem(a, b), LUFactorization())
        u1 = solve_(cache).u.copy()
        reinit(cache, A=cache.A, b=cache.b)
        u2 = solve_(cache).u
        u3 = solve_(cache).u
        assert_allclose(u1, u2)
        assert_allclose(u2, u3)
        assert cache.isfresh is False


def test_solve_matches_numpy(system):
    a, b = system
    sol = solve(LinearProblem(a, b), LUFactorization())
    assert sol.successful
    assert isinstance(sol.cache, LinearCache)
    assert_allclose(sol.u, np.linalg.solve(a, b))


def test_solve_leaves_input_untouched(system):
    a, b = system
    a0, b0 = a.copy(), b.copy()
    solve(LinearProblem(a, b), LUFactorization())
    assert_array_equal(a, a0)
    assert_array_equal(b, b0)


def test_collaborator_errors_propagate():
    a = np.array([[1.0, 2.0], [2.0, 4.0]])
    cache = init(LinearProblem(a, np.ones(2)), LUFactorization())
    with pytest.raises(np.linalg.LinAlgError):
        solve_(cache)
    assert cache.isfresh is True
