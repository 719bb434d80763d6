#!/usr/bin/env python3
"""Compare cached solves across algorithms on a sequence of related systems."""

import logging
import time

import numpy as np
from scipy.sparse import diags, kron

from linsolve.common import init, solve_
from linsolve.problem import LinearProblem
from linsolve.solvers import get_algorithm


def poisson_2d(n, scale=1.0):
    """Five-point Laplacian on an ``n x n`` grid, shifted by ``scale``."""

    t = diags([-1.0, 4.0 + scale, -1.0], [-1, 0, 1], shape=(n, n))
    s = diags([-1.0, -1.0], [-1, 1], shape=(n, n))
    eye = diags([1.0], [0], shape=(n, n))

    return (kron(eye, t) + kron(s, eye)).tocsc()


def main():
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    n = 40
    rng = np.random.default_rng(0)
    b = rng.random(n * n)

    for name in ["SparseLUFactorization", "KrylovGMRES", "KrylovCG", "LUFactorization"]:
        alg = get_algorithm(name)
        cache = init(LinearProblem(poisson_2d(n), b), alg, verbose=True, maxiters=500)

        start = time.perf_counter()
        for step in range(10):
            cache.A = poisson_2d(n, scale=0.1 * step)
            cache.b = rng.random(n * n)
            sol = solve_(cache)
        elapsed = time.perf_counter() - start

        resid = np.linalg.norm(cache.A @ sol.u - cache.b)
        print(f"{name:>24}: {elapsed:.3f} s, final residual {resid:.2e}")


if __name__ == "__main__":
    main()
