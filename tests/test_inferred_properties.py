from __future__ import annotations

import importlib.util
import math
import unittest

import numpy as np


JAX_AVAILABLE = importlib.util.find_spec("jax") is not None


class InferredPropertiesTests(unittest.TestCase):
    def _assert_close(self, got, want, *, places: int = 5) -> None:
        got_py = np.asarray(got, dtype=float).tolist()
        want_py = np.asarray(want, dtype=float).tolist()

        def check(g, w):
            if isinstance(w, list):
                self.assertIsInstance(g, list)
                self.assertEqual(len(g), len(w))
                for g_item, w_item in zip(g, w, strict=True):
                    check(g_item, w_item)
                return
            if math.isinf(w) or math.isinf(g):
                self.assertEqual(math.isinf(w), math.isinf(g))
                return
            self.assertAlmostEqual(g, w, places=places)

        check(got_py, want_py)

    @unittest.skipUnless(JAX_AVAILABLE, "jax is required for the reference evaluator")
    def test_scalar_kernel_agrees_with_reference_evaluator(self) -> None:
        from symkern import Constant, build_function, call, evaluate, parameters, variables

        x, y = variables("x", "y")
        a, b = parameters("a", "b")
        cases = [
            x + y * a,
            (x - b) / (y + 1),
            x**3 - Constant(-2.0) ** 2,
            call("sqrt", call("abs", x - y)),
            call("tanh", a) * call("cos", y) + call("log", b),
            call("min", x, y) - call("max", a, b),
            call("max", x, y, a, b) + call("min", b, a, x),
            -(-x),
        ]
        env = {"x": 0.75, "y": -1.5, "a": 2.0, "b": 3.25}
        for expr in cases:
            with self.subTest(expr=expr):
                kernel = build_function(expr, [x, y], [a, b], mode="compiled")
                got = kernel([env["x"], env["y"]], [env["a"], env["b"]])
                self._assert_close(got, evaluate(expr, env))

    def test_in_place_and_out_of_place_kernels_agree(self) -> None:
        from symkern import SparseExprMatrix, build_function, call, variables

        x, y, z = variables("x", "y", "z")
        matrix = np.array([[x, y], [z, x * y]], dtype=object)
        sparse = SparseExprMatrix.from_dense([[x, 0, z], [0, y, 0]])
        state = [1.5, -2.0, 0.25]
        for rhss, out in [
            ([x, call("exp", y), z / x], np.zeros(3)),
            (matrix, np.zeros((2, 2))),
            ([matrix, matrix], [np.zeros((2, 2)), np.zeros((2, 2))]),
        ]:
            with self.subTest(rhss=type(rhss).__name__):
                kernels = build_function(rhss, [x, y, z], mode="compiled")
                kernels.in_place(out, state)
                np.testing.assert_array_equal(out, kernels.out_of_place(state))

        kernels = build_function(sparse, [x, y, z], mode="compiled")
        out = kernels.out_of_place(state).copy()
        out.data[:] = 0.0
        kernels.in_place(out, state)
        np.testing.assert_array_equal(out.toarray(), kernels.out_of_place(state).toarray())

    def test_skip_zero_preserves_sentinels(self) -> None:
        from symkern import Constant, Threaded, build_function, variables

        x, y = variables("x", "y")
        rhss = [x, Constant(0), y, 0.0, Constant(-0.0), x + 0]
        for parallel in (None, Threaded(2)):
            with self.subTest(parallel=parallel):
                kernels = build_function(rhss, [x, y], mode="compiled", skip_zero=True, parallel=parallel)
                out = np.full(len(rhss), 42.0)
                kernels.in_place(out, [1.0, 2.0])
                self._assert_close(out, [1.0, 42.0, 2.0, 42.0, 42.0, 1.0])

    def test_partition_completeness(self) -> None:
        from symkern import partition

        for length in range(0, 40, 3):
            for k in range(1, 10):
                with self.subTest(length=length, k=k):
                    items = [f"item{i}" for i in range(length)]
                    chunks = partition(items, k)
                    self.assertEqual(len(chunks), k)
                    self.assertEqual(sum(chunks, []), items)
                    self.assertLessEqual(max(len(chunk) for chunk in chunks), math.ceil(length / k))

    def test_sparse_structure_round_trip(self) -> None:
        from symkern import SparseExprMatrix, build_function, parameters, variables

        x, y = variables("x", "y")
        (a,) = parameters("a")
        sparse = SparseExprMatrix.from_dense([[0, x, 0], [a, 0, y], [x * y, 0, 0], [0, 0, a]])
        kernels = build_function(sparse, [x, y], [a], mode="compiled")
        for state in ([1.0, 2.0], [0.0, -3.0]):
            with self.subTest(state=state):
                result = kernels.out_of_place(state, [5.0])
                self.assertEqual(result.shape, sparse.shape)
                self.assertEqual(result.indptr.tolist(), list(sparse.colptr))
                self.assertEqual(result.indices.tolist(), list(sparse.rowval))
                self.assertEqual(result.nnz, sparse.nnz)

    def test_linear_decay_scenario(self) -> None:
        from symkern import Derivative, Equation, build_function, variables

        x, y = variables("x", "y")
        t = variables("t")[0]
        equations = [Equation(Derivative(x), -x), Equation(Derivative(y), x - y)]

        c_text = build_function(equations, [x, y], [], t, target="c", index_base=1)
        self.assertIn("derivative[1] = -state[1];", c_text)
        self.assertIn("derivative[2] = state[1] - state[2];", c_text)

        kernels = build_function([eq.rhs for eq in equations], [x, y], mode="compiled")
        out = np.zeros(2)
        kernels.in_place(out, [2.0, 5.0])
        self._assert_close(out, [-2.0, -3.0])


if __name__ == "__main__":
    unittest.main()
