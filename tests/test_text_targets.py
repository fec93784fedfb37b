from __future__ import annotations

import unittest

from symkern import Constant, Derivative, Equation, Target, Variable, build_function, call, numbered_expr, parameters, variables
from symkern.errors import MalformedArgumentError, MalformedExpressionError, UnresolvedSymbolError, UnsupportedTargetError
from symkern.numbering import MATLAB_DIALECT, STAN_DIALECT


class TextTargetTests(unittest.TestCase):
    def setUp(self) -> None:
        self.x, self.y = variables("x", "y")
        (self.a,) = parameters("a")
        self.t = Variable("t")
        self.equations = [
            Equation(Derivative(self.x), -self.x),
            Equation(Derivative(self.y), self.x - self.y),
        ]

    def _render(self, target, equations=None, params=(), **overrides) -> str:
        return build_function(
            self.equations if equations is None else equations,
            [self.x, self.y],
            list(params),
            self.t,
            target=target,
            function_name="f",
            **overrides,
        )

    def test_c_function_with_one_based_indices(self) -> None:
        self.assertEqual(
            self._render(Target.C, index_base=1),
            "void f(double* derivative, double* state, double* parameter, double t) {\n"
            "  derivative[1] = -state[1];\n"
            "  derivative[2] = state[1] - state[2];\n"
            "}\n",
        )

    def test_c_function_defaults_to_zero_based_indices(self) -> None:
        text = self._render("c")
        self.assertIn("  derivative[0] = -state[0];\n", text)
        self.assertIn("  derivative[1] = state[0] - state[1];\n", text)

    def test_c_dialect_functions(self) -> None:
        eqs = [Equation(Derivative(self.x), self.x**2 + call("abs", self.a))]
        self.assertIn("derivative[0] = pow(state[0], 2) + fabs(parameter[0]);", self._render(Target.C, eqs, [self.a]))

    def test_nary_min_and_max_render_nested_binary_calls(self) -> None:
        z = Variable("z")
        eqs = [Equation(Derivative(self.x), call("max", self.x, self.y, self.a))]
        self.assertIn(
            "derivative[0] = fmax(fmax(state[0], state[1]), parameter[0]);",
            self._render(Target.C, eqs, [self.a]),
        )
        self.assertEqual(
            numbered_expr(call("min", self.x, self.y, z, self.a), [self.x, self.y, z], [self.a], dialect=STAN_DIALECT),
            "fmin(fmin(fmin(state[0], state[1]), state[2]), parameter[0])",
        )
        with self.assertRaises(MalformedExpressionError):
            numbered_expr(call("min", self.x), [self.x], [])

    def test_stan_function(self) -> None:
        eqs = [
            Equation(Derivative(self.x), self.a * self.x),
            Equation(Derivative(self.y), self.x**2),
        ]
        self.assertEqual(
            self._render(Target.STAN, eqs, [self.a]),
            "real[] f(real t, real[] state, real[] parameter, real[] x_r, int[] x_i) {\n"
            "  real derivative[2];\n"
            "  derivative[1] = parameter[1] * state[1];\n"
            "  derivative[2] = state[1]^2;\n"
            "  return derivative;\n"
            "}\n",
        )

    def test_matlab_anonymous_function(self) -> None:
        self.assertEqual(self._render(Target.MATLAB), "f = @(t,state) [-state(1); state(1) - state(2)];")

        eqs = [Equation(Derivative(self.x), self.a * self.x)]
        self.assertEqual(
            self._render(Target.MATLAB, eqs, [self.a]),
            "f = @(t,state,parameter) [parameter(1) * state(1)];",
        )

    def test_custom_array_names(self) -> None:
        text = self._render(Target.C, derivative_name="du", state_name="u", parameter_name="p")
        self.assertTrue(text.startswith("void f(double* du, double* u, double* p, double t) {"))
        self.assertIn("du[0] = -u[0];", text)

    def test_unresolved_symbols_abort_generation(self) -> None:
        cases = [
            [Equation(Derivative(self.x), Variable("z"))],
            [Equation(Derivative(self.x), self.t * self.x)],
            [Equation(Derivative(Variable("w")), self.x)],
        ]
        for eqs in cases:
            with self.subTest(eqs=eqs):
                with self.assertRaises(UnresolvedSymbolError):
                    self._render(Target.C, eqs)

    def test_malformed_text_inputs(self) -> None:
        with self.assertRaises(MalformedArgumentError):
            build_function(self.equations, [self.x, self.y], target="c")
        with self.assertRaises(MalformedExpressionError):
            self._render(Target.C, [-self.x])
        with self.assertRaises(UnsupportedTargetError):
            self._render(Target.STAN, self.equations[0])


class NumberedExpressionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.x, self.y = variables("x", "y")
        (self.a,) = parameters("a")

    def _numbered(self, expr, **kwargs) -> str:
        return numbered_expr(expr, [self.x, self.y], [self.a], **kwargs)

    def test_precedence_aware_rendering(self) -> None:
        x, y, a = self.x, self.y, self.a
        cases = [
            ((x + y) * a, "(state[0] + state[1]) * parameter[0]"),
            (x - (y - a), "state[0] - (state[1] - parameter[0])"),
            ((x - y) - a, "state[0] - state[1] - parameter[0]"),
            (x / (y * a), "state[0] / (state[1] * parameter[0])"),
            (-(x + y), "-(state[0] + state[1])"),
            (Constant(-2.0) * x, "-2.0 * state[0]"),
            (call("sin", x + 1), "sin(state[0] + 1)"),
        ]
        for expr, want in cases:
            with self.subTest(want=want):
                self.assertEqual(self._numbered(expr), want)

    def test_power_spelling_per_dialect(self) -> None:
        expr = (self.x + self.y) ** 2
        self.assertEqual(self._numbered(expr), "pow(state[0] + state[1], 2)")
        self.assertEqual(self._numbered(expr, dialect=STAN_DIALECT), "(state[0] + state[1])^2")
        self.assertEqual(
            self._numbered(expr, dialect=MATLAB_DIALECT, index_base=1),
            "(state[1] + state[2])^2",
        )

    def test_symbols_match_by_name(self) -> None:
        self.assertEqual(self._numbered(Variable("a")), "parameter[0]")

    def test_equation_lhs_uses_derivative_array(self) -> None:
        self.assertEqual(self._numbered(Equation(Derivative(self.y), self.a)), "derivative[1] = parameter[0]")


if __name__ == "__main__":
    unittest.main()
