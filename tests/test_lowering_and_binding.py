from __future__ import annotations

import ast
import math
import unittest

import numpy as np

from symkern.errors import MalformedArgumentError, MalformedExpressionError, UnresolvedSymbolError
from symkern.expr import Call, Constant, Derivative, Parameter, Variable, call
from symkern.lowering import ArgumentBinder, Lowerer, NameFactory, is_literal_zero


def _eval(node: ast.expr, scope: dict[str, object]) -> object:
    expression = ast.fix_missing_locations(ast.Expression(body=node))
    return eval(compile(expression, "<test>", "eval"), {"xp": np}, scope)


class NameFactoryTests(unittest.TestCase):
    def test_fresh_names_are_prefixed_and_counted(self) -> None:
        names = NameFactory()
        self.assertEqual(names.fresh("x"), "_sk_x_1")
        self.assertEqual(names.fresh("x"), "_sk_x_2")
        self.assertEqual(names.fresh("a b"), "_sk_a_b_3")

    def test_factories_do_not_share_counters(self) -> None:
        self.assertEqual(NameFactory().fresh("out"), NameFactory().fresh("out"))


class ArgumentBinderTests(unittest.TestCase):
    def test_binds_container_elements_and_single_symbols(self) -> None:
        x, y, a = Variable("x"), Variable("y"), Parameter("a")
        binder = ArgumentBinder([[x, y], a], NameFactory())

        self.assertEqual(len(binder.arg_names), 2)
        self.assertEqual([b.symbol for b in binder.bindings], [x, y, a])
        self.assertEqual(binder.container_lengths, {binder.arg_names[0]: 2})

        module = ast.fix_missing_locations(ast.Module(body=binder.prologue(), type_ignores=[]))
        scope = {binder.arg_names[0]: [1.5, 2.5], binder.arg_names[1]: 4.0}
        exec(compile(module, "<test>", "exec"), {}, scope)
        self.assertEqual(scope[binder.resolve(x)], 1.5)
        self.assertEqual(scope[binder.resolve(y)], 2.5)
        self.assertEqual(scope[binder.resolve(a)], 4.0)

    def test_prologue_is_one_destructuring_assignment(self) -> None:
        binder = ArgumentBinder([[Variable("x"), Variable("y")]], NameFactory())
        prologue = binder.prologue()
        self.assertEqual(len(prologue), 1)
        self.assertIsInstance(prologue[0], ast.Assign)
        self.assertIsInstance(prologue[0].targets[0], ast.Tuple)

    def test_duplicate_symbol_resolves_to_first_binding(self) -> None:
        x = Variable("x")
        binder = ArgumentBinder([[x], x], NameFactory())
        self.assertEqual(binder.resolve(x), binder.bindings[0].local)

    def test_variable_and_parameter_with_same_name_are_distinct(self) -> None:
        binder = ArgumentBinder([[Variable("k")], [Parameter("k")]], NameFactory())
        self.assertNotEqual(binder.resolve(Variable("k")), binder.resolve(Parameter("k")))

    def test_malformed_arguments_raise(self) -> None:
        cases = [
            [[]],
            [None],
            [[Variable("x"), 3.0]],
            ["x"],
        ]
        for args in cases:
            with self.subTest(args=args):
                with self.assertRaises(MalformedArgumentError):
                    ArgumentBinder(args, NameFactory())

    def test_unknown_symbol_is_unresolved(self) -> None:
        binder = ArgumentBinder([[Variable("x")]], NameFactory())
        with self.assertRaises(UnresolvedSymbolError) as ctx:
            binder.resolve(Variable("z"))
        self.assertEqual(ctx.exception.symbol, "z")
        self.assertIn("'z'", str(ctx.exception))

    def test_bounds_checks_cover_each_container(self) -> None:
        binder = ArgumentBinder([[Variable("x"), Variable("y")], Parameter("a")], NameFactory())
        checks = binder.bounds_checks()
        self.assertEqual(len(checks), 1)
        self.assertIn("rt.check_length", ast.unparse(checks[0]))


class LowererTests(unittest.TestCase):
    def setUp(self) -> None:
        self.x, self.y = Variable("x"), Variable("y")
        self.a = Parameter("a")
        self.binder = ArgumentBinder([[self.x, self.y], [self.a]], NameFactory())
        self.lowerer = Lowerer(self.binder)
        self.scope = {
            self.binder.resolve(self.x): 2.0,
            self.binder.resolve(self.y): 3.0,
            self.binder.resolve(self.a): 0.5,
        }

    def test_arithmetic_and_functions(self) -> None:
        x, y, a = self.x, self.y, self.a
        cases = [
            (x + y, 5.0),
            (x - y, -1.0),
            (x * y * a, 3.0),
            (x / y, 2.0 / 3.0),
            (x**2, 4.0),
            (-x, -2.0),
            (call("sin", x), math.sin(2.0)),
            (call("max", x, y), 3.0),
            (call("max", x, y, a), 3.0),
            (call("min", a, x, y), 0.5),
            (call("atan2", y, x), math.atan2(3.0, 2.0)),
            (Call("+", (x, y, a, Constant(1))), 6.5),
        ]
        for expr, want in cases:
            with self.subTest(expr=expr):
                self.assertAlmostEqual(float(_eval(self.lowerer.lower(expr), self.scope)), want)

    def test_nary_chain_keeps_operand_order(self) -> None:
        node = self.lowerer.lower(Call("*", (self.x, self.y, self.a)))
        self.assertIsInstance(node, ast.BinOp)
        self.assertIsInstance(node.left, ast.BinOp)
        self.assertEqual(node.right.id, self.binder.resolve(self.a))

    def test_negative_constant_keeps_grouping_in_source(self) -> None:
        node = self.lowerer.lower(Constant(-2.0) ** 2)
        self.assertEqual(eval(ast.unparse(node)), 4.0)

    def test_numpy_scalars_become_python_literals(self) -> None:
        node = self.lowerer.lower(np.float64(1.25))
        self.assertIsInstance(node, ast.Constant)
        self.assertIs(type(node.value), float)

    def test_unknown_identifier_operator_is_a_bare_call(self) -> None:
        node = self.lowerer.lower(call("myfunc", self.x))
        self.assertEqual(ast.unparse(node), f"myfunc({self.binder.resolve(self.x)})")

    def test_conversion_function_runs_before_lowering(self) -> None:
        lowerer = Lowerer(self.binder, conversion_function=lambda e: Constant(0) if e == self.x else e)
        self.assertTrue(is_literal_zero(lowerer.lower(self.x)))

    def test_rejected_values(self) -> None:
        cases = [
            (Derivative(self.x), MalformedExpressionError),
            ("x", MalformedExpressionError),
            (True, MalformedExpressionError),
            (Constant("1"), MalformedExpressionError),
            (call("+-", self.x, self.y, self.a), MalformedExpressionError),
            (call("min", self.x), MalformedExpressionError),
            (Variable("z") + 1, UnresolvedSymbolError),
        ]
        for value, error in cases:
            with self.subTest(value=value):
                with self.assertRaises(error):
                    self.lowerer.lower(value)


class LiteralZeroTests(unittest.TestCase):
    def test_literal_zero_detection(self) -> None:
        cases = [
            (ast.Constant(0), True),
            (ast.Constant(0.0), True),
            (ast.UnaryOp(op=ast.USub(), operand=ast.Constant(0.0)), True),
            (ast.Constant(False), False),
            (ast.Constant(1), False),
            (ast.Name(id="zero", ctx=ast.Load()), False),
        ]
        for node, want in cases:
            with self.subTest(node=ast.unparse(node)):
                self.assertEqual(is_literal_zero(node), want)


if __name__ == "__main__":
    unittest.main()
