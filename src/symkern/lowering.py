"""Argument binding and lowering of expression trees to Python AST."""

from __future__ import annotations

import ast
import itertools
import math
import re
from dataclasses import dataclass
from numbers import Number as Numeric
from typing import Callable, Final, Sequence

from .errors import MalformedArgumentError, MalformedExpressionError, UnresolvedSymbolError
from .expr import SYMBOL_TYPES, Call, Constant, Derivative, Parameter, Variable, is_expr

RESERVED_PREFIX: Final[str] = "_sk_"

NUMERIC_MODULE: Final[str] = "xp"
DENSE_MODULE: Final[str] = "np"
SPARSE_MODULE: Final[str] = "sp"
RUNTIME_MODULE: Final[str] = "rt"

_BINARY_OPS: Final[dict[str, type[ast.operator]]] = {
    "+": ast.Add,
    "-": ast.Sub,
    "*": ast.Mult,
    "/": ast.Div,
    "^": ast.Pow,
    "**": ast.Pow,
}
_UNARY_OPS: Final[dict[str, type[ast.unaryop]]] = {"-": ast.USub, "+": ast.UAdd}
_CHAINABLE: Final[frozenset[str]] = frozenset({"+", "*"})
# Binary-only numeric functions folded left to right when given more operands.
FOLDED_FUNCTIONS: Final[frozenset[str]] = frozenset({"min", "max"})

# Operator names resolved against the numeric backend module.
NUMERIC_FUNCTIONS: Final[dict[str, str]] = {
    "sin": "sin",
    "cos": "cos",
    "tan": "tan",
    "asin": "arcsin",
    "acos": "arccos",
    "atan": "arctan",
    "atan2": "arctan2",
    "sinh": "sinh",
    "cosh": "cosh",
    "tanh": "tanh",
    "exp": "exp",
    "log": "log",
    "log10": "log10",
    "sqrt": "sqrt",
    "abs": "abs",
    "sign": "sign",
    "floor": "floor",
    "ceil": "ceil",
    "min": "minimum",
    "max": "maximum",
}

_IDENT_UNSAFE = re.compile(r"[^0-9A-Za-z_]")


class NameFactory:
    """Fresh identifiers for one build call: reserved prefix plus a counter."""

    def __init__(self, prefix: str = RESERVED_PREFIX) -> None:
        self.prefix = prefix
        self._counter = itertools.count(1)

    def fresh(self, hint: str = "tmp") -> str:
        safe = _IDENT_UNSAFE.sub("_", hint) or "tmp"
        return f"{self.prefix}{safe}_{next(self._counter)}"


@dataclass(frozen=True)
class Binding:
    local: str
    source: ast.expr
    symbol: object


def _load(name: str) -> ast.Name:
    return ast.Name(id=name, ctx=ast.Load())


def _store(name: str) -> ast.Name:
    return ast.Name(id=name, ctx=ast.Store())


def _numeric(attr: str) -> ast.expr:
    return ast.Attribute(value=_load(NUMERIC_MODULE), attr=attr, ctx=ast.Load())


class ArgumentBinder:
    """Maps every scalar element of the call arguments to a fresh local name."""

    def __init__(self, args: Sequence[object], names: NameFactory) -> None:
        self.names = names
        self.arg_names: tuple[str, ...] = tuple(names.fresh("arg") for _ in args)
        self.container_lengths: dict[str, int] = {}
        self.bindings: list[Binding] = []
        self._locals: dict[tuple[type, str], str] = {}

        for position, (arg_name, arg) in enumerate(zip(self.arg_names, args, strict=True)):
            if isinstance(arg, SYMBOL_TYPES):
                self._bind(arg, _load(arg_name))
                continue
            if isinstance(arg, (list, tuple)):
                if not arg:
                    raise MalformedArgumentError(f"argument {position} is an empty container")
                for i, item in enumerate(arg):
                    if not isinstance(item, SYMBOL_TYPES):
                        raise MalformedArgumentError(
                            f"argument {position}[{i}] must be a Variable or Parameter, got {type(item).__name__}"
                        )
                    source = ast.Subscript(value=_load(arg_name), slice=ast.Constant(i), ctx=ast.Load())
                    self._bind(item, source)
                self.container_lengths[arg_name] = len(arg)
                continue
            raise MalformedArgumentError(
                f"argument {position} must be a symbol or a sequence of symbols, got {type(arg).__name__}"
            )

    def _bind(self, symbol, source: ast.expr) -> None:
        local = self.names.fresh(symbol.name)
        self.bindings.append(Binding(local=local, source=source, symbol=symbol))
        self._locals.setdefault((type(symbol), symbol.name), local)

    def resolve(self, symbol) -> str:
        local = self._locals.get((type(symbol), symbol.name))
        if local is None:
            raise UnresolvedSymbolError(symbol.name, searched=("call arguments",))
        return local

    def prologue(self) -> list[ast.stmt]:
        """Single destructuring assignment of all bindings from the call parameters."""
        if not self.bindings:
            return []
        target = ast.Tuple(elts=[_store(b.local) for b in self.bindings], ctx=ast.Store())
        value = ast.Tuple(elts=[b.source for b in self.bindings], ctx=ast.Load())
        return [ast.Assign(targets=[target], value=value)]

    def bounds_checks(self) -> list[ast.stmt]:
        checks: list[ast.stmt] = []
        for arg_name, length in self.container_lengths.items():
            call = ast.Call(
                func=ast.Attribute(value=_load(RUNTIME_MODULE), attr="check_length", ctx=ast.Load()),
                args=[_load(arg_name), ast.Constant(length), ast.Constant(arg_name)],
                keywords=[],
            )
            checks.append(ast.Expr(value=call))
        return checks


def _literal(value: object) -> ast.expr:
    if hasattr(value, "item") and type(value) not in (int, float, complex):
        value = value.item()
    if isinstance(value, bool) or not isinstance(value, Numeric):
        raise MalformedExpressionError(f"constant must be numeric, got {type(value).__name__}")
    if isinstance(value, (int, float)) and math.copysign(1, value) < 0:
        return ast.UnaryOp(op=ast.USub(), operand=ast.Constant(-value))
    return ast.Constant(value)


class Lowerer:
    """Pure recursive transform from expression nodes to Python expressions."""

    def __init__(
        self,
        binder: ArgumentBinder,
        *,
        conversion_function: Callable[[object], object] | None = None,
    ) -> None:
        self.binder = binder
        self.conversion_function = conversion_function

    def lower(self, value: object) -> ast.expr:
        """Lower one output element, applying the conversion function first."""
        if self.conversion_function is not None:
            value = self.conversion_function(value)
        if isinstance(value, Numeric) and not isinstance(value, bool):
            return _literal(value)
        if not is_expr(value):
            raise MalformedExpressionError(f"output element of type {type(value).__name__} is not an expression")
        return self.lower_expr(value)

    def lower_expr(self, expr) -> ast.expr:
        if isinstance(expr, Constant):
            return _literal(expr.value)

        if isinstance(expr, (Variable, Parameter)):
            return _load(self.binder.resolve(expr))

        if isinstance(expr, Derivative):
            raise MalformedExpressionError(
                f"derivative of {expr.variable.name!r} cannot be lowered into a native kernel"
            )

        if isinstance(expr, Call):
            return self._lower_call(expr.op, [self.lower_expr(arg) for arg in expr.args])

        raise MalformedExpressionError(f"unsupported node type {type(expr).__name__}")

    def _lower_call(self, op: str, args: list[ast.expr]) -> ast.expr:
        if len(args) == 1 and op in _UNARY_OPS:
            return ast.UnaryOp(op=_UNARY_OPS[op](), operand=args[0])

        if op in _BINARY_OPS and (len(args) == 2 or (op in _CHAINABLE and len(args) > 2)):
            node = args[0]
            for right in args[1:]:
                node = ast.BinOp(left=node, op=_BINARY_OPS[op](), right=right)
            return node

        if op in FOLDED_FUNCTIONS:
            if len(args) < 2:
                raise MalformedExpressionError(f"{op!r} needs at least two arguments, got {len(args)}")
            node = args[0]
            for right in args[1:]:
                node = ast.Call(func=_numeric(NUMERIC_FUNCTIONS[op]), args=[node, right], keywords=[])
            return node

        if op in NUMERIC_FUNCTIONS:
            func: ast.expr = _numeric(NUMERIC_FUNCTIONS[op])
        elif op.isidentifier():
            func = _load(op)
        else:
            raise MalformedExpressionError(f"operator {op!r} with {len(args)} arguments has no Python form")
        return ast.Call(func=func, args=args, keywords=[])


def is_literal_zero(node: ast.expr) -> bool:
    """Syntactic zero check used by skip-zero assembly."""
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.USub, ast.UAdd)):
        node = node.operand
    if not isinstance(node, ast.Constant):
        return False
    value = node.value
    return not isinstance(value, bool) and isinstance(value, Numeric) and value == 0
