"""Indexed numbering pass: symbols resolved to flat array slots, rendered as text."""

from __future__ import annotations

from dataclasses import dataclass, field
from numbers import Number as Numeric
from typing import Final, Sequence

from .errors import MalformedExpressionError, UnresolvedSymbolError
from .expr import Call, Constant, Derivative, Equation, Parameter, Variable, symbol_name

_ATOM: Final[int] = 100
_POWER: Final[int] = 4
_UNARY: Final[int] = 3
_PRODUCT: Final[int] = 2
_SUM: Final[int] = 1

_INFIX_PRECEDENCE: Final[dict[str, int]] = {"+": _SUM, "-": _SUM, "*": _PRODUCT, "/": _PRODUCT}
_NON_ASSOCIATIVE: Final[frozenset[str]] = frozenset({"-", "/"})
_FOLDED: Final[frozenset[str]] = frozenset({"min", "max"})


@dataclass(frozen=True)
class Dialect:
    """Operator spelling for one textual target."""

    name: str
    power_function: str | None = None
    functions: dict[str, str] = field(default_factory=dict)


C_DIALECT: Final[Dialect] = Dialect(
    name="c",
    power_function="pow",
    functions={"abs": "fabs", "min": "fmin", "max": "fmax", "ln": "log"},
)
STAN_DIALECT: Final[Dialect] = Dialect(name="stan", functions={"abs": "fabs", "min": "fmin", "max": "fmax"})
MATLAB_DIALECT: Final[Dialect] = Dialect(name="matlab")


@dataclass(frozen=True)
class NumberingScheme:
    """Fixed variable and parameter orderings plus the array names they map to."""

    variables: tuple[str, ...]
    parameters: tuple[str, ...]
    derivative_name: str = "derivative"
    state_name: str = "state"
    parameter_name: str = "parameter"
    index_base: int = 0

    @classmethod
    def build(
        cls,
        variables: Sequence[object],
        parameters: Sequence[object],
        **names,
    ) -> "NumberingScheme":
        return cls(
            variables=tuple(symbol_name(v) for v in variables),
            parameters=tuple(symbol_name(p) for p in parameters),
            **names,
        )

    def _access(self, array: str, position: int) -> str:
        return f"{array}[{position + self.index_base}]"

    def derivative_slot(self, variable: str) -> str:
        for i, name in enumerate(self.variables):
            if name == variable:
                return self._access(self.derivative_name, i)
        raise UnresolvedSymbolError(variable, searched=("variables",))

    def symbol_slot(self, symbol: str) -> str:
        for i, name in enumerate(self.variables):
            if name == symbol:
                return self._access(self.state_name, i)
        for i, name in enumerate(self.parameters):
            if name == symbol:
                return self._access(self.parameter_name, i)
        raise UnresolvedSymbolError(symbol, searched=("variables", "parameters"))


def _format_number(value: object) -> tuple[str, int]:
    if hasattr(value, "item") and type(value) not in (int, float, complex):
        value = value.item()
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedExpressionError(f"textual targets only render real constants, got {value!r}")
    text = repr(value)
    if text.startswith("-"):
        return text, _UNARY
    return text, _ATOM


def _wrap(text: str, precedence: int, minimum: int, *, strict: bool = False) -> str:
    if precedence < minimum or (strict and precedence == minimum):
        return f"({text})"
    return text


class NumberedRenderer:
    def __init__(self, scheme: NumberingScheme, dialect: Dialect) -> None:
        self.scheme = scheme
        self.dialect = dialect

    def render(self, expr: object) -> str:
        return self._render(expr)[0]

    def render_equation(self, equation: Equation) -> str:
        if isinstance(equation.lhs, Derivative):
            lhs = self.scheme.derivative_slot(equation.lhs.variable.name)
        else:
            lhs = self.render(equation.lhs)
        return f"{lhs} = {self.render(equation.rhs)}"

    def _render(self, expr: object) -> tuple[str, int]:
        if isinstance(expr, Numeric) and not isinstance(expr, bool):
            return _format_number(expr)

        if isinstance(expr, Constant):
            return _format_number(expr.value)

        if isinstance(expr, Derivative):
            return self.scheme.derivative_slot(expr.variable.name), _ATOM

        if isinstance(expr, (Variable, Parameter)):
            return self.scheme.symbol_slot(expr.name), _ATOM

        if isinstance(expr, Call):
            return self._render_call(expr)

        raise MalformedExpressionError(f"unsupported node type {type(expr).__name__}")

    def _render_call(self, expr: Call) -> tuple[str, int]:
        op = expr.op
        args = [self._render(arg) for arg in expr.args]

        if len(args) == 1 and op in {"-", "+"}:
            text, prec = args[0]
            return f"{op}{_wrap(text, prec, _UNARY, strict=True)}", _UNARY

        if op in _INFIX_PRECEDENCE and len(args) >= 2 and (len(args) == 2 or op in {"+", "*"}):
            prec = _INFIX_PRECEDENCE[op]
            text = _wrap(args[0][0], args[0][1], prec)
            for right, right_prec in args[1:]:
                text = f"{text} {op} {_wrap(right, right_prec, prec, strict=op in _NON_ASSOCIATIVE)}"
            return text, prec

        if op in {"^", "**"} and len(args) == 2:
            (base, base_prec), (exponent, exp_prec) = args
            if self.dialect.power_function is not None:
                return f"{self.dialect.power_function}({base}, {exponent})", _ATOM
            return f"{_wrap(base, base_prec, _POWER, strict=True)}^{_wrap(exponent, exp_prec, _POWER)}", _POWER

        if op in _FOLDED:
            if len(args) < 2:
                raise MalformedExpressionError(f"{op!r} needs at least two arguments, got {len(args)}")
            name = self.dialect.functions.get(op, op)
            text = args[0][0]
            for right, _ in args[1:]:
                text = f"{name}({text}, {right})"
            return text, _ATOM

        name = self.dialect.functions.get(op, op)
        return f"{name}({', '.join(text for text, _ in args)})", _ATOM


def numbered_expr(
    node: object,
    variables: Sequence[object],
    parameters: Sequence[object],
    *,
    dialect: Dialect = C_DIALECT,
    **names,
) -> str:
    """Render an expression or equation with every symbol addressed by array slot."""
    renderer = NumberedRenderer(NumberingScheme.build(variables, parameters, **names), dialect)
    if isinstance(node, Equation):
        return renderer.render_equation(node)
    return renderer.render(node)
