"""Direct tree-walking evaluation of expressions with `jax.numpy`.

Shares no code with lowering or generated kernels, so it serves as an
independent reference for what a kernel should compute.
"""

from __future__ import annotations

from numbers import Number as Numeric
from typing import Callable, Final, Mapping

import jax.numpy as jnp

from .errors import MalformedExpressionError, UnresolvedSymbolError
from .expr import Call, Constant, Derivative, Parameter, Variable

_BASE_UNARY_OPS: Final[dict[str, Callable[[jnp.ndarray], jnp.ndarray]]] = {
    "-": lambda x: -x,
    "+": lambda x: x,
    "sin": jnp.sin,
    "cos": jnp.cos,
    "tan": jnp.tan,
    "asin": jnp.arcsin,
    "acos": jnp.arccos,
    "atan": jnp.arctan,
    "sinh": jnp.sinh,
    "cosh": jnp.cosh,
    "tanh": jnp.tanh,
    "exp": jnp.exp,
    "log": jnp.log,
    "log10": jnp.log10,
    "sqrt": jnp.sqrt,
    "abs": jnp.abs,
    "sign": jnp.sign,
    "floor": jnp.floor,
    "ceil": jnp.ceil,
}

_BASE_BINARY_OPS: Final[dict[str, Callable[[jnp.ndarray, jnp.ndarray], jnp.ndarray]]] = {
    "+": jnp.add,
    "-": jnp.subtract,
    "*": jnp.multiply,
    "/": jnp.true_divide,
    "^": jnp.power,
    "**": jnp.power,
    "min": jnp.minimum,
    "max": jnp.maximum,
    "atan2": jnp.arctan2,
}

_FOLDABLE: Final[frozenset[str]] = frozenset({"+", "*", "min", "max"})


def evaluate(expr: object, env: Mapping[str, object], functions: Mapping[str, Callable] | None = None):
    """Evaluate `expr` with symbol values looked up by name in `env`."""
    if isinstance(expr, Numeric) and not isinstance(expr, bool):
        return jnp.asarray(expr)

    if isinstance(expr, Constant):
        return jnp.asarray(expr.value)

    if isinstance(expr, (Variable, Parameter)):
        if expr.name not in env:
            raise UnresolvedSymbolError(expr.name, searched=("environment",))
        return jnp.asarray(env[expr.name])

    if isinstance(expr, Derivative):
        raise MalformedExpressionError(f"cannot evaluate derivative of {expr.variable.name!r} directly")

    if isinstance(expr, Call):
        args = [evaluate(arg, env, functions) for arg in expr.args]
        op = expr.op
        if len(args) == 1 and op in _BASE_UNARY_OPS:
            return _BASE_UNARY_OPS[op](args[0])
        if op in _BASE_BINARY_OPS and len(args) == 2:
            return _BASE_BINARY_OPS[op](args[0], args[1])
        if op in _FOLDABLE and len(args) > 2:
            result = args[0]
            for arg in args[1:]:
                result = _BASE_BINARY_OPS[op](result, arg)
            return result
        if functions is not None and op in functions:
            return functions[op](*args)
        raise MalformedExpressionError(f"no evaluation rule for {op!r} with {len(args)} arguments")

    raise MalformedExpressionError(f"unsupported node type {type(expr).__name__}")
