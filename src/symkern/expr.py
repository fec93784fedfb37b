"""Expression nodes, equations and symbolic sparse containers."""

from __future__ import annotations

from dataclasses import dataclass
from numbers import Number as Numeric
from typing import Union


class _Arithmetic:
    """Operator overloads so expression trees can be written as Python arithmetic."""

    def __add__(self, other):
        return Call("+", (self, as_expr(other)))

    def __radd__(self, other):
        return Call("+", (as_expr(other), self))

    def __sub__(self, other):
        return Call("-", (self, as_expr(other)))

    def __rsub__(self, other):
        return Call("-", (as_expr(other), self))

    def __mul__(self, other):
        return Call("*", (self, as_expr(other)))

    def __rmul__(self, other):
        return Call("*", (as_expr(other), self))

    def __truediv__(self, other):
        return Call("/", (self, as_expr(other)))

    def __rtruediv__(self, other):
        return Call("/", (as_expr(other), self))

    def __pow__(self, other):
        return Call("^", (self, as_expr(other)))

    def __rpow__(self, other):
        return Call("^", (as_expr(other), self))

    def __neg__(self):
        return Call("-", (self,))

    def __pos__(self):
        return self


@dataclass(frozen=True)
class Constant(_Arithmetic):
    value: Numeric


@dataclass(frozen=True)
class Variable(_Arithmetic):
    name: str


@dataclass(frozen=True)
class Parameter(_Arithmetic):
    name: str


@dataclass(frozen=True)
class Derivative(_Arithmetic):
    """Differential-operator marker applied to a single variable."""

    variable: Variable


@dataclass(frozen=True)
class Call(_Arithmetic):
    op: str
    args: tuple["Expr", ...]


@dataclass(frozen=True)
class Equation:
    lhs: "Expr"
    rhs: "Expr"


Expr = Union[Constant, Variable, Parameter, Derivative, Call]
Symbol = Union[Variable, Parameter]

EXPR_TYPES = (Constant, Variable, Parameter, Derivative, Call)
SYMBOL_TYPES = (Variable, Parameter)


def is_expr(value: object) -> bool:
    return isinstance(value, EXPR_TYPES)


def as_expr(value: object) -> Expr:
    if is_expr(value):
        return value  # type: ignore[return-value]
    if isinstance(value, Numeric) and not isinstance(value, bool):
        return Constant(value)
    raise TypeError(f"cannot use {type(value).__name__} as an expression")


def call(op: str, *args: object) -> Call:
    return Call(op, tuple(as_expr(arg) for arg in args))


def variables(*names: str) -> list[Variable]:
    return [Variable(name) for name in names]


def parameters(*names: str) -> list[Parameter]:
    return [Parameter(name) for name in names]


def symbol_name(symbol: object) -> str:
    if isinstance(symbol, SYMBOL_TYPES):
        return symbol.name
    if isinstance(symbol, str):
        return symbol
    raise TypeError(f"{type(symbol).__name__} is not a symbol")


@dataclass(frozen=True)
class SparseExprMatrix:
    """Compressed-sparse-column matrix whose stored values are expressions.

    `colptr` and `rowval` are zero-based and follow the layout of
    `scipy.sparse.csc_matrix.indptr` and `.indices`.
    """

    shape: tuple[int, int]
    colptr: tuple[int, ...]
    rowval: tuple[int, ...]
    nzval: tuple[object, ...]

    def __post_init__(self) -> None:
        rows, cols = self.shape
        if len(self.colptr) != cols + 1:
            raise ValueError(f"colptr must have {cols + 1} entries, got {len(self.colptr)}")
        if self.colptr[0] != 0 or self.colptr[-1] != len(self.nzval):
            raise ValueError("colptr must start at 0 and end at the number of stored values")
        if len(self.rowval) != len(self.nzval):
            raise ValueError("rowval and nzval must have equal length")
        if any(r < 0 or r >= rows for r in self.rowval):
            raise ValueError("rowval entries must lie inside the row range")

    @property
    def nnz(self) -> int:
        return len(self.nzval)

    @classmethod
    def from_dense(cls, rows: list[list[object]]) -> "SparseExprMatrix":
        """Store every entry that is not the literal zero, column by column."""
        nrows = len(rows)
        ncols = len(rows[0]) if rows else 0
        colptr = [0]
        rowval: list[int] = []
        nzval: list[object] = []
        for j in range(ncols):
            for i in range(nrows):
                entry = rows[i][j]
                if isinstance(entry, Numeric) and not isinstance(entry, bool) and entry == 0:
                    continue
                if isinstance(entry, Constant) and entry.value == 0:
                    continue
                rowval.append(i)
                nzval.append(entry)
            colptr.append(len(nzval))
        return cls(shape=(nrows, ncols), colptr=tuple(colptr), rowval=tuple(rowval), nzval=tuple(nzval))
