"""In-place statement assembly and out-of-place construction expressions."""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from .errors import MalformedArgumentError
from .lowering import DENSE_MODULE, NUMERIC_MODULE, SPARSE_MODULE, is_literal_zero
from .shapes import IndexPath, Nonzero, OutputShape, ShapeKind, iter_elements

logger = logging.getLogger(__name__)

Lower = Callable[[object], ast.expr]


@dataclass(frozen=True)
class Element:
    """One lowered structural element of the output, in statement order."""

    slot: int
    path: IndexPath
    rhs: ast.expr


@dataclass(frozen=True)
class Statement:
    path: IndexPath
    rhs: ast.expr
    slot: int

    def target(self, out: str) -> ast.expr:
        node: ast.expr = ast.Name(id=out, ctx=ast.Load())
        for step in self.path:
            if isinstance(step, Nonzero):
                node = ast.Attribute(value=node, attr="data", ctx=ast.Load())
                index: ast.expr = ast.Constant(step.slot)
            elif isinstance(step, tuple):
                index = ast.Tuple(elts=[ast.Constant(i) for i in step], ctx=ast.Load())
            else:
                index = ast.Constant(step)
            node = ast.Subscript(value=node, slice=index, ctx=ast.Load())
        node.ctx = ast.Store()
        return node

    def to_ast(self, out: str, rhs: ast.expr | None = None) -> ast.stmt:
        return ast.Assign(targets=[self.target(out)], value=rhs if rhs is not None else self.rhs)


def lower_elements(value: object, shape: OutputShape, lower: Lower) -> list[Element]:
    return [Element(slot=i, path=path, rhs=lower(item)) for i, (path, item) in enumerate(iter_elements(value, shape))]


def _remap_path(path: IndexPath, remap: Sequence[int]) -> IndexPath:
    (index,) = path
    if not isinstance(index, int) or index >= len(remap):
        raise MalformedArgumentError(f"output_index_remap has no entry for output index {index}")
    return (int(remap[index]),)


def in_place_statements(
    elements: Sequence[Element],
    shape: OutputShape,
    *,
    skip_zero: bool = False,
    output_index_remap: Sequence[int] | None = None,
) -> list[Statement]:
    """One write per structural element; literal-zero writes dropped under skip_zero."""
    remap = output_index_remap if shape.kind in {ShapeKind.VECTOR, ShapeKind.TUPLE} else None
    statements: list[Statement] = []
    for element in elements:
        if skip_zero and is_literal_zero(element.rhs):
            continue
        path = element.path if remap is None else _remap_path(element.path, remap)
        statements.append(Statement(path=path, rhs=element.rhs, slot=element.slot))
    logger.debug(
        "assembled %d in-place statements for %s output (%d elements)",
        len(statements),
        shape.kind.value,
        len(elements),
    )
    return statements


def _attr(module: str, name: str) -> ast.expr:
    return ast.Attribute(value=ast.Name(id=module, ctx=ast.Load()), attr=name, ctx=ast.Load())


def _call(func: ast.expr, *args: ast.expr, **keywords: ast.expr) -> ast.expr:
    return ast.Call(func=func, args=list(args), keywords=[ast.keyword(arg=k, value=v) for k, v in keywords.items()])


def _ints(values: Sequence[int]) -> ast.expr:
    return ast.List(elts=[ast.Constant(int(v)) for v in values], ctx=ast.Load())


def _dims(values: Sequence[int]) -> ast.expr:
    return ast.Tuple(elts=[ast.Constant(int(v)) for v in values], ctx=ast.Load())


def _as_array(items: list[ast.expr], module: str = NUMERIC_MODULE) -> ast.expr:
    return _call(_attr(module, "asarray"), ast.List(elts=items, ctx=ast.Load()))


def out_of_place_expr(value: object, shape: OutputShape, lower: Lower) -> ast.expr:
    """Single construction expression for the whole output."""
    kind = shape.kind

    if kind == ShapeKind.SCALAR:
        return lower(value.item() if hasattr(value, "ndim") else value)

    if kind == ShapeKind.TUPLE:
        return ast.Tuple(elts=[lower(item) for item in value], ctx=ast.Load())  # type: ignore[union-attr]

    if kind == ShapeKind.VECTOR:
        return _as_array([lower(item) for item in value])  # type: ignore[union-attr]

    if kind == ShapeKind.MATRIX:
        rows, cols = shape.dims
        row_lists = [
            ast.List(elts=[lower(value[i, j]) for j in range(cols)], ctx=ast.Load())  # type: ignore[index]
            for i in range(rows)
        ]
        return _as_array(row_lists)

    if kind == ShapeKind.NDARRAY:
        flat = [lower(item) for _, item in iter_elements(value, shape)]
        return _call(_attr(NUMERIC_MODULE, "reshape"), _as_array(flat), _dims(shape.dims))

    if kind == ShapeKind.SPARSE:
        data = _as_array([lower(item) for item in value.nzval], module=DENSE_MODULE)  # type: ignore[union-attr]
        parts = ast.Tuple(elts=[data, _ints(shape.rowval), _ints(shape.colptr)], ctx=ast.Load())
        return _call(_attr(SPARSE_MODULE, "csc_matrix"), parts, shape=_dims(shape.dims))

    if shape.is_nested:
        items = [out_of_place_expr(item, inner, lower) for item, inner in zip(value, shape.inner, strict=True)]  # type: ignore[arg-type]
        return ast.List(elts=items, ctx=ast.Load())

    raise MalformedArgumentError(f"no construction form for shape kind {kind.value!r}")
