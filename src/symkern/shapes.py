"""Output shape classification and structural element enumeration."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator

import numpy as np

from .expr import SparseExprMatrix


class ShapeKind(str, Enum):
    SCALAR = "scalar"
    TUPLE = "tuple"
    VECTOR = "vector"
    MATRIX = "matrix"
    NDARRAY = "ndarray"
    SPARSE = "sparse"
    ARRAY_OF_MATRICES = "array_of_matrices"
    ARRAY_OF_SPARSE = "array_of_sparse"
    ARRAY_OF_ARRAYS_OF_MATRICES = "array_of_arrays_of_matrices"
    ARRAY_OF_ARRAYS_OF_SPARSE = "array_of_arrays_of_sparse"


NESTED_KINDS = frozenset(
    {
        ShapeKind.ARRAY_OF_MATRICES,
        ShapeKind.ARRAY_OF_SPARSE,
        ShapeKind.ARRAY_OF_ARRAYS_OF_MATRICES,
        ShapeKind.ARRAY_OF_ARRAYS_OF_SPARSE,
    }
)


@dataclass(frozen=True)
class Nonzero:
    """Path step addressing a stored-value slot of a sparse container."""

    slot: int


PathStep = int | tuple[int, ...] | Nonzero
IndexPath = tuple[PathStep, ...]


@dataclass(frozen=True)
class OutputShape:
    """Shape descriptor consumed by every downstream assembly stage.

    Dense kinds carry `dims`; `SPARSE` carries `dims=(rows, cols)` plus the
    structural arrays; nested kinds carry the outer length in `dims` and one
    descriptor per outer element in `inner`.
    """

    kind: ShapeKind
    dims: tuple[int, ...] = ()
    colptr: tuple[int, ...] = ()
    rowval: tuple[int, ...] = ()
    inner: tuple["OutputShape", ...] = ()

    @property
    def nnz(self) -> int:
        return len(self.rowval)

    @property
    def is_nested(self) -> bool:
        return self.kind in NESTED_KINDS


def _is_dense_array(value: object) -> bool:
    return isinstance(value, (list, tuple, np.ndarray)) and not (isinstance(value, np.ndarray) and value.ndim == 0)


def _is_matrix(value: object) -> bool:
    return isinstance(value, np.ndarray) and value.ndim == 2


def _is_outer(value: object) -> bool:
    return isinstance(value, list) and len(value) > 0


def is_array_of_sparse(value: object) -> bool:
    return _is_outer(value) and all(isinstance(item, SparseExprMatrix) for item in value)


def is_array_of_matrices(value: object) -> bool:
    return _is_outer(value) and all(_is_dense_array(item) for item in value)


def is_array_of_arrays_of_sparse(value: object) -> bool:
    return _is_outer(value) and all(is_array_of_sparse(item) for item in value)


def is_array_of_arrays_of_matrices(value: object) -> bool:
    return _is_outer(value) and all(_is_outer(item) and all(_is_matrix(sub) for sub in item) for item in value)


def _dense_shape(value: object) -> OutputShape:
    if isinstance(value, tuple):
        return OutputShape(ShapeKind.TUPLE, dims=(len(value),))
    if isinstance(value, np.ndarray):
        if value.ndim == 0:
            return OutputShape(ShapeKind.SCALAR)
        if value.ndim == 1:
            return OutputShape(ShapeKind.VECTOR, dims=value.shape)
        if value.ndim == 2:
            return OutputShape(ShapeKind.MATRIX, dims=value.shape)
        return OutputShape(ShapeKind.NDARRAY, dims=value.shape)
    if isinstance(value, list):
        return OutputShape(ShapeKind.VECTOR, dims=(len(value),))
    return OutputShape(ShapeKind.SCALAR)


def _sparse_shape(value: SparseExprMatrix) -> OutputShape:
    return OutputShape(ShapeKind.SPARSE, dims=tuple(value.shape), colptr=tuple(value.colptr), rowval=tuple(value.rowval))


def classify(value: object) -> OutputShape:
    """Classify an output value; first match wins, mixes degrade to flat vectors."""
    if is_array_of_arrays_of_sparse(value):
        inner = tuple(
            OutputShape(ShapeKind.ARRAY_OF_SPARSE, dims=(len(item),), inner=tuple(_sparse_shape(s) for s in item))
            for item in value
        )
        return OutputShape(ShapeKind.ARRAY_OF_ARRAYS_OF_SPARSE, dims=(len(value),), inner=inner)
    if is_array_of_arrays_of_matrices(value):
        inner = tuple(
            OutputShape(ShapeKind.ARRAY_OF_MATRICES, dims=(len(item),), inner=tuple(_dense_shape(m) for m in item))
            for item in value
        )
        return OutputShape(ShapeKind.ARRAY_OF_ARRAYS_OF_MATRICES, dims=(len(value),), inner=inner)
    if is_array_of_sparse(value):
        return OutputShape(ShapeKind.ARRAY_OF_SPARSE, dims=(len(value),), inner=tuple(_sparse_shape(s) for s in value))
    if is_array_of_matrices(value):
        return OutputShape(ShapeKind.ARRAY_OF_MATRICES, dims=(len(value),), inner=tuple(_dense_shape(m) for m in value))
    if isinstance(value, SparseExprMatrix):
        return _sparse_shape(value)
    return _dense_shape(value)


def _dense_indices(shape: OutputShape) -> Iterator[PathStep]:
    if len(shape.dims) == 1:
        yield from range(shape.dims[0])
        return
    yield from np.ndindex(*shape.dims)


def iter_elements(value: object, shape: OutputShape) -> Iterator[tuple[IndexPath, object]]:
    """Yield `(path, element)` once per structural element, in statement order."""
    kind = shape.kind
    if kind == ShapeKind.SCALAR:
        yield (), value.item() if isinstance(value, np.ndarray) else value
        return
    if kind == ShapeKind.SPARSE:
        for slot, item in enumerate(value.nzval):  # type: ignore[union-attr]
            yield (Nonzero(slot),), item
        return
    if shape.is_nested:
        for i, (item, inner) in enumerate(zip(value, shape.inner, strict=True)):  # type: ignore[arg-type]
            for path, element in iter_elements(item, inner):
                yield (i, *path), element
        return
    for index in _dense_indices(shape):
        element = value[index]  # type: ignore[index]
        if isinstance(index, tuple):
            index = tuple(int(i) for i in index)
        yield (index,), element


def flat_elements(value: object, shape: OutputShape) -> list[object]:
    return [element for _, element in iter_elements(value, shape)]
