"""Structured error types for kernel generation and generated-kernel runtime."""

from __future__ import annotations

from dataclasses import dataclass


class SymkernError(Exception):
    """Base class for structured symkern errors."""


class MalformedArgumentError(SymkernError, ValueError):
    """Call arguments or options violate a precondition of the build."""


class MalformedExpressionError(SymkernError, TypeError):
    """A value in the output tree cannot be lowered as an expression."""


@dataclass(eq=False)
class UnresolvedSymbolError(SymkernError):
    """A symbol reference has no binding or numbered slot."""

    symbol: str
    searched: tuple[str, ...] = ()

    def __str__(self) -> str:
        where = ""
        if self.searched:
            where = f" (searched {', '.join(self.searched)})"
        return f"Unresolved symbol {self.symbol!r}{where}"


class SchedulerUnavailableError(SymkernError):
    """Task-graph generation was requested without a scheduler collaborator."""


@dataclass(eq=False)
class WorkerFailureError(SymkernError):
    """A distributed worker failed while evaluating its chunk."""

    worker: int
    message: str

    def __str__(self) -> str:
        return f"worker {self.worker} failed: {self.message}"


class KernelBoundsError(SymkernError, IndexError):
    """Bounds-checked kernel received a container shorter than its bindings."""


class SignatureMismatchError(SymkernError):
    """Rebuilt compiled unit does not keep the original signature metadata."""


class UnsupportedTargetError(SymkernError):
    """Requested target cannot render the given input."""
