"""symkern public API."""

from .build import BuiltKernels, build_function
from .errors import (
    KernelBoundsError,
    MalformedArgumentError,
    MalformedExpressionError,
    SchedulerUnavailableError,
    SignatureMismatchError,
    SymkernError,
    UnresolvedSymbolError,
    UnsupportedTargetError,
    WorkerFailureError,
)
from .expr import (
    Call,
    Constant,
    Derivative,
    Equation,
    Parameter,
    SparseExprMatrix,
    Variable,
    call,
    parameters,
    variables,
)
from .numbering import numbered_expr
from .options import BuildOptions, Target
from .parallel import Distributed, Serial, TaskGraph, Threaded, partition
from .runtime import (
    FunctionRegistry,
    RuntimeFunction,
    build_and_inject,
    default_registry,
    inject_registered_functions,
    make_function,
    register_function,
    runtime_namespace,
)
from .shapes import OutputShape, ShapeKind, classify
from .targets import KernelSource, add_header, add_integrator_header

try:
    from .evaluate import evaluate
except ModuleNotFoundError as exc:
    if exc.name and exc.name.startswith("jax"):
        _jax_import_error = exc

        def evaluate(*_args, **_kwargs):
            raise ModuleNotFoundError(
                "jax is required for evaluate(). Install runtime deps first."
            ) from _jax_import_error

    else:
        raise

__all__ = [
    "BuildOptions",
    "BuiltKernels",
    "Call",
    "Constant",
    "Derivative",
    "Distributed",
    "Equation",
    "FunctionRegistry",
    "KernelBoundsError",
    "KernelSource",
    "MalformedArgumentError",
    "MalformedExpressionError",
    "OutputShape",
    "Parameter",
    "RuntimeFunction",
    "SchedulerUnavailableError",
    "Serial",
    "ShapeKind",
    "SignatureMismatchError",
    "SparseExprMatrix",
    "SymkernError",
    "Target",
    "TaskGraph",
    "Threaded",
    "UnresolvedSymbolError",
    "UnsupportedTargetError",
    "Variable",
    "WorkerFailureError",
    "add_header",
    "add_integrator_header",
    "build_and_inject",
    "build_function",
    "call",
    "classify",
    "default_registry",
    "evaluate",
    "inject_registered_functions",
    "make_function",
    "numbered_expr",
    "parameters",
    "partition",
    "register_function",
    "runtime_namespace",
    "variables",
]
