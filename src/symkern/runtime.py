"""Runtime support for generated kernels and compiled-unit construction."""

from __future__ import annotations

import ast
import copy
import linecache
import logging
import sys
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass, field
from types import ModuleType
from typing import Callable, Iterable, Mapping, MutableMapping

import numpy as np
import scipy.sparse as sp

from .errors import KernelBoundsError, SignatureMismatchError, WorkerFailureError
from .lowering import DENSE_MODULE, NUMERIC_MODULE, RUNTIME_MODULE, SPARSE_MODULE

logger = logging.getLogger(__name__)

REGISTRY_NAME = "registered"
POOL_NAME = "pool"
SCHEDULER_NAME = "scheduler"


def numeric_module(backend: str) -> ModuleType:
    if backend == "jax":
        import jax.numpy as jnp

        return jnp
    return np


# -- helpers called from generated code -------------------------------------


def check_length(value, expected: int, where: str) -> None:
    if len(value) < expected:
        raise KernelBoundsError(f"{where} has length {len(value)}, kernel reads {expected} elements")


def run_tasks(tasks: list[Callable[[], None]]) -> None:
    """Run independent write tasks concurrently and join before returning."""
    if not tasks:
        return
    with ThreadPoolExecutor(max_workers=len(tasks)) as executor:
        futures = [executor.submit(task) for task in tasks]
    for future in futures:
        future.result()


def remote_evaluate(
    source: str,
    bindings: dict[str, object],
    backend: str,
    functions: Mapping[str, Callable] | None = None,
) -> list[object]:
    """Worker-side evaluation of one chunk of right-hand sides.

    `functions` holds the registered callables the chunk references; the
    chunk source reaches them as `registered[name]`.
    """
    namespace = {
        NUMERIC_MODULE: numeric_module(backend),
        DENSE_MODULE: np,
        REGISTRY_NAME: dict(functions or {}),
        "__builtins__": {},
    }
    return list(eval(compile(source, "<symkern-chunk>", "eval"), namespace, dict(bindings)))


def fetch(future, worker: int) -> list[object]:
    try:
        return future.result()
    except Exception as err:
        raise WorkerFailureError(worker=worker, message=str(err) or type(err).__name__) from err


def concat(*parts: object) -> list[object]:
    return list(parts)


class LazyProcessPool:
    """Process pool created on first submit with a fixed worker count.

    Worker processes live until `shutdown()`; `BuiltKernels.close()` calls it.
    """

    def __init__(self, workers: int) -> None:
        self.workers = workers
        self._executor: ProcessPoolExecutor | None = None

    def submit(self, fn, *args):
        if self._executor is None:
            self._executor = ProcessPoolExecutor(max_workers=self.workers)
        return self._executor.submit(fn, *args)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown()
            self._executor = None


# -- registered functions ----------------------------------------------------


class FunctionRegistry(MutableMapping[str, Callable]):
    """Named callables that generated code may call by operator name."""

    def __init__(self, functions: Mapping[str, Callable] | None = None) -> None:
        self._functions: dict[str, Callable] = dict(functions or {})

    def register(self, fn: Callable | None = None, *, name: str | None = None):
        def decorator(func: Callable) -> Callable:
            self._functions[name or func.__name__] = func
            return func

        if fn is None:
            return decorator
        return decorator(fn)

    def __getitem__(self, key: str) -> Callable:
        return self._functions[key]

    def __setitem__(self, key: str, value: Callable) -> None:
        self._functions[key] = value

    def __delitem__(self, key: str) -> None:
        del self._functions[key]

    def __iter__(self):
        return iter(self._functions)

    def __len__(self) -> int:
        return len(self._functions)


default_registry = FunctionRegistry()
register_function = default_registry.register


class _InjectRegistered(ast.NodeTransformer):
    def __init__(self, names: frozenset[str]) -> None:
        self.names = names

    def visit_Call(self, node: ast.Call) -> ast.AST:
        self.generic_visit(node)
        if isinstance(node.func, ast.Name) and node.func.id in self.names:
            node.func = ast.Subscript(
                value=ast.Name(id=REGISTRY_NAME, ctx=ast.Load()),
                slice=ast.Constant(node.func.id),
                ctx=ast.Load(),
            )
        return node


def inject_registered_functions(registry: Mapping[str, Callable]) -> Callable[[ast.AST], ast.AST]:
    """Return a pure IR transform routing calls of registered names through the registry.

    Applies to a whole function or to a single expression tree.
    """
    names = frozenset(registry)

    def transform(tree: ast.AST) -> ast.AST:
        out = _InjectRegistered(names).visit(copy.deepcopy(tree))
        return ast.fix_missing_locations(out)

    return transform


def registered_calls(nodes: Iterable[ast.AST], registry: Mapping[str, Callable]) -> list[str]:
    """Registered names called anywhere in `nodes`, in first-use order."""
    seen: dict[str, None] = {}
    for node in nodes:
        for sub in ast.walk(node):
            if isinstance(sub, ast.Call) and isinstance(sub.func, ast.Name) and sub.func.id in registry:
                seen.setdefault(sub.func.id, None)
    return list(seen)


# -- namespaces and compiled units ------------------------------------------


def runtime_namespace(
    *,
    backend: str = "numpy",
    registry: Mapping[str, Callable] | None = None,
    pool: object | None = None,
    scheduler: object | None = None,
) -> dict[str, object]:
    """Globals a generated kernel's source text must be executed in."""
    namespace: dict[str, object] = {
        NUMERIC_MODULE: numeric_module(backend),
        DENSE_MODULE: np,
        SPARSE_MODULE: sp,
        RUNTIME_MODULE: sys.modules[__name__],
        REGISTRY_NAME: registry if registry is not None else default_registry,
    }
    if pool is not None:
        namespace[POOL_NAME] = pool
    if scheduler is not None:
        namespace[SCHEDULER_NAME] = scheduler
    return namespace


def _signature(tree: ast.FunctionDef) -> tuple[str, tuple[str, ...]]:
    return tree.name, tuple(arg.arg for arg in tree.args.args)


@dataclass(frozen=True)
class RuntimeFunction:
    """Invocable unit built from a function IR; never mutated after construction."""

    tree: ast.FunctionDef
    namespace: Mapping[str, object]
    retain_line_info: bool = False
    _fn: Callable = field(init=False, repr=False, compare=False)
    _jit_cache: dict[tuple[int, ...], object] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        module = ast.fix_missing_locations(ast.Module(body=[copy.deepcopy(self.tree)], type_ignores=[]))
        filename = f"<symkern:{self.tree.name}>"
        if self.retain_line_info:
            source = ast.unparse(module)
            linecache.cache[filename] = (len(source), None, source.splitlines(True), filename)
            module = ast.parse(source, filename=filename)
        scope = dict(self.namespace)
        exec(compile(module, filename, "exec"), scope)
        object.__setattr__(self, "_fn", scope[self.tree.name])

    @property
    def name(self) -> str:
        return self.tree.name

    @property
    def arg_names(self) -> tuple[str, ...]:
        return _signature(self.tree)[1]

    @property
    def source(self) -> str:
        return ast.unparse(self.tree)

    def __call__(self, *args):
        return self._fn(*args)

    def body_ir(self) -> ast.FunctionDef:
        """Extract a detached copy of the function IR."""
        return copy.deepcopy(self.tree)

    def rebuild(self, tree: ast.FunctionDef) -> "RuntimeFunction":
        """Construct a new unit from a transformed IR with identical signature metadata."""
        if _signature(tree) != _signature(self.tree):
            raise SignatureMismatchError(f"rebuilt signature {_signature(tree)} differs from {_signature(self.tree)}")
        logger.debug("rebuilding compiled unit %s", self.tree.name)
        return RuntimeFunction(tree=tree, namespace=self.namespace, retain_line_info=self.retain_line_info)

    def jit(self, *, static_argnums: tuple[int, ...] = ()):
        """Return a JIT-compiled callable; meaningful for out-of-place kernels on the jax backend."""
        key = tuple(static_argnums)
        cached = self._jit_cache.get(key)
        if cached is not None:
            return cached
        import jax

        jitted = jax.jit(self._fn, static_argnums=static_argnums)
        self._jit_cache[key] = jitted
        return jitted


def make_function(tree: ast.FunctionDef, namespace: Mapping[str, object], *, retain_line_info: bool = False) -> RuntimeFunction:
    return RuntimeFunction(tree=tree, namespace=namespace, retain_line_info=retain_line_info)


def build_and_inject(
    tree: ast.FunctionDef,
    namespace: Mapping[str, object],
    transform: Callable[[ast.FunctionDef], ast.FunctionDef],
    *,
    retain_line_info: bool = False,
) -> RuntimeFunction:
    """Construct, extract the body IR, transform it and rebuild the unit."""
    unit = make_function(tree, namespace, retain_line_info=retain_line_info)
    return unit.rebuild(transform(unit.body_ir()))
