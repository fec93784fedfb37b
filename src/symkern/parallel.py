"""Parallel execution strategies for in-place kernels."""

from __future__ import annotations

import ast
import importlib
import importlib.util
import logging
import math
import pickle
import warnings
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence, TypeVar, Union

from .assemble import Element, Statement
from .errors import MalformedArgumentError, SchedulerUnavailableError
from .lowering import RESERVED_PREFIX, RUNTIME_MODULE, NameFactory
from .options import available_workers
from .runtime import (
    POOL_NAME,
    REGISTRY_NAME,
    SCHEDULER_NAME,
    LazyProcessPool,
    inject_registered_functions,
    registered_calls,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Serial:
    pass


@dataclass(frozen=True)
class Threaded:
    """`workers=None` uses every available worker."""

    workers: int | None = None

    def __post_init__(self) -> None:
        if self.workers is not None and self.workers < 1:
            raise MalformedArgumentError(f"Threaded needs at least one worker, got {self.workers}")

    @property
    def worker_count(self) -> int:
        return self.workers if self.workers is not None else available_workers()


@dataclass(frozen=True)
class Distributed:
    """`pool` must expose `submit(fn, *args) -> future`; defaults to a process pool."""

    workers: int
    pool: object | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise MalformedArgumentError(f"Distributed needs at least one worker, got {self.workers}")


@dataclass(frozen=True)
class TaskGraph:
    """`scheduler` must expose `delayed`; defaults to dask when importable."""

    scheduler: object | None = field(default=None, compare=False)


ParallelStrategy = Union[Serial, Threaded, Distributed, TaskGraph]


def resolve_parallel(value: object) -> ParallelStrategy:
    """Normalise the `parallel` option, mapping the legacy bool with a deprecation notice."""
    if value is None:
        return Serial()
    if isinstance(value, bool):
        message = "boolean parallel flag is deprecated; pass Serial() or Threaded() instead"
        warnings.warn(message, DeprecationWarning, stacklevel=3)
        logger.warning(message)
        return Threaded() if value else Serial()
    if isinstance(value, (Serial, Threaded, Distributed, TaskGraph)):
        return value
    raise MalformedArgumentError(f"unsupported parallel strategy {value!r}")


def resolve_scheduler(strategy: TaskGraph) -> object:
    """Locate the task-graph scheduler before any generation work starts."""
    if strategy.scheduler is not None:
        scheduler = strategy.scheduler
    elif importlib.util.find_spec("dask") is not None:
        scheduler = importlib.import_module("dask")
    else:
        raise SchedulerUnavailableError(
            "scheduler unavailable: TaskGraph needs dask installed or an explicit TaskGraph(scheduler=...)"
        )
    if not callable(getattr(scheduler, "delayed", None)):
        raise SchedulerUnavailableError("scheduler unavailable: collaborator does not expose delayed()")
    return scheduler


def partition(items: Sequence[T], k: int) -> list[list[T]]:
    """Split into `k` contiguous chunks of `ceil(len/k)`; trailing chunks may run short."""
    if k < 1:
        raise MalformedArgumentError(f"cannot partition into {k} chunks")
    size = math.ceil(len(items) / k)
    return [list(items[i * size : (i + 1) * size]) for i in range(k)]


def _load(name: str) -> ast.Name:
    return ast.Name(id=name, ctx=ast.Load())


def _runtime(attr: str) -> ast.expr:
    return ast.Attribute(value=_load(RUNTIME_MODULE), attr=attr, ctx=ast.Load())


def _call(func: ast.expr, *args: ast.expr) -> ast.Call:
    return ast.Call(func=func, args=list(args), keywords=[])


def _thunk(name: str, body: list[ast.stmt]) -> ast.FunctionDef:
    return ast.FunctionDef(
        name=name,
        args=ast.arguments(posonlyargs=[], args=[], vararg=None, kwonlyargs=[], kw_defaults=[], kwarg=None, defaults=[]),
        body=body,
        decorator_list=[],
        returns=None,
        type_params=[],
    )


def _read_slot(result: str, index: int) -> ast.expr:
    return ast.Subscript(value=_load(result), slice=ast.Constant(index), ctx=ast.Load())


def _registered(name: str) -> ast.expr:
    return ast.Subscript(value=_load(REGISTRY_NAME), slice=ast.Constant(name), ctx=ast.Load())


def _check_picklable(called: Sequence[str], registry: Mapping[str, Callable]) -> None:
    for name in called:
        try:
            pickle.dumps(registry[name])
        except (pickle.PicklingError, AttributeError, TypeError) as err:
            raise MalformedArgumentError(
                f"registered function {name!r} cannot be sent to process workers; "
                "register a module-level function or pass Distributed(pool=...)"
            ) from err


def _referenced_locals(nodes: Sequence[ast.expr]) -> list[str]:
    seen: dict[str, None] = {}
    for node in nodes:
        for sub in ast.walk(node):
            if isinstance(sub, ast.Name) and sub.id.startswith(RESERVED_PREFIX):
                seen.setdefault(sub.id, None)
    return list(seen)


@dataclass
class ParallelBody:
    """Restructured in-place statements plus the globals they need at call time."""

    statements: list[ast.stmt]
    namespace: dict[str, object] = field(default_factory=dict)


def serial_body(statements: Sequence[Statement], out: str) -> ParallelBody:
    return ParallelBody([s.to_ast(out) for s in statements])


def threaded_body(strategy: Threaded, statements: Sequence[Statement], out: str, names: NameFactory) -> ParallelBody:
    chunks = partition(statements, strategy.worker_count)
    logger.debug("threaded kernel: %d chunks of sizes %s", len(chunks), [len(c) for c in chunks])
    body: list[ast.stmt] = []
    tasks: list[ast.expr] = []
    for chunk in chunks:
        if not chunk:
            continue
        name = names.fresh("task")
        body.append(_thunk(name, [s.to_ast(out) for s in chunk]))
        tasks.append(_load(name))
    body.append(ast.Expr(value=_call(_runtime("run_tasks"), ast.List(elts=tasks, ctx=ast.Load()))))
    return ParallelBody(body)


def distributed_body(
    strategy: Distributed,
    elements: Sequence[Element],
    statements: Sequence[Statement],
    out: str,
    names: NameFactory,
    backend: str,
    registry: Mapping[str, Callable],
) -> ParallelBody:
    chunks = partition(elements, strategy.workers)
    logger.debug("distributed kernel: %d chunks of sizes %s", len(chunks), [len(c) for c in chunks])
    inject = inject_registered_functions(registry)
    spawns: list[ast.stmt] = []
    fetches: list[ast.stmt] = []
    result_of_slot: dict[int, tuple[str, int]] = {}

    for worker, chunk in enumerate(chunks, start=1):
        if not chunk:
            continue
        rhss = [element.rhs for element in chunk]
        source = ast.unparse(inject(ast.List(elts=rhss, ctx=ast.Load())))
        captured = _referenced_locals(rhss)
        bindings = ast.Dict(keys=[ast.Constant(n) for n in captured], values=[_load(n) for n in captured])
        called = registered_calls(rhss, registry)
        if strategy.pool is None:
            _check_picklable(called, registry)
        functions = ast.Dict(keys=[ast.Constant(n) for n in called], values=[_registered(n) for n in called])
        spawn = names.fresh("spawn")
        result = names.fresh("reduce")
        submit = ast.Attribute(value=_load(POOL_NAME), attr="submit", ctx=ast.Load())
        spawns.append(
            ast.Assign(
                targets=[ast.Name(id=spawn, ctx=ast.Store())],
                value=_call(
                    submit,
                    _runtime("remote_evaluate"),
                    ast.Constant(source),
                    bindings,
                    ast.Constant(backend),
                    functions,
                ),
            )
        )
        fetches.append(
            ast.Assign(
                targets=[ast.Name(id=result, ctx=ast.Store())],
                value=_call(_runtime("fetch"), _load(spawn), ast.Constant(worker)),
            )
        )
        for j, element in enumerate(chunk):
            result_of_slot[element.slot] = (result, j)

    writes = [s.to_ast(out, _read_slot(*result_of_slot[s.slot])) for s in statements]
    pool = strategy.pool if strategy.pool is not None else LazyProcessPool(strategy.workers)
    return ParallelBody(spawns + fetches + writes, {POOL_NAME: pool})


def task_graph_body(
    scheduler: object,
    elements: Sequence[Element],
    statements: Sequence[Statement],
    out: str,
    names: NameFactory,
) -> ParallelBody:
    delayed = ast.Attribute(value=_load(SCHEDULER_NAME), attr="delayed", ctx=ast.Load())
    body: list[ast.stmt] = []
    nodes: list[ast.expr] = []
    for element in elements:
        name = names.fresh("compute")
        body.append(_thunk(name, [ast.Return(value=element.rhs)]))
        nodes.append(_call(_call(delayed, _load(name))))

    reduce_name = names.fresh("reduce")
    reduction = _call(_call(delayed, _runtime("concat")), *nodes)
    collect = _call(ast.Attribute(value=reduction, attr="compute", ctx=ast.Load()))
    body.append(ast.Assign(targets=[ast.Name(id=reduce_name, ctx=ast.Store())], value=collect))
    body.extend(s.to_ast(out, _read_slot(reduce_name, s.slot)) for s in statements)
    logger.debug("task-graph kernel: %d deferred element nodes", len(nodes))
    return ParallelBody(body, {SCHEDULER_NAME: scheduler})


def parallel_body(
    strategy: ParallelStrategy,
    elements: Sequence[Element],
    statements: Sequence[Statement],
    out: str,
    names: NameFactory,
    *,
    backend: str = "numpy",
    scheduler: object | None = None,
    registry: Mapping[str, Callable] | None = None,
) -> ParallelBody:
    if isinstance(strategy, Serial):
        return serial_body(statements, out)
    if isinstance(strategy, Threaded):
        return threaded_body(strategy, statements, out, names)
    if isinstance(strategy, Distributed):
        return distributed_body(strategy, elements, statements, out, names, backend, registry or {})
    if isinstance(strategy, TaskGraph):
        if scheduler is None:
            scheduler = resolve_scheduler(strategy)
        return task_graph_body(scheduler, elements, statements, out, names)
    raise MalformedArgumentError(f"unsupported parallel strategy {strategy!r}")
