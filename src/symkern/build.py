"""`build_function`: the single entry point tying the generation stages together."""

from __future__ import annotations

import ast
import copy
import logging
from typing import NamedTuple, Sequence

from .assemble import in_place_statements, lower_elements, out_of_place_expr
from .errors import MalformedArgumentError, UnsupportedTargetError
from .lowering import ArgumentBinder, Lowerer, NameFactory
from .options import BuildOptions, Target, resolve_options
from .parallel import TaskGraph, parallel_body, resolve_parallel, resolve_scheduler
from .runtime import POOL_NAME, LazyProcessPool, default_registry, runtime_namespace
from .shapes import ShapeKind, classify
from .targets import TEXT_RENDERERS, add_header, finalize_native

logger = logging.getLogger(__name__)


class BuiltKernels(NamedTuple):
    out_of_place: object
    in_place: object

    def close(self) -> None:
        """Shut down the lazily started process pool behind a `Distributed` in-place kernel.

        Other pool objects passed as `Distributed(pool=...)` stay with the caller.
        """
        pool = getattr(self.in_place, "namespace", {}).get(POOL_NAME)
        if isinstance(pool, LazyProcessPool):
            pool.shutdown()


def build_function(rhss: object, *args: object, options: BuildOptions | None = None, **overrides: object):
    """Generate kernels or target source for `rhss` over the given arguments.

    Native target: `args` are the call arguments of the generated function,
    each a symbol or a sequence of symbols. A scalar output yields one
    out-of-place artifact; container outputs yield `BuiltKernels`.

    Text targets: `build_function(equations, variables, parameters, iv, target=...)`
    returns the rendered source as `str`.
    """
    opts = resolve_options(options, overrides)
    if opts.target != Target.NATIVE:
        return _build_text(rhss, args, opts)

    strategy = resolve_parallel(opts.parallel)
    scheduler = resolve_scheduler(strategy) if isinstance(strategy, TaskGraph) else None

    shape = classify(rhss)
    logger.debug("classified output as %s with dims %s", shape.kind.value, shape.dims)

    names = NameFactory()
    binder = ArgumentBinder(args, names)
    lowerer = Lowerer(binder, conversion_function=opts.conversion_function)
    header = opts.header_wrapper or add_header
    namespace = runtime_namespace(backend=opts.backend, registry=opts.registry)

    prologue = (binder.bounds_checks() if opts.bounds_checked else []) + binder.prologue()

    oop_name = names.fresh("kernel")
    oop_body = [*copy.deepcopy(prologue), ast.Return(value=out_of_place_expr(rhss, shape, lowerer.lower))]
    oop_tree = header(oop_body, binder.arg_names, False, out=None, name=oop_name)

    if shape.kind == ShapeKind.SCALAR:
        return finalize_native(oop_tree, opts, namespace)

    out = names.fresh("out")
    elements = lower_elements(rhss, shape, lowerer.lower)
    statements = in_place_statements(
        elements,
        shape,
        skip_zero=opts.skip_zero,
        output_index_remap=opts.output_index_remap,
    )
    registry = opts.registry if opts.registry is not None else default_registry
    restructured = parallel_body(
        strategy,
        elements,
        statements,
        out,
        names,
        backend=opts.backend,
        scheduler=scheduler,
        registry=registry,
    )
    iip_tree = header(
        [*prologue, *restructured.statements],
        binder.arg_names,
        True,
        out=out,
        name=names.fresh("kernel"),
    )
    logger.debug("built %s in-place kernel with %d statements", type(strategy).__name__, len(statements))

    out_of_place = finalize_native(oop_tree, opts, namespace)
    in_place = finalize_native(iip_tree, opts, {**namespace, **restructured.namespace})
    return BuiltKernels(out_of_place, in_place)


def _build_text(equations: object, args: Sequence[object], opts: BuildOptions) -> str:
    if len(args) != 3:
        raise MalformedArgumentError(
            f"{opts.target.value} target expects (variables, parameters, independent variable), got {len(args)} arguments"
        )
    if not isinstance(equations, (list, tuple)):
        raise UnsupportedTargetError(f"{opts.target.value} target renders a list of equations")
    variables, parameters, iv = args
    renderer = TEXT_RENDERERS[opts.target]
    text = renderer(equations, variables, parameters, iv, opts)
    logger.debug("rendered %d equations for %s target", len(equations), opts.target.value)
    return text
