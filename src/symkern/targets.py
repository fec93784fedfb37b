"""Target backends: native function headers and textual renderers."""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence

from .errors import MalformedArgumentError, MalformedExpressionError
from .expr import Equation, symbol_name
from .numbering import C_DIALECT, MATLAB_DIALECT, STAN_DIALECT, Dialect, NumberedRenderer, NumberingScheme
from .options import BuildOptions, Target
from .runtime import build_and_inject, default_registry, inject_registered_functions


def _arguments(names: Sequence[str]) -> ast.arguments:
    return ast.arguments(
        posonlyargs=[],
        args=[ast.arg(arg=name, annotation=None) for name in names],
        vararg=None,
        kwonlyargs=[],
        kw_defaults=[],
        kwarg=None,
        defaults=[],
    )


def _function(name: str, params: Sequence[str], body: list[ast.stmt]) -> ast.FunctionDef:
    return ast.FunctionDef(
        name=name,
        args=_arguments(params),
        body=body,
        decorator_list=[],
        returns=None,
        type_params=[],
    )


def add_header(body: list[ast.stmt], args: Sequence[str], in_place: bool, *, out: str | None, name: str) -> ast.FunctionDef:
    """`def name(out, args...)` returning None, or `def name(args...)` returning the body's value."""
    if in_place:
        if out is None:
            raise MalformedArgumentError("in-place header needs an output name")
        return _function(name, [out, *args], [*body, ast.Return(value=ast.Constant(None))])
    return _function(name, list(args), list(body))


def add_integrator_header(
    body: list[ast.stmt], args: Sequence[str], in_place: bool, *, out: str | None, name: str
) -> ast.FunctionDef:
    """`def name(integrator)` unpacking state, parameters and time from the integrator.

    In-place kernels write into `integrator.u`.
    """
    if len(args) != 3:
        raise MalformedArgumentError(f"integrator header expects (state, parameters, time) arguments, got {len(args)}")
    integrator = f"{name}_integrator"

    def field_of(attr: str) -> ast.expr:
        return ast.Attribute(value=ast.Name(id=integrator, ctx=ast.Load()), attr=attr, ctx=ast.Load())

    targets = list(args)
    sources = [field_of("u"), field_of("p"), field_of("t")]
    if in_place:
        if out is None:
            raise MalformedArgumentError("in-place header needs an output name")
        targets = [out, *targets]
        sources = [field_of("u"), *sources]
    unpack = ast.Assign(
        targets=[ast.Tuple(elts=[ast.Name(id=t, ctx=ast.Store()) for t in targets], ctx=ast.Store())],
        value=ast.Tuple(elts=sources, ctx=ast.Load()),
    )
    tail = [ast.Return(value=ast.Constant(None))] if in_place else []
    return _function(name, [integrator], [unpack, *body, *tail])


@dataclass(frozen=True)
class KernelSource:
    """Generated native source text plus the globals it must be executed in."""

    text: str
    name: str
    namespace: Mapping[str, object] = field(repr=False, compare=False)

    def __str__(self) -> str:
        return self.text

    def load(self) -> Callable:
        scope = dict(self.namespace)
        exec(compile(self.text, f"<symkern:{self.name}>", "exec"), scope)
        return scope[self.name]


def finalize_native(tree: ast.FunctionDef, options: BuildOptions, namespace: Mapping[str, object]):
    """Apply registered-function injection and produce source text or a compiled unit."""
    registry = options.registry if options.registry is not None else default_registry
    transform = inject_registered_functions(registry)
    tree = ast.fix_missing_locations(tree)
    if options.compiled:
        return build_and_inject(tree, namespace, transform, retain_line_info=options.retain_line_info)
    return KernelSource(text=ast.unparse(transform(tree)), name=tree.name, namespace=namespace)


# -- textual targets ---------------------------------------------------------


def _renderer(options: BuildOptions, variables, parameters, dialect: Dialect) -> NumberedRenderer:
    scheme = NumberingScheme.build(
        variables,
        parameters,
        derivative_name=options.derivative_name,
        state_name=options.state_name,
        parameter_name=options.parameter_name,
        index_base=options.resolved_index_base,
    )
    return NumberedRenderer(scheme, dialect)


def _equations(equations: Sequence[object]) -> list[Equation]:
    out: list[Equation] = []
    for i, eq in enumerate(equations):
        if not isinstance(eq, Equation):
            raise MalformedExpressionError(f"textual targets need Equation items, item {i} is {type(eq).__name__}")
        out.append(eq)
    return out


def render_c(equations, variables, parameters, iv, options: BuildOptions) -> str:
    renderer = _renderer(options, variables, parameters, C_DIALECT)
    lines = [renderer.render_equation(eq) for eq in _equations(equations)]
    body = "".join(f"  {line};\n" for line in lines)
    return (
        f"void {options.function_name}(double* {options.derivative_name}, double* {options.state_name}, "
        f"double* {options.parameter_name}, double {symbol_name(iv)}) {{\n{body}}}\n"
    )


def render_stan(equations, variables, parameters, iv, options: BuildOptions) -> str:
    eqs = _equations(equations)
    renderer = _renderer(options, variables, parameters, STAN_DIALECT)
    lines = [renderer.render_equation(eq) for eq in eqs]
    body = "".join(f"  {line};\n" for line in lines)
    return (
        f"real[] {options.function_name}(real {symbol_name(iv)}, real[] {options.state_name}, "
        f"real[] {options.parameter_name}, real[] x_r, int[] x_i) {{\n"
        f"  real {options.derivative_name}[{len(eqs)}];\n"
        f"{body}"
        f"  return {options.derivative_name};\n"
        "}\n"
    )


def render_matlab(equations, variables, parameters, iv, options: BuildOptions) -> str:
    renderer = _renderer(options, variables, parameters, MATLAB_DIALECT)
    text = "; ".join(renderer.render(eq.rhs) for eq in _equations(equations))
    # MATLAB indexes with parentheses; the rewrite is purely textual.
    text = text.replace("[", "(").replace("]", ")")
    params = [symbol_name(iv), options.state_name]
    if len(parameters):
        params.append(options.parameter_name)
    return f"{options.function_name} = @({','.join(params)}) [{text}];"


TEXT_RENDERERS: dict[Target, Callable[..., str]] = {
    Target.C: render_c,
    Target.STAN: render_stan,
    Target.MATLAB: render_matlab,
}
