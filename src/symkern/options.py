"""Build options and environment-derived defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Callable, Final, Literal, Sequence

from .errors import MalformedArgumentError

DEFAULT_BACKEND: Final[str] = os.environ.get("SYMKERN_BACKEND", "numpy")
DEFAULT_FUNCTION_NAME: Final[str] = os.environ.get("SYMKERN_FUNCTION_NAME", "diffeqf")
_NUM_THREADS_ENV: Final[str | None] = os.environ.get("SYMKERN_NUM_THREADS")

_BACKENDS: Final[frozenset[str]] = frozenset({"numpy", "jax"})
_MODES: Final[frozenset[str]] = frozenset({"expression", "compiled"})


def available_workers() -> int:
    """Worker count used for `Threaded(None)` and the legacy parallel flag."""
    if _NUM_THREADS_ENV:
        return max(1, int(_NUM_THREADS_ENV))
    return max(1, os.cpu_count() or 1)


class Target(str, Enum):
    NATIVE = "native"
    C = "c"
    STAN = "stan"
    MATLAB = "matlab"


_DEFAULT_INDEX_BASE: Final[dict[Target, int]] = {
    Target.NATIVE: 0,
    Target.C: 0,
    Target.STAN: 1,
    Target.MATLAB: 1,
}


@dataclass(frozen=True)
class BuildOptions:
    """Structured configuration for one `build_function` call.

    - `conversion_function`: Expr -> Expr rewrite applied to every output leaf
      before lowering (e.g. a simplifier from the expression library).
    - `mode`: `expression` returns source text, `compiled` returns a
      `RuntimeFunction`.
    - `parallel`: a strategy from `symkern.parallel`, or the deprecated bool.
    - `header_wrapper`: `None` selects `symkern.targets.add_header`.
    - `index_base`: `None` selects the target's native base.
    """

    conversion_function: Callable[[object], object] | None = None
    mode: Literal["expression", "compiled"] = "expression"
    bounds_checked: bool = False
    retain_line_info: bool = False
    target: Target = Target.NATIVE
    output_index_remap: Sequence[int] | None = None
    skip_zero: bool = False
    parallel: object = None
    header_wrapper: Callable[..., object] | None = None
    backend: str = field(default_factory=lambda: DEFAULT_BACKEND)
    registry: object | None = None
    function_name: str = field(default_factory=lambda: DEFAULT_FUNCTION_NAME)
    derivative_name: str = "derivative"
    state_name: str = "state"
    parameter_name: str = "parameter"
    index_base: int | None = None

    def __post_init__(self) -> None:
        if self.mode not in _MODES:
            raise MalformedArgumentError(f"mode must be one of {sorted(_MODES)}, got {self.mode!r}")
        if self.backend not in _BACKENDS:
            raise MalformedArgumentError(f"backend must be one of {sorted(_BACKENDS)}, got {self.backend!r}")
        if not isinstance(self.target, Target):
            object.__setattr__(self, "target", Target(self.target))

    @property
    def compiled(self) -> bool:
        return self.mode == "compiled"

    @property
    def resolved_index_base(self) -> int:
        if self.index_base is not None:
            return self.index_base
        return _DEFAULT_INDEX_BASE[self.target]


_OPTION_NAMES: Final[frozenset[str]] = frozenset(f.name for f in fields(BuildOptions))


def resolve_options(options: BuildOptions | None, overrides: dict[str, object]) -> BuildOptions:
    base = options if options is not None else BuildOptions()
    unknown = sorted(set(overrides) - _OPTION_NAMES)
    if unknown:
        raise MalformedArgumentError(f"unknown build options: {unknown}")
    if not overrides:
        return base
    return replace(base, **overrides)
