"""Per-test dependency injection harness.

Tests declare which modules configure their injector, then request resolved
objects from an injector built lazily, once per test, and discarded when the
test ends.

Exports:
- `module` / `inject`: declare modules and resolve injected functions. Inside a
  running test they act immediately; at suite scope they return a deferred
  callable for the runner to call later.
- `declare_modules` / `resolve` and `deferred_modules` / `deferred_resolve`:
  the explicit in-test and suite-scope forms.
- `define_module`: register a named module (values, factories, services).
- `create_injector` / `Injector`: the underlying container.
- `InjectorTestCase`: unittest integration; the pytest plugin lives in
  `testbind.plugin`.
"""

from ._container import (
    Injector,
    Lifetime,
    Module,
    Provide,
    ResolutionError,
    UnknownModuleError,
    create_injector,
    define_module,
    get_module,
    noop,
)
from ._modules import InjectorAlreadyBuiltError, ModuleInit, ModuleRef, ModuleValues
from ._session import (
    NoActiveTestError,
    Session,
    begin_test,
    current_session,
    declare_modules,
    deferred_modules,
    deferred_resolve,
    end_test,
    get_injector,
    inject,
    module,
    resolve,
    session_scope,
    strip_marker,
)
from .testcase import InjectorTestCase


__all__ = [
    "Injector",
    "InjectorAlreadyBuiltError",
    "InjectorTestCase",
    "Lifetime",
    "Module",
    "ModuleInit",
    "ModuleRef",
    "ModuleValues",
    "NoActiveTestError",
    "Provide",
    "ResolutionError",
    "Session",
    "UnknownModuleError",
    "begin_test",
    "create_injector",
    "current_session",
    "declare_modules",
    "deferred_modules",
    "deferred_resolve",
    "define_module",
    "end_test",
    "get_injector",
    "get_module",
    "inject",
    "module",
    "noop",
    "resolve",
    "session_scope",
    "strip_marker",
]
