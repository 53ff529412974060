from __future__ import annotations

import inspect
import itertools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping


HASH_KEY_ATTR = "__testbind_hash_key__"

_MISSING: Any = object()
_hash_keys = itertools.count(1)


class Lifetime(Enum):
    SINGLETON = "singleton"
    TRANSIENT = "transient"


@dataclass
class Registration:
    factory: Callable[..., object] | None
    impl: type | None
    lifetime: Lifetime
    cached_instance: object = _MISSING  # cached singleton


class ResolutionError(RuntimeError):
    pass


class UnknownModuleError(ResolutionError):
    pass


def noop(*args: Any, **kwargs: Any) -> None:
    return None


def hash_key(obj: object) -> str:
    """Return the identity key used to load a module object only once.

    Strings are keyed by value. Other objects get a tag attribute assigned on
    first use; objects that refuse attributes (bound methods) fall back to `id()`.
    """
    if isinstance(obj, str):
        return f"str:{obj}"

    # only the object's own tag counts; a class must not inherit its base's
    try:
        key = vars(obj).get(HASH_KEY_ATTR)
    except TypeError:
        return f"id:{id(obj)}"
    if key is not None:
        return key

    key = f"obj:{next(_hash_keys)}"
    try:
        setattr(obj, HASH_KEY_ATTR, key)
    except (AttributeError, TypeError):
        return f"id:{id(obj)}"
    return key


def clear_hash_key(obj: object) -> None:
    if isinstance(obj, str):
        return
    if HASH_KEY_ATTR in getattr(obj, "__dict__", {}):
        delattr(obj, HASH_KEY_ATTR)


class Provide:
    """Provider registry handed to module initializers as `provide`.

    Example:
      def init(provide):
          provide.value("mode", "app")
          provide.factory("db", lambda mode: make_db(mode))

    """

    def __init__(self, registrations: dict[str, Registration]) -> None:
        self._registrations = registrations

    def value(self, name: str, value: object) -> None:
        self._registrations[name] = Registration(
            factory=None,
            impl=None,
            lifetime=Lifetime.SINGLETON,
            cached_instance=value,
        )

    def factory(
        self,
        name: str,
        factory: Callable[..., Any],
        *,
        lifetime: Lifetime = Lifetime.SINGLETON,
    ) -> None:
        if not callable(factory):
            msg = f"Factory for {name!r} must be callable, got {type(factory).__name__}."
            raise TypeError(msg)
        self._registrations[name] = Registration(factory=factory, impl=None, lifetime=lifetime)

    def service(
        self,
        name: str,
        impl: type,
        *,
        lifetime: Lifetime = Lifetime.SINGLETON,
    ) -> None:
        if not inspect.isclass(impl):
            msg = f"Service {name!r} must be a class, got {type(impl).__name__}."
            raise TypeError(msg)
        self._registrations[name] = Registration(factory=None, impl=impl, lifetime=lifetime)


class Module:
    """Named unit of configuration.

    Registration calls are queued and replayed, in order, against a `Provide`
    registry every time an injector loads the module. Modules listed in
    `requires` load first.
    """

    def __init__(self, name: str, requires: Iterable[str] = ()) -> None:
        self.name = name
        self.requires = list(requires)
        self._invoke_queue: list[Callable[[Provide], None]] = []

    def __repr__(self) -> str:
        return f"Module({self.name!r}, requires={self.requires!r})"

    def value(self, name: str, value: object) -> Module:
        self._invoke_queue.append(lambda provide: provide.value(name, value))
        return self

    def factory(self, name: str, factory: Callable[..., Any], *, lifetime: Lifetime = Lifetime.SINGLETON) -> Module:
        self._invoke_queue.append(lambda provide: provide.factory(name, factory, lifetime=lifetime))
        return self

    def service(self, name: str, impl: type, *, lifetime: Lifetime = Lifetime.SINGLETON) -> Module:
        self._invoke_queue.append(lambda provide: provide.service(name, impl, lifetime=lifetime))
        return self

    def config(self, fn: Callable[..., Any]) -> Module:
        """Queue an initializer function, invoked like a module initializer."""
        self._invoke_queue.append(lambda provide: _run_initializer(fn, provide))
        return self

    def apply(self, provide: Provide) -> None:
        for call in self._invoke_queue:
            call(provide)


_registry: dict[str, Module] = {}
_registry_lock = threading.RLock()


def define_module(name: str, requires: Iterable[str] = ()) -> Module:
    """Create a named module, replacing any previous module with that name.

    Example:
      define_module("app").value("mode", "app").value("version", "v1.0.1")

    """
    if not isinstance(name, str) or not name:
        msg = "Module name must be a non-empty string."
        raise ValueError(msg)

    module = Module(name, requires)
    with _registry_lock:
        if name in _registry:
            logger.debug("Replacing module %r", name)
        _registry[name] = module
    return module


def get_module(name: str) -> Module:
    with _registry_lock:
        module = _registry.get(name)
    if module is None:
        msg = f"Module {name!r} is not available. Define it with define_module() before loading it."
        raise UnknownModuleError(msg)
    return module


class Injector:
    """Resolves names to values configured by the loaded modules.

    - providers are looked up by name
    - lifetimes: singleton / transient
    - the injector itself is available as "injector".
    """

    def __init__(self, registrations: dict[str, Registration]) -> None:
        self._registrations: dict[str, Registration] = {}
        self._lock = threading.RLock()
        self._path: list[str] = []
        # modules may replace the default "injector" provider
        Provide(self._registrations).value("injector", self)
        self._registrations.update(registrations)

    def has(self, name: str) -> bool:
        return name in self._registrations

    def get(self, name: str) -> object:
        """Resolve `name` to an instance, building and caching it if needed."""
        with self._lock:
            reg = self._registrations.get(name)
            if reg is None:
                path = " <- ".join([name, *reversed(self._path)])
                msg = f"Unknown provider: {path}"
                raise ResolutionError(msg)

            # Return cached singleton if present
            if reg.lifetime == Lifetime.SINGLETON and reg.cached_instance is not _MISSING:
                return reg.cached_instance

            if name in self._path:
                path = " <- ".join([name, *reversed(self._path)])
                msg = f"Circular dependency found: {path}"
                raise ResolutionError(msg)

            self._path.append(name)
            try:
                if reg.factory is not None:
                    instance = self.invoke(reg.factory)
                else:
                    instance = self.instantiate(reg.impl)  # type: ignore[arg-type]
            finally:
                self._path.pop()

            # Cache if singleton
            if reg.lifetime == Lifetime.SINGLETON:
                reg.cached_instance = instance

            return instance

    def invoke(
        self,
        fn: Callable[..., Any],
        receiver: object = None,
        locals: Mapping[str, Any] | None = None,  # noqa: A002
        *,
        key_for: Callable[[str], str] | None = None,
    ) -> Any:
        """Call `fn`, supplying each declared parameter from the providers.

        Resolution precedence per parameter:
        1. receiver, for a leading `self` of a plain function
        2. explicit `locals`
        3. registered provider
        4. default
        5. error.
        """
        args, kwargs = _Binder(self, locals or {}, key_for).bind(fn, receiver)
        return fn(*args, **kwargs)

    def instantiate(self, cls: type, locals: Mapping[str, Any] | None = None) -> object:  # noqa: A002
        args, kwargs = _Binder(self, locals or {}, None).bind(cls, None)
        return cls(*args, **kwargs)


class _Binder:
    def __init__(
        self,
        injector: Injector,
        locals: Mapping[str, Any],  # noqa: A002
        key_for: Callable[[str], str] | None,
    ) -> None:
        self._injector = injector
        self._locals = locals
        self._key_for = key_for or (lambda name: name)

    def bind(self, fn: Callable[..., Any], receiver: object) -> tuple[list[Any], dict[str, Any]]:
        try:
            sig = inspect.signature(fn)
        except (TypeError, ValueError):
            # builtins without introspectable signatures
            return [], {}

        # bound methods and classes already hide their own `self`
        takes_receiver = inspect.isfunction(fn)
        args: list[Any] = []
        kwargs: dict[str, Any] = {}

        for index, (name, p) in enumerate(sig.parameters.items()):
            if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD):
                continue

            if index == 0 and name == "self" and takes_receiver:
                value = receiver
            else:
                value = self._resolve_param(fn, name, p)
                if value is _MISSING:
                    continue

            if p.kind is p.POSITIONAL_ONLY:
                args.append(value)
            else:
                kwargs[name] = value

        return args, kwargs

    def _resolve_param(self, fn: Callable[..., Any], name: str, p: inspect.Parameter) -> Any:
        key = self._key_for(name)

        if key in self._locals:
            return self._locals[key]

        if self._injector.has(key):
            return self._injector.get(key)

        if p.default is not inspect.Parameter.empty:
            # positional-only defaults cannot be skipped once a later one is bound
            return p.default if p.kind is p.POSITIONAL_ONLY else _MISSING

        fn_name = getattr(fn, "__qualname__", repr(fn))
        msg = f"Cannot satisfy parameter '{name}' of {fn_name}: unknown provider {key!r}."
        raise ResolutionError(msg)


def _run_initializer(fn: Callable[..., Any], provide: Provide) -> None:
    bootstrap = Injector({})
    bootstrap.invoke(fn, locals={"provide": provide})


def create_injector(modules: Iterable[str | Module | Callable[..., Any]]) -> Injector:
    """Build an injector from module declarations, in order.

    Later declarations override earlier ones for the same key. Each declaration
    loads at most once.
    """
    registrations: dict[str, Registration] = {}
    provide = Provide(registrations)
    loaded: set[str] = set()

    def load(module: str | Module | Callable[..., Any]) -> None:
        key = hash_key(module)
        if key in loaded:
            return
        loaded.add(key)

        if isinstance(module, str):
            module = get_module(module)

        if isinstance(module, Module):
            for required in module.requires:
                load(required)
            logger.debug("Loading module %r", module.name)
            module.apply(provide)
        elif callable(module):
            _run_initializer(module, provide)
        else:
            msg = f"Argument {module!r} is not a module name, Module or initializer function."
            raise TypeError(msg)

    for module in modules:
        load(module)

    injector = Injector(registrations)
    logger.debug("Created injector with providers: %s", ", ".join(sorted(registrations)))
    return injector
