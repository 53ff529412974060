from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ._container import Module, clear_hash_key


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from ._container import Provide


class InjectorAlreadyBuiltError(RuntimeError):
    pass


@dataclass(frozen=True)
class ModuleRef:
    """Reference to a registered module, by name or by `Module` object."""

    target: str | Module


@dataclass(frozen=True)
class ModuleInit:
    """Initializer function, invoked with the provider registry as `provide`."""

    target: Callable[..., Any]


@dataclass(frozen=True)
class ModuleValues:
    """Mapping of names to fixed values."""

    values: Mapping[str, Any]

    def to_init(self) -> ModuleInit:
        values = dict(self.values)

        def register_values(provide: Provide) -> None:
            for key, value in values.items():
                provide.value(key, value)

        register_values.__qualname__ = f"values({', '.join(map(str, values))})"
        return ModuleInit(register_values)


Declaration = ModuleRef | ModuleInit


def lower(declaration: object) -> Declaration:
    """Classify a raw module declaration.

    Value mappings become initializers right away so the queue only ever holds
    references and functions.
    """
    if isinstance(declaration, ModuleValues):
        return declaration.to_init()
    if isinstance(declaration, (ModuleRef, ModuleInit)):
        return declaration
    if isinstance(declaration, (str, Module)):
        return ModuleRef(declaration)
    if isinstance(declaration, Mapping):
        return ModuleValues(declaration).to_init()
    if callable(declaration):
        return ModuleInit(declaration)

    msg = (
        f"Cannot declare {declaration!r} as a module: expected a module name, "
        f"a Module, an initializer function or a mapping of values."
    )
    raise TypeError(msg)


class ModuleQueue:
    """Ordered module declarations for one test, frozen once an injector exists."""

    def __init__(self) -> None:
        self._declarations: list[Declaration] = []
        self._frozen = False

    def __len__(self) -> int:
        return len(self._declarations)

    def __iter__(self) -> Iterator[Declaration]:
        return iter(self._declarations)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def extend(self, *declarations: object) -> None:
        if self._frozen:
            msg = "Injector already created, cannot register a module."
            raise InjectorAlreadyBuiltError(msg)

        # lower everything first so a bad declaration leaves the queue untouched
        lowered = [lower(d) for d in declarations]
        self._declarations.extend(lowered)
        logger.debug("Queued %d module declaration(s)", len(lowered))

    def freeze(self) -> None:
        self._frozen = True

    def targets(self) -> list[str | Module | Callable[..., Any]]:
        return [d.target for d in self]

    def clear_identity_tags(self) -> None:
        for target in self.targets():
            clear_hash_key(target)
