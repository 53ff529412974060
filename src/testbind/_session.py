from __future__ import annotations

import logging
import sys
import traceback
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from ._container import Injector, create_injector, noop
from ._modules import ModuleQueue, lower


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator


_PACKAGE = __name__.rpartition(".")[0]


class NoActiveTestError(RuntimeError):
    pass


def strip_marker(name: str, marker: str = "_") -> str:
    """Remove one pair of marker characters wrapping `name`.

    `_version_` resolves as `version`, while `_version`, `version_`, `_` and `__`
    are used literally. Only the outermost pair is removed: `__x__` -> `_x_`.
    """
    if len(name) > 2 and name[0] == marker and name[-1] == marker:
        return name[1:-1]
    return name


def _validate_marker(marker: str) -> None:
    if not isinstance(marker, str) or len(marker) != 1:
        msg = f"Marker must be a single character, got {marker!r}."
        raise ValueError(msg)


def _declaration_site() -> traceback.StackSummary:
    """Capture the stack of the first caller outside this package."""
    frame = sys._getframe(1)  # noqa: SLF001
    while frame.f_back is not None and frame.f_globals.get("__name__", "").startswith(_PACKAGE + "."):
        frame = frame.f_back
    # source lines are looked up lazily, only when a failure is formatted
    site = traceback.StackSummary.extract(traceback.walk_stack(frame), lookup_lines=False)
    site.reverse()
    return site


def _annotate(exc: BaseException, site: traceback.StackSummary) -> None:
    if not site:
        return
    last = site[-1]
    exc.add_note(
        f"declared near {last.filename}:{last.lineno} in {last.name}\n"
        "Declaration location (most recent call last):\n" + "".join(site.format()).rstrip()
    )


class Session:
    """Injector state for a single test.

    Modules are queued until the first resolution, which builds the injector
    and freezes the queue for the rest of the test.
    """

    def __init__(self, test: object, *, marker: str = "_") -> None:
        _validate_marker(marker)
        self.test = test
        self.marker = marker
        self.queue = ModuleQueue()
        self.injector: Injector | None = None

    def __repr__(self) -> str:
        state = "built" if self.injector is not None else f"{len(self.queue)} queued"
        return f"Session({self.test!r}, {state})"

    @property
    def receiver(self) -> object:
        """Object bound to a `self` parameter of resolved functions."""
        instance = getattr(self.test, "instance", None)
        return self.test if instance is None else instance

    def declare(self, *declarations: object) -> None:
        self.queue.extend(*declarations)

    def get_injector(self) -> Injector:
        if self.injector is None:
            self.queue.freeze()
            self.injector = create_injector(self.queue.targets())
        return self.injector

    def strip(self, name: str) -> str:
        return strip_marker(name, self.marker)

    def resolve(
        self,
        *fns: Callable[..., Any] | None,
        receiver: object = None,
        site: traceback.StackSummary | None = None,
    ) -> Any:
        """Invoke each function with its parameters resolved by the injector.

        Returns the result of the last function. A failure is re-raised with a
        note pointing at `site` (where the resolution was declared), and the
        remaining functions are not invoked.
        """
        if site is None:
            site = _declaration_site()
        if receiver is None:
            receiver = self.receiver

        try:
            injector = self.get_injector()
        except Exception as exc:
            _annotate(exc, site)
            raise

        result = None
        for fn in fns:
            try:
                result = injector.invoke(fn or noop, receiver, key_for=self.strip)
            except Exception as exc:
                _annotate(exc, site)
                raise
        return result


_active: Session | None = None


def current_session() -> Session | None:
    return _active


def begin_test(test: object, *, marker: str = "_", modules: Iterable[object] = ()) -> Session:
    """Install a fresh session for `test`, pre-declaring `modules`."""
    global _active  # noqa: PLW0603

    session = Session(test, marker=marker)
    session.declare(*modules)

    if _active is not None:
        logger.warning("Discarding session of %r: its teardown never ran", _active.test)
        _release(_active)

    _active = session
    logger.debug("Began session for %r", test)
    return session


def end_test() -> None:
    """Discard the active session. Does nothing when no test is active."""
    global _active  # noqa: PLW0603

    session, _active = _active, None
    if session is not None:
        logger.debug("Ending session for %r", session.test)
        _release(session)


def _release(session: Session) -> None:
    session.queue.clear_identity_tags()
    session.injector = None
    session.queue = ModuleQueue()
    session.test = None


@contextmanager
def session_scope(test: object, *, marker: str = "_", modules: Iterable[object] = ()) -> Iterator[Session]:
    """Run a block as the active test, resetting the session on exit."""
    session = begin_test(test, marker=marker, modules=modules)
    try:
        yield session
    finally:
        end_test()


def _require_session() -> Session:
    if _active is None:
        msg = "No test is active. Use module()/inject() or the deferred_* forms at suite scope."
        raise NoActiveTestError(msg)
    return _active


def get_injector() -> Injector:
    """Return the active test's injector, building it on first use."""
    return _require_session().get_injector()


def declare_modules(*declarations: object) -> None:
    """Queue module declarations for the active test."""
    _require_session().declare(*declarations)


def resolve(*fns: Callable[..., Any] | None, receiver: object = None) -> Any:
    """Invoke functions with injected parameters within the active test."""
    return _require_session().resolve(*fns, receiver=receiver, site=_declaration_site())


def deferred_modules(*declarations: object) -> Callable[..., None]:
    """Return a callable that queues `declarations` for whichever test calls it."""
    lowered = [lower(d) for d in declarations]

    def deferred(*context: object) -> None:
        _require_session().declare(*lowered)

    return deferred


def deferred_resolve(*fns: Callable[..., Any] | None) -> Callable[..., Any]:
    """Return a callable that resolves `fns` for whichever test calls it.

    The callable accepts an optional receiver, so it can be used as a test
    function or bound as a method of a test class.
    """
    site = _declaration_site()

    def deferred(*context: object) -> Any:
        receiver = context[0] if context else None
        return _require_session().resolve(*fns, receiver=receiver, site=site)

    return deferred


def module(*declarations: object) -> Callable[..., None] | None:
    """Queue modules now inside a test, or return a deferred callable outside one."""
    if _active is None:
        return deferred_modules(*declarations)
    declare_modules(*declarations)
    return None


def inject(*fns: Callable[..., Any] | None) -> Any:
    """Resolve functions now inside a test, or return a deferred callable outside one."""
    if _active is None:
        return deferred_resolve(*fns)
    return resolve(*fns)
