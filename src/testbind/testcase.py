from __future__ import annotations

import unittest
from typing import TYPE_CHECKING, Any, ClassVar

from ._session import begin_test, current_session, declare_modules, end_test, resolve


if TYPE_CHECKING:
    from collections.abc import Callable

    from ._session import Session


class InjectorTestCase(unittest.TestCase):
    """TestCase with an injector session per test method.

    Usage:
      class TestApp(InjectorTestCase):
          modules = ("app",)

          def test_version(self):
              assert self.inject(lambda version: version) == "v1.0.1"

    Under pytest with `testbind.plugin` enabled, the plugin owns the session of
    the running item and `modules` are added to it. Any other active session is
    stale and gets replaced.
    """

    modules: ClassVar[tuple[object, ...]] = ()

    def setUp(self) -> None:
        super().setUp()
        if not self._joins(current_session()):
            begin_test(self)
            # cleanups run even when the test or a later setUp step fails
            self.addCleanup(end_test)
        declare_modules(*self.modules)

    def _joins(self, session: Session | None) -> bool:
        """Whether `session` was begun by a runner for this very test method."""
        if session is None:
            return False
        test = session.test
        return getattr(test, "cls", None) is type(self) and getattr(test, "name", None) == self._testMethodName

    def module(self, *declarations: object) -> None:
        declare_modules(*declarations)

    def inject(self, *fns: Callable[..., Any] | None) -> Any:
        return resolve(*fns, receiver=self)
