"""pytest integration: one injector session per test item.

Enable with ``-p testbind.plugin`` (installed distributions register it
automatically). Configure in the ini file:

  [pytest]
  testbind_modules = app fakes
  testbind_marker = _
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from ._session import begin_test, current_session, end_test, get_injector


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Generator

    from ._container import Injector
    from ._session import Session


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addini(
        "testbind_modules",
        type="args",
        default=[],
        help="Module names loaded into the injector of every test.",
    )
    parser.addini(
        "testbind_marker",
        default="_",
        help="Character wrapping injected parameter names to avoid shadowing (default: _).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "modules(*declarations): declare injector modules (names, initializers or value mappings) for the test.",
    )

    marker = config.getini("testbind_marker")
    if not isinstance(marker, str) or len(marker) != 1:
        msg = f"testbind_marker must be a single character, got {marker!r}"
        raise pytest.UsageError(msg)


def _declared_modules(item: pytest.Item) -> list[object]:
    modules: list[object] = list(item.config.getini("testbind_modules"))
    # iter_markers yields the closest marker first; closest must load last
    for mark in reversed(list(item.iter_markers("modules"))):
        modules.extend(mark.args)
    return modules


@pytest.hookimpl(tryfirst=True)
def pytest_runtest_setup(item: pytest.Item) -> None:
    begin_test(
        item,
        marker=item.config.getini("testbind_marker"),
        modules=_declared_modules(item),
    )


@pytest.hookimpl(wrapper=True)
def pytest_runtest_teardown(item: pytest.Item) -> Generator[None, None, None]:
    try:
        return (yield)
    finally:
        end_test()


@pytest.fixture
def testbind_session() -> Session:
    """The injector session of the running test."""
    session = current_session()
    if session is None:
        pytest.fail("testbind session is not active; is the testbind.plugin enabled?")
    return session


@pytest.fixture
def injector(testbind_session: Session) -> Injector:
    """The injector of the running test. Requesting it freezes the module queue."""
    return get_injector()
