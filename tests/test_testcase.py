import unittest

import pytest

from testbind import InjectorAlreadyBuiltError, InjectorTestCase, begin_test, current_session, define_module, end_test


define_module("testcase.app").value("mode", "app").value("version", "v1.0.1")


class TestInjectorTestCase(InjectorTestCase):
    modules = ("testcase.app",)

    def test_class_modules_are_declared(self):
        assert self.inject(lambda version: version) == "v1.0.1"

    def test_module_override_before_resolution(self):
        self.module({"version": "overridden"})
        assert self.inject(lambda version: version) == "overridden"

    def test_module_after_resolution_raises(self):
        self.inject(lambda version: version)
        with pytest.raises(InjectorAlreadyBuiltError):
            self.module({"version": "overridden"})

    def test_receiver_is_the_test_case(self):
        assert self.inject(lambda self: self) is self

    def test_joins_the_session_of_the_running_item(self):
        session = current_session()
        assert session.test is not self
        assert session.test.name == self._testMethodName


class TestInjectorTestCaseOwnSession(unittest.TestCase):
    """Runs InjectorTestCase through plain unittest, without the pytest plugin."""

    class Case(InjectorTestCase):
        modules = ("testcase.app",)
        seen: list

        def test_resolve(self):
            self.seen.append(current_session())
            assert self.inject(lambda mode: mode) == "app"

        def test_fail(self):
            self.seen.append(current_session())
            self.inject(lambda mode: mode)
            raise AssertionError("boom")

    def setUp(self):
        # the pytest plugin session would otherwise own the case's session
        end_test()
        self.Case.seen = []

    def _run(self, name):
        result = unittest.TestResult()
        self.Case(name).run(result)
        return result

    def test_session_is_created_and_ended_per_test(self):
        result = self._run("test_resolve")
        assert result.wasSuccessful()
        assert self.Case.seen[0] is not None
        assert current_session() is None

    def test_session_is_ended_when_the_test_fails(self):
        result = self._run("test_fail")
        assert len(result.failures) == 1
        assert current_session() is None

    def test_stale_session_is_replaced_not_joined(self):
        begin_test(object())
        first = self._run("test_resolve")
        second = self._run("test_resolve")
        assert first.wasSuccessful()
        assert second.wasSuccessful()
        assert self.Case.seen[0] is not self.Case.seen[1]
        assert current_session() is None
