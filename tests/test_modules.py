import unittest

import pytest

from testbind import InjectorAlreadyBuiltError, ModuleInit, ModuleRef, ModuleValues, create_injector, define_module
from testbind._container import HASH_KEY_ATTR, hash_key
from testbind._modules import ModuleQueue, lower


def test_lower_name_is_module_ref():
    assert lower("app") == ModuleRef("app")


def test_lower_module_object_is_module_ref():
    mod = define_module("modules.object")
    assert lower(mod) == ModuleRef(mod)


def test_lower_function_is_module_init():
    def init(provide): ...

    assert lower(init) == ModuleInit(init)


def test_lower_mapping_becomes_initializer_registering_values():
    lowered = lower({"mode": "test", "version": "v1.0.1"})
    assert isinstance(lowered, ModuleInit)

    injector = create_injector([lowered.target])
    assert injector.get("mode") == "test"
    assert injector.get("version") == "v1.0.1"


def test_lower_module_values_becomes_initializer():
    lowered = lower(ModuleValues({"mode": "test"}))
    assert isinstance(lowered, ModuleInit)


def test_lowered_mapping_is_a_snapshot():
    values = {"mode": "test"}
    lowered = lower(values)
    values["mode"] = "changed"
    assert create_injector([lowered.target]).get("mode") == "test"


def test_lower_already_lowered_declarations_is_identity():
    ref = ModuleRef("app")
    assert lower(ref) is ref


@pytest.mark.parametrize("declaration", [42, None, 1.5])
def test_lower_unsupported_declaration_raises(declaration):
    with pytest.raises(TypeError):
        lower(declaration)


class TestModuleQueue(unittest.TestCase):
    queue: ModuleQueue

    def setUp(self):
        self.queue = ModuleQueue()

    def test_queue_preserves_declaration_order(self):
        def init(provide): ...

        self.queue.extend("a", init)
        self.queue.extend({"k": "v"})
        targets = self.queue.targets()
        assert targets[:2] == ["a", init]
        assert callable(targets[2])
        assert len(self.queue) == 3

    def test_extend_after_freeze_raises(self):
        self.queue.extend("a")
        self.queue.freeze()
        with pytest.raises(InjectorAlreadyBuiltError):
            self.queue.extend("b")
        assert self.queue.targets() == ["a"]

    def test_bad_declaration_leaves_queue_untouched(self):
        with pytest.raises(TypeError):
            self.queue.extend("a", 42)
        assert len(self.queue) == 0

    def test_clear_identity_tags_removes_tags_from_loaded_modules(self):
        def init(provide): ...

        mod = define_module("modules.tagged")
        self.queue.extend(init, mod, "modules.tagged")
        create_injector(self.queue.targets())
        assert hasattr(init, HASH_KEY_ATTR)
        assert hasattr(mod, HASH_KEY_ATTR)

        self.queue.clear_identity_tags()
        assert not hasattr(init, HASH_KEY_ATTR)
        assert not hasattr(mod, HASH_KEY_ATTR)

    def test_clear_identity_tags_ignores_untagged_modules(self):
        def init(provide): ...

        self.queue.extend(init)
        self.queue.clear_identity_tags()
        assert hash_key(init)
