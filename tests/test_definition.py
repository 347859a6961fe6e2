"""Tests for step declarations and workflow definitions."""

import pytest

from pyrunbook.core import GUARD_KEY, Step, WorkflowDefinition, define_workflow, step
from pyrunbook.errors import ConfigurationError
from pyrunbook.tasks import DirectHandlerTask


def test_handler_step_defaults_to_direct():
    """Test that a handler step needs no explicit task type."""
    declared = step("double", handler=lambda ctx: 1)

    assert declared.uses == "direct"
    assert declared.type_label == "direct"
    assert not declared.has_guard


def test_step_requires_a_type():
    """Test that a step without a type or handler is rejected."""
    with pytest.raises(ConfigurationError, match="No task type"):
        step("orphan", prompt="hi")


def test_step_requires_a_name():
    """Test that an empty step name is rejected."""
    with pytest.raises(ConfigurationError):
        step("", "llm")


def test_guard_is_stored_in_config():
    """Test that the when guard lands in the step config."""
    declared = step("notify", "mail", when=False, to="a@b.c")

    assert declared.has_guard
    assert declared.config[GUARD_KEY] is False
    assert declared.config["to"] == "a@b.c"


def test_step_config_is_read_only():
    """Test that step config cannot be mutated."""
    declared = step("x", "llm", prompt="hi")
    with pytest.raises(TypeError):
        declared.config["prompt"] = "changed"


def test_task_class_label():
    """Test the label of a step typed by a Task class."""
    assert step("x", DirectHandlerTask, handler=print).type_label == "direct"


def test_steps_frozen_in_declaration_order():
    """Test that steps are frozen in declaration order."""
    class Ordered(WorkflowDefinition):
        description = "three steps"
        steps = [step("a", "llm"), step("b", "llm"), step("c", "llm")]

    assert isinstance(Ordered.steps, tuple)
    assert Ordered.step_names() == ["a", "b", "c"]
    assert Ordered.type_id() == "Ordered"
    assert Ordered.find_step("b").name == "b"
    assert Ordered.find_step("z") is None


def test_duplicate_step_names_rejected():
    """Test that duplicate step names are rejected at class creation."""
    with pytest.raises(ConfigurationError, match="Duplicate step name"):

        class Duplicated(WorkflowDefinition):
            steps = [step("a", "llm"), step("a", "mail")]


def test_non_step_entries_rejected():
    """Test that only Step entries are accepted."""
    with pytest.raises(ConfigurationError):

        class Broken(WorkflowDefinition):
            steps = [("a", "llm")]


def test_subclass_inherits_steps():
    """Test that a subclass without steps inherits its parent's."""
    class Base(WorkflowDefinition):
        steps = [step("a", "llm")]

    class Child(Base):
        workflow_id = "child"

    assert Child.step_names() == ["a"]
    assert Child.type_id() == "child"


def test_define_workflow_builds_subclass():
    """Test building a definition at runtime."""
    workflow = define_workflow("runtime", [step("a", "llm")], description="built at runtime")

    assert issubclass(workflow, WorkflowDefinition)
    assert workflow.type_id() == "runtime"
    assert workflow.description == "built at runtime"
    assert all(isinstance(s, Step) for s in workflow.steps)
