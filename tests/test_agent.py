"""Tests for Agent: context layering, sync and queued runs, LLM helpers."""

import asyncio

import pytest
from conftest import DoubleAddWorkflow

from pyrunbook.agent import Agent, LLMCompletionWorkflow
from pyrunbook.config import Configuration
from pyrunbook.core import WorkflowDefinition, step
from pyrunbook.errors import ConfigurationError, SerializationError
from pyrunbook.executor import Scheduler, WorkflowEngine
from pyrunbook.tasks import TaskRegistry


class EchoWorkflow(WorkflowDefinition):
    workflow_id = "echo"
    steps = [step("echo", handler=lambda ctx: ctx.to_dict())]


@pytest.fixture
def agent(engine, memory_store, serializer):
    return Agent(engine, Scheduler(memory_store, serializer), context={"source": "api", "user": 7})


# ==============================================================================
# Context assembly
# ==============================================================================


def test_initial_input_wins_over_extras_and_agent_context(agent):
    """Test that initial input overrides extras, which override the agent context."""
    context = agent.build_context({"user": 9}, source="cli", locale="en")

    assert context.to_dict() == {"source": "cli", "user": 9, "locale": "en"}


def test_sensitive_keys_are_marked_private(agent):
    """Test that keys matching the sensitive filter are marked private."""
    context = agent.build_context({"api_token": "t-1", "query": "q"})

    assert context.private_keys == frozenset({"api_token"})
    assert context["api_token"] == "t-1"
    assert context.filtered_for_logging()["api_token"] == "[FILTERED]"


def test_with_context_returns_new_agent(agent):
    """Test that with_context() leaves the original agent untouched."""
    scoped = agent.with_context(tenant="acme")

    assert scoped.context == {"source": "api", "user": 7, "tenant": "acme"}
    assert agent.context == {"source": "api", "user": 7}
    assert scoped.engine is agent.engine
    assert scoped.scheduler is agent.scheduler


def test_config_defaults_to_engine_config(agent, engine):
    """Test that an agent without config borrows the engine's."""
    assert agent.config is engine.config


# ==============================================================================
# Running workflows
# ==============================================================================


@pytest.mark.asyncio
async def test_run_workflow_sees_all_layers(agent):
    """Test that a run sees agent context, extras and initial input."""
    result = await agent.run_workflow(EchoWorkflow, {"input": 1}, locale="en")

    assert result.is_completed
    assert result.final_output == {"source": "api", "user": 7, "locale": "en", "input": 1}


@pytest.mark.asyncio
async def test_run_workflow_streams_steps(agent):
    """Test that run_workflow forwards on_step to the engine."""
    seen = []

    result = await agent.run_workflow(DoubleAddWorkflow, {"input": 5}, seen.append)

    assert [entry.step_name for entry in seen] == ["double", "add_ten"]
    assert result.final_output == 20


@pytest.mark.asyncio
async def test_run_workflow_honors_cancel(agent):
    """Test that run_workflow passes the cancel event through."""
    cancel = asyncio.Event()
    cancel.set()

    result = await agent.run_workflow(DoubleAddWorkflow, {"input": 5}, cancel=cancel)

    assert result.is_failed
    assert result.failed_task_name == "double"


@pytest.mark.asyncio
async def test_run_workflow_later_queues_merged_context(agent, memory_store):
    """Test that run_workflow_later enqueues the merged context."""
    handle = await agent.run_workflow_later(DoubleAddWorkflow, {"input": 5, "api_key": "k"})

    job = await memory_store.get_job(handle.job_id)
    assert job.payload["data"] == {"source": "api", "user": 7, "input": 5, "api_key": "k"}
    assert set(job.payload["private_keys"]) == {"api_key"}


@pytest.mark.asyncio
async def test_run_workflow_later_requires_scheduler(engine):
    """Test that queuing without a scheduler is a configuration error."""
    with pytest.raises(ConfigurationError, match="no scheduler"):
        await Agent(engine).run_workflow_later(DoubleAddWorkflow, {"input": 1})


@pytest.mark.asyncio
async def test_run_workflow_later_rejects_unserializable_context(agent, memory_store):
    """Test that an unserializable context is rejected before enqueue."""
    with pytest.raises(SerializationError):
        await agent.run_workflow_later(DoubleAddWorkflow, {"callback": print})

    assert await memory_store.list_executions() == []


# ==============================================================================
# LLM helpers
# ==============================================================================


@pytest.mark.asyncio
async def test_generate_now(agent, gateway):
    """Test a one-off completion with the configured defaults."""
    result = await agent.generate_now("Summarize this")

    assert result.is_completed
    assert result.workflow_type == "llm_completion"
    assert result.final_output == {"content": "Generated text"}
    [(name, call)] = gateway.calls
    assert name == "complete"
    assert call["messages"] == [{"role": "user", "content": "Summarize this"}]
    assert call["model"] == "gpt-test"
    assert call["temperature"] == 0.7
    assert call["max_tokens"] is None


@pytest.mark.asyncio
async def test_generate_now_options_override_defaults(agent, gateway):
    """Test that explicit model and temperature win over defaults."""
    await agent.generate_now("Hi", model="gpt-other", temperature=0.1, max_tokens=50)

    [(_, call)] = gateway.calls
    assert (call["model"], call["temperature"], call["max_tokens"]) == ("gpt-other", 0.1, 50)


@pytest.mark.asyncio
async def test_generate_now_uses_prompt_from_agent_context(agent, gateway):
    """Test falling back to the agent context's prompt."""
    await agent.with_context(prompt="From context").generate_now()

    [(_, call)] = gateway.calls
    assert call["messages"] == [{"role": "user", "content": "From context"}]


@pytest.mark.asyncio
async def test_generate_now_without_prompt(agent):
    """Test that generate_now() with no prompt anywhere raises."""
    with pytest.raises(ConfigurationError, match="No prompt"):
        await agent.generate_now()


@pytest.mark.asyncio
async def test_generate_now_reports_provider_failure(gateway):
    """Test that a provider failure surfaces as a failed result."""
    settings = Configuration(default_llm_model="gpt-test", default_llm_retries=0)
    engine = WorkflowEngine(TaskRegistry.with_defaults(gateway=gateway, settings=settings), settings)
    gateway.failures = 1

    result = await Agent(engine).generate_now("Hi")

    assert result.is_failed
    assert result.failed_task_name == "llm"
    assert "provider unavailable" in result.failed_task_error


@pytest.mark.asyncio
async def test_generate_later(agent, memory_store):
    """Test queuing a one-off completion."""
    handle = await agent.generate_later("Write a haiku")

    assert handle.workflow_type == LLMCompletionWorkflow.type_id()
    job = await memory_store.get_job(handle.job_id)
    assert job.payload["data"]["prompt"] == "Write a haiku"
    assert job.payload["data"]["model"] == "gpt-test"
