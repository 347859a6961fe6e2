"""Tests for the built-in task kinds, run against fake collaborators."""

import asyncio

import pytest
from conftest import DocumentPolicy, FakeGateway

from pyrunbook.clients.records import RecordRef
from pyrunbook.config import Configuration
from pyrunbook.core import Context, WorkflowDefinition, step
from pyrunbook.errors import ConfigurationError, TaskError
from pyrunbook.executor import Scheduler
from pyrunbook.tasks import (
    AssistantTask,
    DirectHandlerTask,
    IntegrationTask,
    LLMCompletionTask,
    LLMTask,
    PolicyTask,
    TaskRegistry,
)


def _task(registry, type_id, name="step", **config):
    return registry.resolve(type_id, name, config)


# ==============================================================================
# Contract
# ==============================================================================


def test_task_defaults_and_guard():
    """Test task defaults and guard evaluation."""
    task = DirectHandlerTask("d", {"handler": print})

    assert task.timeout == 30.0
    assert task.retries == 3
    assert task.description == "DirectHandlerTask(d)"
    assert task.should_execute(Context())

    guarded = DirectHandlerTask("d", {"handler": print, "when": lambda ctx: ctx.get("go")})
    assert not guarded.should_execute(Context())
    assert guarded.should_execute(Context({"go": 1}))


@pytest.mark.asyncio
async def test_direct_handler_requires_callable():
    """Test that a direct step needs a handler or method."""
    with pytest.raises(ConfigurationError):
        await DirectHandlerTask("d", {}).execute(Context())
    with pytest.raises(ConfigurationError):
        await DirectHandlerTask("d", {"handler": "not callable"}).execute(Context())
    with pytest.raises(ConfigurationError, match="does not hold a callable"):
        await DirectHandlerTask("d", {"method": "fn"}).execute(Context({"fn": 3}))


@pytest.mark.asyncio
async def test_direct_handler_wraps_errors_keeping_cause():
    """Test that handler errors are wrapped with their cause."""
    def broken(ctx):
        raise KeyError("missing")

    with pytest.raises(TaskError) as exc_info:
        await DirectHandlerTask("d", {"handler": broken}).execute(Context())

    assert isinstance(exc_info.value.cause, KeyError)


class SlowTask(IntegrationTask):
    type_id = "slow"

    async def perform(self, context):
        await asyncio.sleep(1)


@pytest.mark.asyncio
async def test_integration_timeout_becomes_task_error():
    """Test that a timeout becomes a TaskError."""
    task = SlowTask("slow", {"timeout": 0.01, "retries": 0})

    with pytest.raises(TaskError, match="Integration error: timed out"):
        await task.execute(Context())


@pytest.mark.asyncio
async def test_integration_retries_transient_failures(config):
    """Test that transient failures are retried."""
    gateway = FakeGateway(reply="recovered", failures=1)
    task = LLMTask(
        "summary",
        {"prompt": "hi", "retries": 1, "retry_delay_ms": 0},
        gateway=gateway,
        settings=config,
    )

    assert await task.execute(Context()) == "recovered"
    assert len(gateway.calls) == 2


@pytest.mark.asyncio
async def test_integration_gives_up_after_retries(config):
    """Test the error after the retry budget is spent."""
    gateway = FakeGateway(failures=5)
    task = LLMTask(
        "summary",
        {"prompt": "hi", "retries": 1, "retry_delay_ms": 0},
        gateway=gateway,
        settings=config,
    )

    with pytest.raises(TaskError, match="LLM API error: provider unavailable") as exc_info:
        await task.execute(Context())

    assert isinstance(exc_info.value.cause, ConnectionError)
    assert len(gateway.calls) == 2


# ==============================================================================
# LLM
# ==============================================================================


@pytest.mark.asyncio
async def test_llm_task_builds_messages(registry, gateway):
    """Test message building with system prompt and interpolation."""
    task = _task(
        registry,
        "llm",
        prompt="Summarize {{topic}}",
        system_prompt="You are {{persona}}",
        temperature=0.2,
        model="gpt-custom",
    )

    output = await task.execute(Context({"topic": "tides", "persona": "terse"}))

    assert output == "Generated text"
    _, call = gateway.calls[0]
    assert call["messages"] == [
        {"role": "system", "content": "You are terse"},
        {"role": "user", "content": "Summarize tides"},
    ]
    assert call["model"] == "gpt-custom"
    assert call["temperature"] == 0.2
    assert call["response_format"] is None


@pytest.mark.asyncio
async def test_llm_task_json_format(config):
    """Test parsing a JSON response."""
    gateway = FakeGateway(reply='{"score": 9}')
    task = LLMTask("score", {"prompt": "rate", "format": "json"}, gateway=gateway, settings=config)

    assert await task.execute(Context()) == {"score": 9}
    assert gateway.calls[0][1]["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
async def test_llm_task_invalid_json_is_not_retried(config):
    """Invalid JSON fails at once, without retries."""
    gateway = FakeGateway(reply="not json")
    task = LLMTask("score", {"prompt": "rate", "format": "json"}, gateway=gateway, settings=config)

    with pytest.raises(TaskError, match="not valid JSON"):
        await task.execute(Context())
    assert len(gateway.calls) == 1


@pytest.mark.asyncio
async def test_llm_task_without_gateway():
    """Test an LLM step with no gateway configured."""
    task = LLMTask("summary", {"prompt": "hi"})
    with pytest.raises(ConfigurationError, match="no LLM gateway"):
        await task.execute(Context())


@pytest.mark.asyncio
async def test_llm_task_settings_defaults():
    """Test that timeout, retries and model come from settings."""
    settings = Configuration(default_llm_timeout=5.0, default_llm_retries=2, default_llm_model="m")
    task = LLMTask("summary", {"prompt": "hi"}, gateway=FakeGateway(), settings=settings)

    assert task.timeout == 5.0
    assert task.retries == 2
    assert task.model == "m"


@pytest.mark.asyncio
async def test_llm_completion_reads_context(config):
    """Test that llm_completion reads its parameters from the context."""
    gateway = FakeGateway(reply="answer")
    task = LLMCompletionTask("llm", {}, gateway=gateway, settings=config)

    output = await task.execute(Context({"prompt": "Why?", "temperature": 0.1, "max_tokens": 50}))

    assert output == {"content": "answer"}
    call = gateway.calls[0][1]
    assert call["messages"] == [{"role": "user", "content": "Why?"}]
    assert call["model"] == "gpt-test"
    assert call["temperature"] == 0.1
    assert call["max_tokens"] == 50


@pytest.mark.asyncio
async def test_llm_completion_accepts_message_lists(config):
    """Test llm_completion with a message list prompt."""
    gateway = FakeGateway()
    task = LLMCompletionTask("llm", {}, gateway=gateway, settings=config)
    messages = [{"role": "system", "content": "be brief"}, {"role": "user", "content": "hi"}]

    await task.execute(Context({"messages": messages}))

    assert gateway.calls[0][1]["messages"] == messages


@pytest.mark.asyncio
async def test_llm_completion_requires_prompt(config):
    """Test llm_completion with no prompt in the context."""
    task = LLMCompletionTask("llm", {}, gateway=FakeGateway(), settings=config)
    with pytest.raises(TaskError, match="no prompt"):
        await task.execute(Context())


# ==============================================================================
# Search, files, vector stores, images, markdown
# ==============================================================================


@pytest.mark.asyncio
async def test_web_search(registry):
    """Test a web search with an interpolated query."""
    task = _task(registry, "web_search", query="news about {{topic}}")

    output = await task.execute(Context({"topic": "rust"}))

    results = output["search_results"]
    assert results["query"] == "news about rust"
    assert results["results"] == "results for news about rust"
    assert results["citations"] == [{"url": "https://example.com"}]


@pytest.mark.asyncio
async def test_web_search_query_from_context_mapping(registry):
    """Test reading the query from a context mapping."""
    task = _task(registry, "web_search", **{"as": "found"})

    output = await task.execute(Context({"query": {"search": "tides"}}))

    assert output["found"]["query"] == "tides"


@pytest.mark.asyncio
async def test_web_search_requires_query(registry):
    """Test a web search with no query."""
    with pytest.raises(TaskError, match="query is required"):
        await _task(registry, "web_search").execute(Context())


@pytest.mark.asyncio
async def test_file_upload(registry, gateway, tmp_path):
    """Test uploading a new file."""
    path = tmp_path / "report.txt"
    path.write_text("quarterly numbers")

    output = await _task(registry, "file_upload").execute(Context({"file_path": str(path)}))

    assert output == {
        "file_id": "file-new",
        "filename": "report.txt",
        "bytes": len("quarterly numbers"),
        "existing": False,
    }
    assert [name for name, _ in gateway.calls] == ["list_files", "upload_file"]


@pytest.mark.asyncio
async def test_file_upload_reuses_existing(config, tmp_path):
    """Test reusing an uploaded file with the same name and size."""
    path = tmp_path / "report.txt"
    path.write_text("abc")

    class KnownFiles(FakeGateway):
        async def list_files(self, *, purpose=None):
            return [{"file_id": "file-old", "filename": "report.txt", "bytes": 3}]

    gateway = KnownFiles()
    task = TaskRegistry.with_defaults(gateway=gateway, settings=config).resolve(
        "file_upload", "upload", {"file_path": str(path)}
    )

    output = await task.execute(Context())

    assert output["file_id"] == "file-old"
    assert output["existing"] is True
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_file_upload_missing_file(registry, tmp_path):
    """Test uploading a path that does not exist."""
    task = _task(registry, "file_upload", file_path=str(tmp_path / "nope.txt"))
    with pytest.raises(TaskError, match="File not found"):
        await task.execute(Context())


@pytest.mark.asyncio
async def test_file_search(registry):
    """Test a vector-store file search."""
    task = _task(registry, "file_search", query="{{q}}", vector_store_ids=["vs-1"], max_results=3)

    output = await task.execute(Context({"q": "refund policy"}))

    assert output["search_results"]["query"] == "refund policy"
    assert output["search_results"]["vector_store_ids"] == ["vs-1"]
    assert output["search_results"]["results"][0]["file_id"] == "file-1"


@pytest.mark.asyncio
async def test_file_search_requires_stores(registry):
    """Test a file search with no vector stores."""
    with pytest.raises(TaskError, match="vector store IDs are required"):
        await _task(registry, "file_search", query="x").execute(Context())


@pytest.mark.asyncio
async def test_file_content_analyzes_fetched_documents(registry, gateway):
    """Each file is fetched and quoted under the rendered prompt."""
    task = _task(
        registry, "file_content", file_id="contract", prompt="List the fees in {{title}}",
        max_tokens=500,
    )

    output = await task.execute(Context({"contract": "file-9", "title": "the lease"}))

    assert output == {"analysis": "Generated text"}
    assert gateway.calls[0] == ("file_content", {"file_id": "file-9"})
    name, params = gateway.calls[1]
    assert name == "complete"
    system, user = params["messages"]
    assert system["content"] == "You are a helpful assistant for analyzing documents."
    assert user["content"].startswith("List the fees in the lease")
    assert "DOCUMENT file-9:\ncontents of file-9" in user["content"]
    assert params["max_tokens"] == 500
    assert params["temperature"] == 0.7


@pytest.mark.asyncio
async def test_file_content_falls_back_to_context_ids(registry, gateway):
    """Test that file ids default to the context's file_ids."""
    task = _task(registry, "file_content", prompt=[{"role": "user", "content": "Compare"}])

    output = await task.execute(Context({"file_ids": ["file-1", "file-2"]}))

    assert output == {"analysis": "Generated text"}
    fetched = [params["file_id"] for name, params in gateway.calls if name == "file_content"]
    assert fetched == ["file-1", "file-2"]


@pytest.mark.asyncio
async def test_file_content_requires_file_and_prompt(registry):
    """Test file_content with no file id or no prompt."""
    with pytest.raises(TaskError, match="file ID is required"):
        await _task(registry, "file_content", prompt="x").execute(Context())
    with pytest.raises(ConfigurationError, match="requires config: prompt"):
        await _task(registry, "file_content", file_id="f").execute(Context())


@pytest.mark.asyncio
async def test_assistant_quotes_search_excerpts(registry, gateway):
    """Test that search matches are quoted to the model."""
    task = _task(
        registry, "assistant", prompt="What is the refund window for {{plan}}?",
        vector_store_ids=["vs-1"], instructions="Answer briefly.",
    )

    output = await task.execute(Context({"plan": "pro"}))

    assert output == {"assistant_response": "Generated text"}
    search, complete = gateway.calls
    assert search == (
        "file_search",
        {"query": "What is the refund window for pro?", "vector_store_ids": ["vs-1"]},
    )
    system, user = complete[1]["messages"]
    assert system["content"] == "Answer briefly."
    assert "[file-1]\nmatch" in user["content"]
    assert user["content"].endswith("rather than generic advice.")


@pytest.mark.asyncio
async def test_assistant_answers_without_stores(registry, gateway):
    """With no vector store the prompt goes straight to the model."""
    output = await _task(registry, "assistant", messages=[{"role": "user", "content": "Hi"}]).execute(
        Context()
    )

    assert output == {"assistant_response": "Generated text"}
    [(name, params)] = gateway.calls
    assert name == "complete"
    assert params["messages"][1] == {"role": "user", "content": "Hi"}


@pytest.mark.asyncio
async def test_assistant_survives_search_failure_and_filters_files(config):
    """Test the search-failure fallback and the file_ids filter."""
    class FlakySearch(FakeGateway):
        async def file_search(self, query, *, vector_store_ids, max_results):
            raise ConnectionError("search down")

    task = AssistantTask("ask", {"prompt": "Q"},
                         gateway=FlakySearch(reply="A"), settings=config)
    output = await task.execute(Context({"vector_store_id": "vs-1"}))
    assert output == {"assistant_response": "A"}
    assert task.gateway.calls[0][1]["messages"][1]["content"] == "Q"

    filtered = AssistantTask("ask", {"prompt": "Q", "file_ids": ["file-2"]},
                             gateway=FakeGateway(), settings=config)
    assert await filtered.excerpts_for("Q", Context({"vector_store_ids": ["vs-1"]})) == []


@pytest.mark.asyncio
async def test_assistant_requires_prompt(registry):
    """Test an assistant step with no prompt or messages."""
    with pytest.raises(ConfigurationError, match="requires :prompt or :messages"):
        await _task(registry, "assistant").execute(Context())


@pytest.mark.asyncio
async def test_vector_store_operations(registry):
    """Test create, add_file, list and delete."""
    created = await _task(registry, "vector_store", name="docs-{{team}}").execute(
        Context({"team": "ops", "file_ids": ["f1"]})
    )
    assert created["vector_store_result"]["vector_store_id"] == "vs-1"
    assert created["vector_store_result"]["name"] == "docs-ops"

    added = await _task(registry, "vector_store", operation="add_file").execute(
        Context({"vector_store_id": "vs-1", "file_ids": ["f1", "f2"]})
    )
    assert len(added["vector_store_result"]["files"]) == 2

    deleted = await _task(registry, "vector_store", operation="delete", vector_store_id="vs-1").execute(
        Context()
    )
    assert deleted["vector_store_result"]["deleted"] is True

    listed = await _task(registry, "vector_store", operation="list").execute(Context())
    assert listed["vector_store_result"]["vector_stores"][0]["name"] == "docs"


@pytest.mark.asyncio
async def test_vector_store_rejects_unknown_operation(registry):
    """Test an unknown vector store operation."""
    with pytest.raises(ConfigurationError, match="Invalid operation"):
        await _task(registry, "vector_store", operation="merge").execute(Context())


@pytest.mark.asyncio
async def test_image_generation(registry, gateway):
    """Test image generation with an interpolated prompt."""
    task = _task(registry, "image_generation", prompt="A {{animal}} in space")

    output = await task.execute(Context({"animal": "heron"}))

    assert output["url"] == "https://img.example.com/1.png"
    assert output["prompt"] == "A heron in space"
    assert output["model"] == "dall-e-3"
    assert gateway.calls[0][1]["size"] == "1024x1024"


@pytest.mark.asyncio
async def test_image_generation_requires_prompt(registry):
    """Test image generation with no prompt."""
    with pytest.raises(ConfigurationError, match="requires config: prompt"):
        await _task(registry, "image_generation").execute(Context())


@pytest.mark.asyncio
async def test_markdown_change_tone(registry, gateway):
    """Test the change_tone instruction."""
    task = _task(registry, "markdown", operation="change_tone", tone="casual")

    output = await task.execute(Context({"content": "# Title\n\nSome text."}))

    assert output["processed_content"] == "Generated text"
    assert output["operation"] == "change_tone"
    assert output["original_length"] == len("# Title\n\nSome text.")
    prompt = gateway.calls[0][1]["messages"][0]["content"]
    assert "to be casual" in prompt
    assert "# Title" in prompt


@pytest.mark.asyncio
async def test_markdown_summarize_caps_tokens(registry, gateway):
    """Test that summarize caps max_tokens."""
    await _task(registry, "markdown", max_length=2000).execute(Context({"content": "text"}))
    assert gateway.calls[0][1]["max_tokens"] == 500


@pytest.mark.asyncio
async def test_markdown_validation(registry):
    """Test markdown operation and tone validation."""
    with pytest.raises(ConfigurationError, match="Invalid tone"):
        await _task(registry, "markdown", operation="change_tone", tone="angry").execute(
            Context({"content": "x"})
        )
    with pytest.raises(TaskError, match="content is required"):
        await _task(registry, "markdown").execute(Context())


# ==============================================================================
# Mail, records, cron, UI push
# ==============================================================================


@pytest.mark.asyncio
async def test_mail_task(registry, mailer):
    """Test delivering templated mail."""
    task = _task(
        registry,
        "mail",
        to="{{email}}",
        cc="$watchers",
        subject="Report for {{name}}",
        body="Total: {{total}}",
    )

    output = await task.execute(
        Context({"email": "ada@example.com", "watchers": ["ops@example.com"], "name": "Ada",
                 "total": 3})
    )

    message = mailer.sent[0]
    assert message.to == ("ada@example.com",)
    assert message.cc == ("ops@example.com",)
    assert message.subject == "Report for Ada"
    assert message.body == "Total: 3"
    assert output["mail_sent"] is True
    assert output["message_id"] == "<1@test>"


@pytest.mark.asyncio
async def test_mail_task_requires_recipients(registry):
    """Test mail with recipients that resolve to nothing."""
    task = _task(registry, "mail", to="$nobody", subject="s", body="b")
    with pytest.raises(ConfigurationError):
        await _task(registry, "mail", subject="s", body="b").execute(Context())
    with pytest.raises(TaskError, match="no recipients"):
        await task.execute(Context())


@pytest.mark.asyncio
async def test_record_find(registry):
    """Test loading a record by id."""
    task = _task(registry, "record_find", model="users", id="$user_id", **{"as": "user"})

    output = await task.execute(Context({"user_id": 1}))

    assert output == {"user": {"id": 1, "name": "Ada", "email": "ada@example.com", "active": True}}


@pytest.mark.asyncio
async def test_record_find_accepts_references_and_scopes(registry):
    """Test ids given as references and scoped lookups."""
    found = await _task(registry, "record_find", model="users").execute(
        Context({"id": RecordRef("users", 3)})
    )
    assert found["users"]["name"] == "Linus"

    with pytest.raises(TaskError, match="Record not found: users#2"):
        await _task(registry, "record_find", model="users", scope={"active": True}).execute(
            Context({"id": 2})
        )


@pytest.mark.asyncio
async def test_record_find_requires_id(registry):
    """Test record_find with no id in the context."""
    with pytest.raises(TaskError, match="ID value not found"):
        await _task(registry, "record_find", model="users").execute(Context())


@pytest.mark.asyncio
async def test_record_scope(registry):
    """Test querying records with conditions, order and limit."""
    task = _task(
        registry,
        "record_scope",
        model="users",
        where={"active": "$only_active", "team": "$team"},
        order="name DESC",
        limit=5,
    )

    output = await task.execute(Context({"only_active": True}))

    assert [row["name"] for row in output["users"]] == ["Linus", "Ada"]


@pytest.mark.asyncio
async def test_cron_task_schedules_recurring_job(memory_store):
    """Test that a cron step registers a recurring job."""
    scheduler = Scheduler(memory_store)
    registry = TaskRegistry.with_defaults(scheduler=scheduler)
    task = registry.resolve(
        "cron",
        "digest",
        {"workflow": "daily_digest", "schedule": "0 8 * * *", "initial_input": {"team": "$team"}},
    )

    output = await task.execute(Context({"team": "ops"}))

    assert output["status"] == "scheduled"
    assert output["workflow"] == "daily_digest"
    job = await memory_store.get_job(output["job_id"])
    assert job.cron_expression == "0 8 * * *"
    assert job.payload == {"data": {"team": "ops"}, "private_keys": []}
    assert job.scheduled_for is not None


@pytest.mark.asyncio
async def test_cron_task_rejects_bad_expression(memory_store):
    """Test a cron step with an invalid expression."""
    registry = TaskRegistry.with_defaults(scheduler=Scheduler(memory_store))
    task = registry.resolve("cron", "digest", {"workflow": "w", "schedule": "every day"})

    with pytest.raises(TaskError, match="Invalid cron expression"):
        await task.execute(Context())


@pytest.mark.asyncio
async def test_cron_task_requires_scheduler(registry):
    """Test a cron step with no scheduler."""
    with pytest.raises(ConfigurationError, match="no scheduler"):
        await _task(registry, "cron", workflow="w", schedule="* * * * *").execute(Context())


@pytest.mark.asyncio
async def test_ui_push(registry):
    """Test building a UI update payload."""
    task = _task(registry, "ui_push", target="#lead-{{id}}", content="<p>{{status}}</p>")

    output = await task.execute(Context({"id": 4, "status": "won"}))

    assert output == {"action": "replace", "target": "#lead-4", "content": "<p>won</p>"}


@pytest.mark.asyncio
async def test_ui_push_validation(registry):
    """Test UI push action and content validation."""
    removed = await _task(registry, "ui_push", target="#x", action="remove").execute(Context())
    assert removed["content"] is None

    with pytest.raises(ConfigurationError, match="Unknown UI push action"):
        await _task(registry, "ui_push", target="#x", action="explode", content="c").execute(
            Context()
        )
    with pytest.raises(ConfigurationError, match="must provide"):
        await _task(registry, "ui_push", target="#x").execute(Context())


# ==============================================================================
# Authorization
# ==============================================================================


def _draft(owner_id=1):
    return RecordRef("documents", 7, {"id": 7, "owner_id": owner_id})


@pytest.mark.asyncio
async def test_policy_allows_owner(registry):
    """Test that the owner may update the record."""
    task = _task(registry, "policy", action="update", record="doc")

    output = await task.execute(Context({"current_user": {"id": 1}, "doc": _draft()}))

    assert output == {"authorized": True, "action": "update", "user_id": 1, "record": "documents#7"}


@pytest.mark.asyncio
async def test_policy_denial_names_user_action_and_record(registry):
    """Test the denial message."""
    task = _task(registry, "policy", action="update", record="doc")

    with pytest.raises(TaskError, match=r"User 2 not authorized to update on documents#7"):
        await task.execute(Context({"current_user": {"id": 2}, "doc": _draft()}))


@pytest.mark.asyncio
async def test_policy_class_overrides_authorizer():
    """Test that policy_class bypasses the authorizer."""
    task = PolicyTask(
        "can_read", {"action": "read", "record": "doc", "user": "viewer", "policy_class": DocumentPolicy}
    )
    context = Context({"doc": {"id": 3, "kind": "documents"}})

    output = await task.execute(context.set("viewer", {"id": 5, "active": True}))
    assert output["record"] == "documents#3"

    with pytest.raises(TaskError, match="User 6 not authorized to read"):
        await task.execute(context.set("viewer", {"id": 6, "active": False}))


@pytest.mark.asyncio
async def test_policy_missing_inputs(registry):
    """Test missing user, record, policy and authorizer."""
    task = _task(registry, "policy", action="update", record="doc")

    with pytest.raises(TaskError, match="User not found in context: current_user"):
        await task.execute(Context({"doc": _draft()}))
    with pytest.raises(TaskError, match="Record not found in context: doc"):
        await task.execute(Context({"current_user": {"id": 1}}))
    with pytest.raises(TaskError, match="Authorization error: No policy registered for invoices"):
        await task.execute(
            Context({"current_user": {"id": 1}, "doc": RecordRef("invoices", 1, {"id": 1})})
        )
    with pytest.raises(ConfigurationError, match="needs an authorizer or :policy_class"):
        await PolicyTask("p", {"action": "read", "record": "doc"}).execute(Context())


class PublishWorkflow(WorkflowDefinition):
    workflow_id = "publish"
    steps = [
        step("authorize", "policy", action="update", record="doc"),
        step("publish", handler=lambda ctx: "published"),
    ]


@pytest.mark.asyncio
async def test_denied_policy_stops_the_run(engine):
    """Test that a denied policy step stops the workflow."""
    result = await engine.execute(PublishWorkflow, {"current_user": {"id": 2}, "doc": _draft()})

    assert result.is_failed
    assert result.failed_task_name == "authorize"
    assert "not authorized to update on documents#7" in result.error
    assert result.output_for("publish") is None
