"""
Pytest configuration and fixtures for pyrunbook tests.

Provides storage backends, task registries, and fake collaborators
(LLM gateway, mailer, record repository, policies) so no test touches the network.
"""

import shutil
import tempfile
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
from hypothesis import strategies as st

from pyrunbook.clients.mail import MailMessage
from pyrunbook.clients.policy import PolicyAuthorizer
from pyrunbook.clients.records import RecordRef
from pyrunbook.config import Configuration
from pyrunbook.core import WorkflowDefinition, step
from pyrunbook.executor import WorkflowEngine
from pyrunbook.serialization import ContextSerializer, ReferenceLocator
from pyrunbook.storage.memory import InMemoryExecutionStore
from pyrunbook.storage.sqlite import SqliteExecutionStore
from pyrunbook.tasks import TaskRegistry

# Fake collaborators


class FakeGateway:
    """LLMGateway double recording every call."""

    def __init__(self, reply: str = "ok", failures: int = 0):
        self.reply = reply
        self.failures = failures
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def _record(self, name: str, **kwargs: Any) -> None:
        self.calls.append((name, kwargs))
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("provider unavailable")

    async def complete(self, messages, *, model, temperature=None, max_tokens=None,
                       response_format=None):
        self._record(
            "complete",
            messages=messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            response_format=response_format,
        )
        return self.reply

    async def web_search(self, query, *, model, search_context_size="medium"):
        self._record("web_search", query=query, model=model)
        return {"content": f"results for {query}", "citations": [{"url": "https://example.com"}]}

    async def generate_image(self, prompt, *, model, size, quality, response_format):
        self._record("generate_image", prompt=prompt, model=model, size=size)
        return {"url": "https://img.example.com/1.png", "b64_json": None, "revised_prompt": prompt}

    async def upload_file(self, path, *, purpose):
        self._record("upload_file", path=path, purpose=purpose)
        return {"file_id": "file-new", "filename": path.name, "bytes": path.stat().st_size}

    async def list_files(self, *, purpose=None):
        self._record("list_files", purpose=purpose)
        return []

    async def file_content(self, file_id):
        self._record("file_content", file_id=file_id)
        return f"contents of {file_id}"

    async def file_search(self, query, *, vector_store_ids, max_results):
        self._record("file_search", query=query, vector_store_ids=vector_store_ids)
        return [{"file_id": "file-1", "score": 0.9, "text": "match"}][:max_results]

    async def create_vector_store(self, name, *, file_ids=None):
        self._record("create_vector_store", name=name, file_ids=file_ids)
        return {"vector_store_id": "vs-1", "name": name, "status": "completed"}

    async def add_file_to_vector_store(self, vector_store_id, file_id):
        self._record("add_file_to_vector_store", vector_store_id=vector_store_id, file_id=file_id)
        return {"vector_store_id": vector_store_id, "file_id": file_id, "status": "completed"}

    async def delete_vector_store(self, vector_store_id):
        self._record("delete_vector_store", vector_store_id=vector_store_id)
        return {"vector_store_id": vector_store_id, "deleted": True}

    async def list_vector_stores(self):
        self._record("list_vector_stores")
        return [{"vector_store_id": "vs-1", "name": "docs", "status": "completed"}]


class FakeMailer:
    def __init__(self):
        self.sent: list[MailMessage] = []

    async def deliver(self, message: MailMessage) -> dict[str, Any]:
        self.sent.append(message)
        return {"message_id": f"<{len(self.sent)}@test>", "recipients": list(message.to)}


class FakeRepository:
    """RecordRepository over a dict of tables."""

    def __init__(self, tables: dict[str, list[dict[str, Any]]] | None = None):
        self.tables = tables or {}

    def _matches(self, row, where) -> bool:
        for column, value in (where or {}).items():
            if isinstance(value, (list, tuple, set)):
                if row.get(column) not in value:
                    return False
            elif row.get(column) != value:
                return False
        return True

    async def find(self, model, record_id, *, where=None):
        for row in self.tables.get(model, []):
            if row.get("id") == record_id and self._matches(row, where):
                return dict(row)
        return None

    async def query(self, model, *, where=None, order=None, limit=None):
        rows = [dict(r) for r in self.tables.get(model, []) if self._matches(r, where)]
        if order:
            column, _, direction = order.partition(" ")
            rows.sort(key=lambda r: r[column], reverse=direction.strip().upper() == "DESC")
        return rows[:limit] if limit is not None else rows

    async def locate(self, token_id: str) -> RecordRef | None:
        model, _, raw_id = token_id.partition("/")
        record_id = int(raw_id) if raw_id.isdigit() else raw_id
        row = await self.find(model, record_id)
        if row is None:
            return None
        return RecordRef(model=model, id=record_id, attributes=row)


class DocumentPolicy:
    """Active users may read; only the owner may update."""

    def __init__(self, user, record):
        self.user = user
        self.record = record

    def read(self):
        return self.user.get("active", False)

    async def update(self):
        return self.record.get("owner_id") == self.user.get("id")


# Fixtures


@pytest.fixture
def config() -> Configuration:
    return Configuration(api_key="sk-test", default_llm_model="gpt-test")


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway(reply="Generated text")


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository(
        {
            "users": [
                {"id": 1, "name": "Ada", "email": "ada@example.com", "active": True},
                {"id": 2, "name": "Grace", "email": "grace@example.com", "active": False},
                {"id": 3, "name": "Linus", "email": "linus@example.com", "active": True},
            ]
        }
    )


@pytest.fixture
def authorizer() -> PolicyAuthorizer:
    return PolicyAuthorizer({"documents": DocumentPolicy})


@pytest.fixture
def registry(gateway, mailer, repository, authorizer, config) -> TaskRegistry:
    """Registry with every built-in task bound to fakes."""
    return TaskRegistry.with_defaults(
        gateway=gateway,
        settings=config,
        mailer=mailer,
        repository=repository,
        authorizer=authorizer,
    )


@pytest.fixture
def engine(registry, config) -> WorkflowEngine:
    return WorkflowEngine(registry, config)


@pytest.fixture
def locator(repository) -> ReferenceLocator:
    locator = ReferenceLocator()
    locator.register(
        "record", RecordRef, identify=lambda ref: ref.token_id, locate=repository.locate
    )
    return locator


@pytest.fixture
def serializer(locator) -> ContextSerializer:
    return ContextSerializer(locator)


@pytest.fixture
async def memory_store() -> AsyncGenerator[InMemoryExecutionStore, None]:
    """In-memory store with automatic cleanup."""
    store = InMemoryExecutionStore()
    yield store
    await store.reset()


@pytest.fixture
async def sqlite_memory_store() -> AsyncGenerator[SqliteExecutionStore, None]:
    """SQLite in-memory store with automatic cleanup."""
    store = SqliteExecutionStore(":memory:")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def temp_db_path():
    """Temporary database file path with automatic cleanup."""
    tmpdir = Path(tempfile.mkdtemp())
    db_path = tmpdir / "test.db"
    yield db_path
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
async def sqlite_file_store(temp_db_path: Path) -> AsyncGenerator[SqliteExecutionStore, None]:
    store = SqliteExecutionStore(str(temp_db_path))
    await store.connect()
    yield store
    await store.close()


# Sample workflows for reuse across tests


class DoubleAddWorkflow(WorkflowDefinition):
    workflow_id = "double_add"
    steps = [
        step("double", handler=lambda ctx: ctx["input"] * 2),
        step("add_ten", handler=lambda ctx: ctx["double"] + 10),
    ]


def _boom(ctx):
    raise RuntimeError("boom")


class FailingWorkflow(WorkflowDefinition):
    workflow_id = "failing"
    steps = [
        step("success_step", handler=lambda ctx: "ok"),
        step("failing_step", handler=_boom),
        step("never_reached", handler=lambda ctx: "unreachable"),
    ]


@pytest.fixture
def sample_workflows():
    return {"double_add": DoubleAddWorkflow, "failing": FailingWorkflow}


# Hypothesis strategies

json_scalars = (
    st.none()
    | st.booleans()
    | st.integers(min_value=-(2**53), max_value=2**53)
    | st.floats(allow_nan=False, allow_infinity=False)
    | st.text(max_size=20).filter(lambda s: not s.startswith("ref://"))
)

json_values = st.recursive(
    json_scalars,
    lambda children: st.lists(children, max_size=4)
    | st.dictionaries(st.text(max_size=8), children, max_size=4),
    max_leaves=12,
)

context_keys = st.text(min_size=1, max_size=12)
