"""
Task contract, registry and built-in task kinds.

Every task kind implements the same contract (pyrunbook.tasks.base.Task);
the engine dispatches through TaskRegistry and never needs to know what a
given task does.
"""

from pyrunbook.tasks.assistant import AssistantTask
from pyrunbook.tasks.base import IntegrationTask, Task
from pyrunbook.tasks.cron import CronTask
from pyrunbook.tasks.direct import DirectHandlerTask
from pyrunbook.tasks.files import FileContentTask, FileSearchTask, FileUploadTask
from pyrunbook.tasks.image import ImageGenerationTask
from pyrunbook.tasks.llm import GatewayTask, LLMCompletionTask, LLMTask
from pyrunbook.tasks.mailer import MailTask
from pyrunbook.tasks.markdown import MarkdownTask
from pyrunbook.tasks.policy import PolicyTask
from pyrunbook.tasks.records import RecordFindTask, RecordScopeTask
from pyrunbook.tasks.registry import TaskRegistry
from pyrunbook.tasks.template import interpolate, interpolate_messages
from pyrunbook.tasks.ui_push import UiPushTask
from pyrunbook.tasks.vector_store import VectorStoreTask
from pyrunbook.tasks.web_search import WebSearchTask

__all__ = [
    "Task",
    "IntegrationTask",
    "GatewayTask",
    "TaskRegistry",
    "interpolate",
    "interpolate_messages",
    "DirectHandlerTask",
    "LLMTask",
    "LLMCompletionTask",
    "WebSearchTask",
    "FileUploadTask",
    "FileSearchTask",
    "FileContentTask",
    "VectorStoreTask",
    "ImageGenerationTask",
    "MarkdownTask",
    "AssistantTask",
    "CronTask",
    "RecordFindTask",
    "RecordScopeTask",
    "MailTask",
    "PolicyTask",
    "UiPushTask",
]
