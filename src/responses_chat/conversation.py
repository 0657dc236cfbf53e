"""
Conversation state shared between the turn engine and its observers.

The store keeps two independently appended lists:

- ``chat_messages``: the display list, every item a client renders, including
  transient reasoning summaries.
- ``conversation_items``: the wire-context list, the JSON items resent to the
  service to continue the conversation.
"""

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class ToolType(str, Enum):
    WEB_SEARCH = "web_search_call"
    FILE_SEARCH = "file_search_call"
    FUNCTION = "function_call"
    MCP = "mcp_call"
    CODE_INTERPRETER = "code_interpreter_call"


class ToolStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SEARCHING = "searching"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolStatus.COMPLETED, ToolStatus.FAILED)


_STATUS_RANK = {
    ToolStatus.IN_PROGRESS: 0,
    ToolStatus.SEARCHING: 1,
    ToolStatus.COMPLETED: 2,
    ToolStatus.FAILED: 2,
}

SEARCH_TOOL_TYPES = (ToolType.WEB_SEARCH, ToolType.FILE_SEARCH)
ARGUMENT_TOOL_TYPES = (ToolType.FUNCTION, ToolType.MCP)


def normalize_annotation(annotation: Dict[str, Any]) -> Dict[str, Any]:
    """Accept both snake_case and camelCase file/container keys."""
    normalized = dict(annotation)
    file_id = annotation.get("file_id", annotation.get("fileId"))
    container_id = annotation.get("container_id", annotation.get("containerId"))
    if file_id is not None:
        normalized["file_id"] = file_id
    if container_id is not None:
        normalized["container_id"] = container_id
    normalized.pop("fileId", None)
    normalized.pop("containerId", None)
    return normalized


@dataclass
class ContentPart:
    type: str = "output_text"
    text: str = ""
    annotations: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class MessageItem:
    role: str
    content: List[ContentPart] = field(default_factory=list)
    id: Optional[str] = None
    is_summary: bool = False
    type: str = field(default="message", init=False)

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.content)

    def first_part(self) -> ContentPart:
        if not self.content:
            self.content.append(ContentPart())
        return self.content[0]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ToolCallItem:
    tool_type: ToolType
    id: Optional[str]
    status: ToolStatus = ToolStatus.IN_PROGRESS
    name: Optional[str] = None
    call_id: Optional[str] = None
    arguments: str = ""
    parsed_arguments: Any = field(default_factory=dict)
    output: Optional[str] = None
    code: Optional[str] = None
    files: List[Dict[str, Any]] = field(default_factory=list)
    search_queries: List[str] = field(default_factory=list)
    current_query: Optional[str] = None
    type: str = field(default="tool_call", init=False)

    def advance(self, status: Union[ToolStatus, str]) -> bool:
        """Move to ``status`` unless that would go backwards.

        Terminal statuses are final. Returns True when the status is now
        ``status``.
        """
        status = ToolStatus(status)
        if status == self.status:
            return True
        if self.status.is_terminal or _STATUS_RANK[status] < _STATUS_RANK[self.status]:
            logger.debug(
                f"Ignoring status change {self.status.value} -> {status.value} for {self.id}"
            )
            return False
        self.status = status
        return True

    def record_query(self, query: Optional[str]) -> None:
        if query and query not in self.search_queries:
            self.search_queries.append(query)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["tool_type"] = self.tool_type.value
        data["status"] = self.status.value
        return data


@dataclass
class ToolCatalogItem:
    id: str
    server_label: str
    tools: List[Dict[str, Any]] = field(default_factory=list)
    type: str = field(default="mcp_list_tools", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ApprovalRequestItem:
    id: str
    server_label: str
    name: str
    arguments: Optional[str] = None
    decision: Optional[bool] = None
    type: str = field(default="mcp_approval_request", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


Item = Union[MessageItem, ToolCallItem, ToolCatalogItem, ApprovalRequestItem]
Observer = Callable[["ConversationStore"], None]


class ConversationStore:
    """Single-writer conversation state with change notifications.

    The turn driver (and the reconciler it feeds) is the only writer. Any
    number of observers may subscribe; each is called with the store after
    every change.
    """

    def __init__(self, initial_message: Optional[str] = None):
        self.initial_message = initial_message
        self._observers: List[Observer] = []
        self.chat_messages: List[Item] = []
        self.conversation_items: List[Dict[str, Any]] = []
        self.is_assistant_loading = False
        self.last_response_id: Optional[str] = None
        self.response_cursor = 0
        self._seed()

    def _seed(self) -> None:
        if self.initial_message:
            self.chat_messages.append(
                MessageItem(role="assistant", content=[ContentPart(text=self.initial_message)])
            )

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer and return a function that removes it."""
        self._observers.append(observer)

        def unsubscribe():
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def notify(self) -> None:
        for observer in list(self._observers):
            try:
                observer(self)
            except Exception as e:
                logger.error(f"Error in conversation observer {observer!r}: {e}")

    def reset(self) -> None:
        """Start a new chat: drop both lists and the continuation state."""
        self.chat_messages = []
        self.conversation_items = []
        self.is_assistant_loading = False
        self.last_response_id = None
        self.response_cursor = 0
        self._seed()
        self.notify()

    def add_display_item(self, item: Item) -> None:
        self.chat_messages.append(item)

    def add_context_item(self, item: Dict[str, Any]) -> None:
        self.conversation_items.append(item)

    def set_loading(self, loading: bool) -> None:
        self.is_assistant_loading = loading

    def add_user_message(self, text: str) -> MessageItem:
        message = MessageItem(role="user", content=[ContentPart(type="input_text", text=text)])
        self.add_display_item(message)
        self.add_context_item({"role": "user", "content": text})
        self.notify()
        return message

    def record_tool_output(self, tool_call: ToolCallItem, output: str) -> None:
        """Attach a local tool result and add it to the wire-context."""
        tool_call.output = output
        self.add_context_item(
            {
                "type": "function_call_output",
                "call_id": tool_call.call_id,
                "status": "completed",
                "output": output,
            }
        )
        self.notify()

    # Lookups

    def _tool_calls(self, tool_types) -> List[ToolCallItem]:
        return [
            item
            for item in self.chat_messages
            if isinstance(item, ToolCallItem) and (not tool_types or item.tool_type in tool_types)
        ]

    def find_tool_call(self, item_id: Optional[str], *tool_types: ToolType) -> Optional[ToolCallItem]:
        """Find a tool call by id, or the newest open one when ``item_id`` is None.

        An id that no call carries yet is claimed by the newest open call of
        the given types that was added without an id.
        """
        calls = self._tool_calls(tool_types)
        for item in reversed(calls):
            if item_id is None:
                if not item.status.is_terminal:
                    return item
            elif item.id == item_id:
                return item
        if item_id is None:
            return None
        return self.adopt_tool_call(item_id, *tool_types)

    def adopt_tool_call(self, item_id: str, *tool_types: ToolType) -> Optional[ToolCallItem]:
        """Assign ``item_id`` to the newest open call that has no id yet."""
        for item in reversed(self._tool_calls(tool_types)):
            if item.id is None and not item.status.is_terminal:
                item.id = item_id
                logger.debug(f"Tool call {item.tool_type.value} adopted id {item_id}")
                return item
        return None

    def find_message(self, item_id: Optional[str], summary: bool = False) -> Optional[MessageItem]:
        if item_id is None:
            return None
        for item in reversed(self.chat_messages):
            if (
                isinstance(item, MessageItem)
                and item.id == item_id
                and item.is_summary == summary
            ):
                return item
        return None

    def find_approval(self, request_id: str) -> Optional[ApprovalRequestItem]:
        for item in self.chat_messages:
            if isinstance(item, ApprovalRequestItem) and item.id == request_id:
                return item
        return None

    @property
    def pending_approvals(self) -> List[ApprovalRequestItem]:
        return [
            item
            for item in self.chat_messages
            if isinstance(item, ApprovalRequestItem) and item.decision is None
        ]

    def snapshot(self) -> List[Dict[str, Any]]:
        """Return the display list as JSON-ready dicts."""
        return [item.to_dict() for item in self.chat_messages]
