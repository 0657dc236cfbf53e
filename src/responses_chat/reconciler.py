"""
Turn reconciler: reduces the decoded event stream of one response into the
conversation store.

Each call to ``apply`` is one synchronous reducer step. Events are handled in
the order they arrive since later matching depends on items created by earlier
events. Unknown event kinds are ignored.
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from . import partial_json
from .conversation import (
    ARGUMENT_TOOL_TYPES,
    SEARCH_TOOL_TYPES,
    ApprovalRequestItem,
    ContentPart,
    ConversationStore,
    MessageItem,
    ToolCallItem,
    ToolCatalogItem,
    ToolStatus,
    ToolType,
    normalize_annotation,
)
from .errors import ArgumentParseError, ProtocolInvariantViolation

logger = logging.getLogger(__name__)

Event = Dict[str, Any]

_STATUS_VALUES = {status.value for status in ToolStatus}
_TOOL_TYPE_VALUES = {tool_type.value for tool_type in ToolType}


class TurnReconciler:
    """Event-driven reducer for a single response stream.

    Parameters
    ----------
    store : ConversationStore
        The conversation to mutate. The reconciler is its only writer while a
        response streams.

    Attributes
    ----------
    pending_calls : list of ToolCallItem
        Local function calls whose arguments completed and whose item is done,
        waiting to be dispatched once the stream drains.
    violations : list of ProtocolInvariantViolation
        Events that referenced items the store does not have.
    failure : str or None
        Error reported by the stream itself (``error`` / ``response.failed``).
    """

    def __init__(self, store: ConversationStore):
        self.store = store
        self.pending_calls: List[ToolCallItem] = []
        self.violations: List[ProtocolInvariantViolation] = []
        self.failure: Optional[str] = None
        self.response_id: Optional[str] = None
        self._summary_buffer = ""
        self._finalized_summaries: List[MessageItem] = []

        self._handlers: Dict[str, Callable[[str, Dict], None]] = {
            "response.created": self._on_response_created,
            "response.reasoning_summary_text.delta": self._on_summary_delta,
            "response.reasoning_summary_text.finished": self._on_summary_finished,
            "response.reasoning_summary_text.done": self._on_summary_finished,
            "response.output_text.delta": self._on_output_text,
            "response.output_text.annotation.added": self._on_output_text,
            "response.output_text.done": self._on_output_text_done,
            "response.output_item.added": self._on_item_added,
            "response.output_item.done": self._on_item_done,
            "response.function_call_arguments.delta": self._on_arguments_delta,
            "response.function_call_arguments.done": self._on_arguments_done,
            "response.mcp_call_arguments.delta": self._on_arguments_delta,
            "response.mcp_call_arguments.done": self._on_arguments_done,
            "response.web_search_call.in_progress": self._on_search_in_progress,
            "response.web_search_call.searching": self._on_search_searching,
            "response.web_search_call.completed": self._on_search_completed,
            "response.file_search_call.in_progress": self._on_search_in_progress,
            "response.file_search_call.searching": self._on_search_searching,
            "response.file_search_call.completed": self._on_search_completed,
            "response.web_search_query.added": self._on_search_query,
            "response.web_search_query.updated": self._on_search_query,
            "response.code_interpreter_call_code.delta": self._on_code_delta,
            "response.code_interpreter_call_code.done": self._on_code_done,
            "response.code_interpreter_call.completed": self._on_code_completed,
            "response.completed": self._on_response_completed,
            "response.failed": self._on_failure,
            "error": self._on_failure,
        }

    def apply(self, event: Event) -> None:
        """Reduce one event envelope into the store."""
        if "event" in event:
            kind = event.get("event")
            data = event.get("data") or {}
        else:
            kind = event.get("type")
            data = event
        if not isinstance(kind, str) or not isinstance(data, dict):
            logger.debug(f"STREAM: ignoring malformed envelope: {event!r}")
            return

        handler = self._handlers.get(kind, self._on_unknown)
        handler(kind, data)

    def _on_unknown(self, kind: str, data: Dict) -> None:
        logger.debug(f"STREAM: ignoring event {kind}")

    def _violation(self, kind: str, item_id: Optional[str], detail: str = "") -> None:
        violation = ProtocolInvariantViolation(kind, item_id, detail)
        self.violations.append(violation)
        logger.warning(f"STREAM: {violation}")

    def _changed(self) -> None:
        self.store.notify()

    # Response lifecycle

    def _on_response_created(self, kind: str, data: Dict) -> None:
        response = data.get("response") or {}
        self.response_id = response.get("id") or self.response_id

    def _on_response_completed(self, kind: str, data: Dict) -> None:
        response = data.get("response") or {}
        self.response_id = response.get("id") or self.response_id
        if self.response_id:
            self.store.last_response_id = self.response_id
            self.store.response_cursor = len(self.store.conversation_items)

        for output in response.get("output") or []:
            item_type = output.get("type")
            if item_type == "mcp_list_tools":
                if any(
                    isinstance(item, ToolCatalogItem) and item.id == output.get("id")
                    for item in self.store.chat_messages
                ):
                    continue
                self.store.add_display_item(
                    ToolCatalogItem(
                        id=output.get("id"),
                        server_label=output.get("server_label", ""),
                        tools=output.get("tools") or [],
                    )
                )
            elif item_type == "mcp_approval_request":
                if self.store.find_approval(output.get("id")) is not None:
                    continue
                self.store.add_display_item(
                    ApprovalRequestItem(
                        id=output.get("id"),
                        server_label=output.get("server_label", ""),
                        name=output.get("name", ""),
                        arguments=output.get("arguments"),
                    )
                )
        self._changed()

    def _on_failure(self, kind: str, data: Dict) -> None:
        error = data.get("error")
        if error is None and isinstance(data.get("response"), dict):
            error = data["response"].get("error")
        if isinstance(error, dict):
            message = error.get("message") or json.dumps(error)
        else:
            message = error or data.get("message") or kind
        self.failure = str(message)
        logger.error(f"STREAM: {kind}: {self.failure}")

    # Reasoning summaries

    def _summary_message(self, item_id: Optional[str]) -> Optional[MessageItem]:
        if item_id is not None:
            return self.store.find_message(item_id, summary=True)
        last = self.store.chat_messages[-1] if self.store.chat_messages else None
        if isinstance(last, MessageItem) and last.is_summary:
            return last
        return None

    def _is_finalized(self, message: MessageItem) -> bool:
        return any(message is done for done in self._finalized_summaries)

    def _on_summary_delta(self, kind: str, data: Dict) -> None:
        delta = data.get("delta")
        if isinstance(delta, str):
            self._summary_buffer += delta
        item_id = data.get("item_id")

        message = self._summary_message(item_id)
        if message is None or self._is_finalized(message):
            # a reasoning item can stream several summary parts
            message = MessageItem(role="assistant", id=item_id, is_summary=True)
            self.store.add_display_item(message)
        message.first_part().text = self._summary_buffer
        self.store.set_loading(False)
        self._changed()

    def _on_summary_finished(self, kind: str, data: Dict) -> None:
        item_id = data.get("item_id")
        text = self._summary_buffer or ""
        self._summary_buffer = ""

        message = self._summary_message(item_id)
        if message is None:
            if text or data.get("text"):
                self._violation(kind, item_id, "no reasoning summary to finalize")
            return
        if not text:
            # Finalized already, or the summary arrived only in this event.
            final = data.get("text")
            if not final or self._is_finalized(message):
                return
            text = final

        message.first_part().text = text
        self._finalized_summaries.append(message)
        self.store.add_context_item(
            {"role": "assistant", "content": [{"type": "output_text", "text": text}]}
        )
        self._changed()

    # Assistant text

    def _open_assistant_message(self, item_id: Optional[str]) -> MessageItem:
        """Find the assistant message a text event belongs to, creating it if needed."""
        message = self.store.find_message(item_id)
        if message is not None and message.role == "assistant":
            return message

        last = self.store.chat_messages[-1] if self.store.chat_messages else None
        if (
            isinstance(last, MessageItem)
            and last.role == "assistant"
            and not last.is_summary
            and (last.id is None or last.id == item_id or item_id is None)
        ):
            if last.id is None:
                last.id = item_id
            return last

        message = MessageItem(role="assistant", id=item_id)
        self.store.add_display_item(message)
        return message

    def _on_output_text(self, kind: str, data: Dict) -> None:
        message = self._open_assistant_message(data.get("item_id"))
        part = message.first_part()

        delta = data.get("delta")
        if isinstance(delta, str):
            part.text += delta

        annotation = data.get("annotation")
        if isinstance(annotation, dict):
            annotation = normalize_annotation(annotation)
            part.annotations.append(annotation)
            if annotation.get("type") == "container_file_citation":
                self._record_container_file(annotation)

        self.store.set_loading(False)
        self._changed()

    def _on_output_text_done(self, kind: str, data: Dict) -> None:
        text = data.get("text")
        if not isinstance(text, str):
            return
        message = self._open_assistant_message(data.get("item_id"))
        message.first_part().text = text
        self._changed()

    def _record_container_file(self, annotation: Dict) -> None:
        call = self.store.find_tool_call(None, ToolType.CODE_INTERPRETER)
        if call is None:
            for item in reversed(self.store.chat_messages):
                if isinstance(item, ToolCallItem) and item.tool_type == ToolType.CODE_INTERPRETER:
                    call = item
                    break
        if call is None:
            return
        file_id = annotation.get("file_id")
        if any(f.get("file_id") == file_id for f in call.files):
            return
        call.files.append(
            {
                "file_id": file_id,
                "mime_type": annotation.get("mime_type", ""),
                "container_id": annotation.get("container_id"),
                "filename": annotation.get("filename"),
            }
        )

    # Output items

    def _on_item_added(self, kind: str, data: Dict) -> None:
        item = data.get("item")
        if not isinstance(item, dict) or not item.get("type"):
            return
        self.store.set_loading(False)
        item_type = item["type"]

        if item_type == "message":
            text, annotations = _message_content(item.get("content"))
            part = ContentPart(text=text, annotations=annotations)
            self.store.add_display_item(
                MessageItem(role=item.get("role", "assistant"), content=[part], id=item.get("id"))
            )
            if text:
                wire_part = {"type": "output_text", "text": text}
                if annotations:
                    wire_part["annotations"] = annotations
                self.store.add_context_item({"role": "assistant", "content": [wire_part]})
            self._changed()
            return

        try:
            tool_type = ToolType(item_type)
        except ValueError:
            logger.debug(f"STREAM: ignoring added item of type {item_type}")
            return

        call = ToolCallItem(tool_type=tool_type, id=item.get("id"), name=item.get("name"))
        if item.get("status") in _STATUS_VALUES:
            call.advance(item["status"])
        if tool_type in ARGUMENT_TOOL_TYPES or tool_type == ToolType.WEB_SEARCH:
            call.arguments = item.get("arguments") or ""
            call.parsed_arguments = _best_effort(call.arguments, {})
        if tool_type == ToolType.CODE_INTERPRETER:
            call.code = item.get("code") or ""
        self.store.add_display_item(call)
        self._changed()

    def _on_item_done(self, kind: str, data: Dict) -> None:
        item = data.get("item")
        if not isinstance(item, dict):
            return
        item_id = item.get("id")
        item_type = item.get("type")
        call = None
        if item_type in _TOOL_TYPE_VALUES:
            call = self.store.find_tool_call(item_id, ToolType(item_type))
        if call is not None:
            call.call_id = item.get("call_id")
        self.store.add_context_item(item)

        if call is None:
            if item_type in _TOOL_TYPE_VALUES:
                self._violation(kind, item_id, f"{item_type} was never added")
            self._changed()
            return

        if call.tool_type == ToolType.FUNCTION:
            if call.name is None:
                call.name = item.get("name")
            if call.status != ToolStatus.COMPLETED and item.get("arguments") is not None:
                self._finish_arguments(kind, call, item["arguments"])
            if call.status == ToolStatus.COMPLETED and call not in self.pending_calls:
                self.pending_calls.append(call)
        elif call.tool_type == ToolType.MCP:
            call.output = item.get("output")
            call.advance(ToolStatus.FAILED if item.get("error") else ToolStatus.COMPLETED)
        else:
            if call.tool_type == ToolType.WEB_SEARCH:
                action = item.get("action") or {}
                call.record_query(action.get("query"))
            if item.get("status") in (ToolStatus.COMPLETED.value, ToolStatus.FAILED.value):
                call.advance(item["status"])
        self._changed()

    # Function and gateway arguments

    def _argument_call(self, kind: str, data: Dict) -> Optional[ToolCallItem]:
        item_id = data.get("item_id")
        call = self.store.find_tool_call(item_id, *ARGUMENT_TOOL_TYPES)
        if call is None:
            self._violation(kind, item_id)
        return call

    def _on_arguments_delta(self, kind: str, data: Dict) -> None:
        call = self._argument_call(kind, data)
        if call is None:
            return
        if call.status.is_terminal:
            logger.debug(f"STREAM: ignoring argument delta for finished call {call.id}")
            return
        call.arguments += data.get("delta") or ""
        call.parsed_arguments = _best_effort(call.arguments, call.parsed_arguments)
        self._changed()

    def _on_arguments_done(self, kind: str, data: Dict) -> None:
        call = self._argument_call(kind, data)
        if call is None:
            return
        final = data.get("arguments")
        if final is None:
            final = call.arguments
        if call.status.is_terminal and call.arguments == final:
            return
        self._finish_arguments(kind, call, final)
        self._changed()

    def _finish_arguments(self, kind: str, call: ToolCallItem, final: str) -> None:
        call.arguments = final
        try:
            call.parsed_arguments = json.loads(final) if final.strip() else {}
        except json.JSONDecodeError as e:
            logger.error(f"STREAM: {kind}: invalid final arguments for {call.id}: {e}")
            call.advance(ToolStatus.FAILED)
            return
        call.advance(ToolStatus.COMPLETED)

    # Search calls

    def _search_call(self, kind: str, data: Dict) -> Optional[ToolCallItem]:
        item_id = data.get("item_id")
        call = self.store.find_tool_call(item_id, *SEARCH_TOOL_TYPES)
        if call is None:
            self._violation(kind, item_id)
        return call

    def _on_search_in_progress(self, kind: str, data: Dict) -> None:
        call = self._search_call(kind, data)
        if call is None or not call.advance(ToolStatus.IN_PROGRESS):
            return
        if isinstance(call.parsed_arguments, dict) and call.parsed_arguments.get("query"):
            call.current_query = call.parsed_arguments["query"]
        self._changed()

    def _on_search_searching(self, kind: str, data: Dict) -> None:
        call = self._search_call(kind, data)
        if call is None or not call.advance(ToolStatus.SEARCHING):
            return
        query = data.get("query")
        if query:
            call.current_query = query
            call.record_query(query)
        self._changed()

    def _on_search_completed(self, kind: str, data: Dict) -> None:
        call = self._search_call(kind, data)
        if call is None:
            return
        if "output" in data:
            call.output = data.get("output")
        call.advance(ToolStatus.COMPLETED)
        if call.current_query:
            call.record_query(call.current_query)
            call.current_query = None
        self._changed()

    def _on_search_query(self, kind: str, data: Dict) -> None:
        call = self._search_call(kind, data)
        if call is None or call.status.is_terminal:
            return
        query = data.get("query")
        if query:
            call.current_query = query
            call.record_query(query)
            self._changed()

    # Code interpreter

    def _open_code_call(self, kind: str, data: Dict) -> Optional[ToolCallItem]:
        item_id = data.get("item_id")
        for item in reversed(self.store.chat_messages):
            if (
                isinstance(item, ToolCallItem)
                and item.tool_type == ToolType.CODE_INTERPRETER
                and item.status != ToolStatus.COMPLETED
                and (item_id is None or item.id == item_id)
            ):
                return item
        if item_id is not None:
            call = self.store.adopt_tool_call(item_id, ToolType.CODE_INTERPRETER)
            if call is not None:
                return call
        self._violation(kind, item_id, "no open code interpreter call")
        return None

    def _on_code_delta(self, kind: str, data: Dict) -> None:
        call = self._open_code_call(kind, data)
        if call is None:
            return
        call.code = (call.code or "") + (data.get("delta") or "")
        self._changed()

    def _on_code_done(self, kind: str, data: Dict) -> None:
        call = self._open_code_call(kind, data)
        if call is None:
            return
        call.code = data.get("code", call.code)
        call.advance(ToolStatus.COMPLETED)
        self._changed()

    def _on_code_completed(self, kind: str, data: Dict) -> None:
        item_id = data.get("item_id")
        call = self.store.find_tool_call(item_id, ToolType.CODE_INTERPRETER)
        if call is None:
            self._violation(kind, item_id)
            return
        call.advance(ToolStatus.COMPLETED)
        self._changed()


def _best_effort(arguments: str, fallback: Any) -> Any:
    """Decode streaming arguments, keeping ``fallback`` while they are not closable."""
    if not arguments:
        return fallback
    try:
        return partial_json.decode(arguments)
    except ArgumentParseError:
        return fallback


def _message_content(content: Any):
    """Collect text and annotations from an API message item's content."""
    if isinstance(content, dict):
        content = [content]
    if not isinstance(content, list):
        return "", []
    text = ""
    annotations = []
    for part in content:
        if not isinstance(part, dict):
            continue
        text += part.get("text") or ""
        annotations.extend(normalize_annotation(a) for a in part.get("annotations") or [])
    return text, annotations
