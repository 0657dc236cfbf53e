import asyncio
import json
import logging
from datetime import datetime
from typing import Coroutine, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from .conversation import ConversationStore
from .driver import TurnDriver, TurnState

logger = logging.getLogger(__name__)


class UILogHandler(logging.Handler):
    """Logging handler that forwards one conversation's log records to its client."""

    def __init__(self, session: "ChatSession", conversation_id: str):
        super().__init__()
        self.session = session
        self.conversation_id = conversation_id

    def emit(self, record: logging.LogRecord) -> None:
        # Filter out debug level logs from being sent to client
        if record.levelno <= logging.DEBUG:
            return
        structured = getattr(record, "structured", None)
        if structured is None:
            return
        if structured.get("conversation_id") != self.conversation_id:
            return
        self.session.log_structured(structured)


def format_structured_log(data: dict) -> str:
    """Format a structured log record as a single line for the client."""
    log_type = data.get("log_type", "")

    formatters = {
        "tool_call": lambda: f"{data.get('tool_name', 'unknown')}({data.get('arguments', '')})",
        "tool_result": lambda: f"{data.get('tool_name', 'unknown')} executed - returned: {data.get('result', '')}",
        "user_input": lambda: data.get("content", ""),
        "turn_state": lambda: data.get("state", ""),
        "approval": lambda: (
            f"{data.get('tool_name', 'unknown')} "
            f"{'approved' if data.get('approve') else 'denied'} ({data.get('request_id', '')})"
        ),
    }

    if log_type in formatters:
        return f"{log_type.upper()}: {formatters[log_type]()}"

    # Fallback to content field
    return data.get("content", str(data))


class ChatSession:
    """One WebSocket client driving one conversation.

    Client messages are queued and handled one at a time by ``message_loop``,
    so the conversation store keeps a single writer. Every store change is
    pushed to the client as a ``conversation`` snapshot.
    """

    def __init__(self, websocket: Optional[WebSocket], driver: TurnDriver):
        self.websocket = websocket
        self.driver = driver
        self.store: ConversationStore = driver.store
        self.message_queue: asyncio.Queue = asyncio.Queue()
        self._flush_pending = False
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribe = self.store.subscribe(self._on_store_change)

    def close(self) -> None:
        self._unsubscribe()
        self.websocket = None
        for task in list(self._tasks):
            task.cancel()

    def _spawn(self, coro: Coroutine) -> bool:
        """Run ``coro`` in the background, keeping a reference until it finishes."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return False
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _send_to_ui(self, message_data: dict):
        if not self.websocket:
            return
        try:
            await self.websocket.send_text(json.dumps(message_data, ensure_ascii=False))
        except (WebSocketDisconnect, RuntimeError) as e:
            # client went away between the check and the send
            logger.debug(f"SYSTEM: dropping {message_data.get('type')} message: {e}")

    async def _send_internal_message(self, content: str, message_type: str = "error"):
        await self._send_to_ui(
            {
                "type": message_type,
                "content": content,
                "timestamp": datetime.now().isoformat(),
            }
        )

    def log_structured(self, structured_data: dict) -> None:
        self._spawn(
            self._send_internal_message(format_structured_log(structured_data), message_type="log")
        )

    def _on_store_change(self, store: ConversationStore) -> None:
        # Coalesce bursts of deltas into one snapshot per loop iteration.
        if self._flush_pending:
            return
        self._flush_pending = self._spawn(self.send_snapshot())

    async def send_snapshot(self):
        self._flush_pending = False
        await self._send_to_ui(
            {
                "type": "conversation",
                "items": self.store.snapshot(),
                "loading": self.store.is_assistant_loading,
                "state": self.driver.state.value,
            }
        )

    async def handle_client_message(self, message_data: dict):
        """Route a client message; conversation changes are queued."""
        message_type = message_data.get("type", "user_message")
        if message_type == "config":
            effective = self.driver.model_config.update(
                message_data.get("model"), message_data.get("effort")
            )
            await self._send_to_ui({"type": "config", **effective})
        elif message_type in ("user_message", "approval", "new_chat"):
            await self.message_queue.put(message_data)
        else:
            logger.warning(f"SYSTEM: ignoring client message of type {message_type!r}")

    async def message_loop(self):
        """Handle queued client messages one at a time."""
        while True:
            message_data = await self.message_queue.get()
            try:
                await self.process(message_data)
            except Exception as e:
                logger.error(f"ERROR: Error processing message: {e}")
                await self._send_internal_message(f"Sorry, I encountered an error: {str(e)}")

    async def process(self, message_data: dict):
        message_type = message_data.get("type", "user_message")
        if message_type == "new_chat":
            self.driver.new_chat()
            return

        if message_type == "approval":
            state = await self.driver.respond_to_approval(
                message_data["id"], bool(message_data.get("approve"))
            )
        else:
            content = message_data.get("content", "")
            if not content.strip():
                return
            state = await self.driver.send_user_message(content)

        if state == TurnState.FAILED and self.driver.last_error is not None:
            await self._send_internal_message(f"Request failed: {self.driver.last_error}")
