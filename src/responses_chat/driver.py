import json
import logging
from enum import Enum
from typing import AsyncIterator, List, Optional

from .config import (
    CONTINUATION_CONTEXT,
    CONTINUATION_PREVIOUS_RESPONSE,
    DEVELOPER_PROMPT,
    ModelConfig,
    ToolsConfig,
)
from .conversation import ConversationStore, ToolCallItem
from .errors import DispatchError, TransportError, TurnInProgress
from .models import supports_reasoning
from .reconciler import TurnReconciler
from .relay import TurnRequest
from .sse import iter_events
from .tool_registry import ToolRegistry
from .tools import build_tools
from .transport import Chunk, Transport

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    TOOL_EXECUTING = "tool_executing"
    DONE = "done"
    FAILED = "failed"


RUNNING_STATES = (TurnState.REQUESTING, TurnState.STREAMING, TurnState.TOOL_EXECUTING)


class ConversationLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that automatically injects conversation_id into structured logs."""

    def __init__(self, logger, conversation_id):
        self.conversation_id = conversation_id
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        if "extra" in kwargs and "structured" in kwargs["extra"]:
            kwargs["extra"]["structured"]["conversation_id"] = self.conversation_id
        return msg, kwargs


class TurnDriver:
    """Runs turns against the remote service and keeps the store up to date.

    A turn moves through ``requesting -> streaming`` and, while the response
    asks for local function calls, ``tool_executing -> requesting`` again,
    ending in ``done`` or ``failed``. Continuations are iterations of one loop,
    so cancellation and failure are handled the same way at any depth.

    Parameters
    ----------
    store : ConversationStore
        The conversation this driver writes to.
    transport : Transport
        Issues requests and returns their SSE chunk streams.
    registry : ToolRegistry
        Handlers for local function calls.
    model_config : ModelConfig, optional
        Selected model and reasoning effort.
    tools_config : ToolsConfig, optional
        Tool families offered to the model.
    continuation : str
        ``"context"`` resends the whole wire-context each request;
        ``"previous_response"`` sends only new items with the previous
        response id.
    max_iterations : int
        Upper bound on automatic continuations within one turn.
    """

    def __init__(
        self,
        store: ConversationStore,
        transport: Transport,
        registry: ToolRegistry,
        model_config: Optional[ModelConfig] = None,
        tools_config: Optional[ToolsConfig] = None,
        developer_prompt: str = DEVELOPER_PROMPT,
        continuation: str = CONTINUATION_CONTEXT,
        max_iterations: int = 100,
        conversation_id: str = None,
    ):
        self.store = store
        self.transport = transport
        self.registry = registry
        self.model_config = model_config or ModelConfig()
        self.tools_config = tools_config or ToolsConfig()
        self.developer_prompt = developer_prompt
        self.continuation = continuation
        self.max_iterations = max_iterations
        self.state = TurnState.IDLE
        self.last_error: Optional[Exception] = None

        # Create conversation-specific logger with automatic conversation_id injection
        self.logger = ConversationLoggerAdapter(logger, conversation_id or "main")

    @property
    def is_running(self) -> bool:
        return self.state in RUNNING_STATES

    def log_item(self, item_type: str, extra: dict):
        structured = {"log_type": item_type, **extra}
        self.logger.info(
            f"{item_type.replace('_', ' ').title()} received", extra={"structured": structured}
        )

    def _set_state(self, state: TurnState) -> None:
        self.state = state
        self.log_item("turn_state", {"state": state.value})
        self.store.notify()

    def _ensure_idle(self) -> None:
        if self.is_running:
            raise TurnInProgress(f"A turn is already {self.state.value}")

    def build_request(self) -> TurnRequest:
        """Assemble the outbound request from the current wire-context."""
        model = self.model_config.model
        previous_response_id = None
        if self.continuation == CONTINUATION_PREVIOUS_RESPONSE and self.store.last_response_id:
            previous_response_id = self.store.last_response_id
            items = list(self.store.conversation_items[self.store.response_cursor :])
        else:
            items = [
                {"role": "developer", "content": self.developer_prompt},
                *self.store.conversation_items,
            ]

        reasoning = None
        if supports_reasoning(model):
            reasoning = {"effort": self.model_config.reasoning_effort, "summary": "auto"}

        return TurnRequest(
            input=items,
            model=model,
            tools=build_tools(self.tools_config, model, self.registry),
            reasoning=reasoning,
            previous_response_id=previous_response_id,
        )

    async def send_user_message(self, text: str) -> TurnState:
        """Append a user message and run a turn for it."""
        self._ensure_idle()
        self.store.add_user_message(text)
        self.log_item("user_input", {"content": text})
        return await self.run_turn()

    async def respond_to_approval(self, request_id: str, approve: bool) -> TurnState:
        """Record the operator's decision on a gateway approval request.

        An approval continues the conversation immediately; a denial is
        recorded and sent along with the next request.
        """
        self._ensure_idle()
        approval = self.store.find_approval(request_id)
        if approval is None:
            self.logger.warning(f"No approval request with id {request_id}")
            return self.state
        if approval.decision is not None:
            self.logger.warning(f"Approval request {request_id} was already answered")
            return self.state

        approval.decision = approve
        self.store.add_context_item(
            {
                "type": "mcp_approval_response",
                "approve": approve,
                "approval_request_id": request_id,
            }
        )
        self.store.notify()
        self.log_item(
            "approval", {"request_id": request_id, "tool_name": approval.name, "approve": approve}
        )
        if not approve:
            return self.state
        return await self.run_turn()

    def new_chat(self) -> None:
        self._ensure_idle()
        self.store.reset()
        self.state = TurnState.IDLE
        self.last_error = None

    async def run_turn(self) -> TurnState:
        """Run one turn, including any automatic continuations."""
        self._ensure_idle()
        self.last_error = None
        iterations = 0
        chunks: Optional[AsyncIterator[Chunk]] = None
        pending: List[ToolCallItem] = []

        self._set_state(TurnState.REQUESTING)
        try:
            while self.state in RUNNING_STATES:
                if self.state == TurnState.REQUESTING:
                    request = self.build_request()
                    self.store.set_loading(True)
                    try:
                        chunks = await self.transport.open(request)
                    except TransportError as e:
                        self._fail(e)
                        continue
                    self._set_state(TurnState.STREAMING)

                elif self.state == TurnState.STREAMING:
                    reconciler = TurnReconciler(self.store)
                    try:
                        await self._drain(chunks, reconciler)
                    except TransportError as e:
                        self._fail(e)
                        continue
                    if reconciler.failure:
                        self._fail(TransportError(reconciler.failure))
                        continue
                    pending = reconciler.pending_calls
                    self._set_state(TurnState.TOOL_EXECUTING if pending else TurnState.DONE)

                elif self.state == TurnState.TOOL_EXECUTING:
                    if not await self._execute_tool_calls(pending):
                        self._set_state(TurnState.DONE)
                        continue
                    iterations += 1
                    if iterations >= self.max_iterations:
                        self.logger.warning(
                            f"Stopping after {iterations} automatic continuations"
                        )
                        self._set_state(TurnState.DONE)
                        continue
                    self._set_state(TurnState.REQUESTING)
        finally:
            if self.state in RUNNING_STATES:
                # abandoned mid-turn; items already in the store stay there
                self.state = TurnState.FAILED
            self.store.set_loading(False)
            self.store.notify()

        return self.state

    async def _drain(self, chunks: AsyncIterator[Chunk], reconciler: TurnReconciler) -> None:
        events = iter_events(chunks)
        try:
            async for event in events:
                reconciler.apply(event)
        finally:
            await events.aclose()
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _execute_tool_calls(self, calls: List[ToolCallItem]) -> bool:
        """Dispatch local function calls; True when every call produced output."""
        succeeded = True
        for call in calls:
            self.log_item(
                "tool_call",
                {"tool_name": call.name, "arguments": call.arguments, "call_id": call.call_id},
            )
            try:
                result = await self.registry.invoke(call.name, call.parsed_arguments)
            except DispatchError as e:
                self.logger.error(f"Tool call {call.call_id} failed: {e}")
                succeeded = False
                continue
            output = json.dumps(result, default=str)
            self.store.record_tool_output(call, output)
            self.log_item("tool_result", {"tool_name": call.name, "result": output})
        return succeeded

    def _fail(self, error: Exception) -> None:
        self.last_error = error
        self.logger.error(f"Turn failed: {error}")
        self._set_state(TurnState.FAILED)
