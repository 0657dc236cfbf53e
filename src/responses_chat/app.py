import asyncio
import json
import logging
import uuid
from functools import lru_cache
from typing import Any, Dict, List, Optional

import openai
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, StreamingResponse
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from .config import INITIAL_MESSAGE, Settings
from .conversation import ConversationStore
from .driver import TurnDriver
from .functions import default_registry
from .models import MODELS, effort_levels
from .relay import TurnRequest, frame_events, open_upstream
from .session import ChatSession, UILogHandler
from .transport import DirectTransport, RelayTransport

load_dotenv()

logger = logging.getLogger(__name__)

app = FastAPI()


class TurnRequestBody(BaseModel):
    input: List[Dict[str, Any]] = Field(default_factory=list)
    tools: List[Dict[str, Any]] = Field(default_factory=list)
    model: str
    reasoning: Optional[Dict[str, Any]] = None
    previous_response_id: Optional[str] = None


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache()
def _client_for(api_key: str) -> AsyncOpenAI:
    return AsyncOpenAI(api_key=api_key)


def get_openai_client(settings: Settings = Depends(get_settings)) -> Optional[AsyncOpenAI]:
    if not settings.openai_api_key:
        return None
    return _client_for(settings.openai_api_key)


def create_driver(settings: Settings, client: Optional[AsyncOpenAI], conversation_id: str) -> TurnDriver:
    """Create a driver with a fresh conversation for one chat session."""
    if settings.relay_url:
        transport = RelayTransport(settings.relay_url)
    else:
        transport = DirectTransport(client)

    return TurnDriver(
        ConversationStore(initial_message=INITIAL_MESSAGE),
        transport,
        default_registry(),
        model_config=settings.model_config(),
        tools_config=settings.tools,
        developer_prompt=settings.developer_prompt,
        continuation=settings.continuation,
        max_iterations=settings.max_iterations,
        conversation_id=conversation_id,
    )


@app.post("/api/turn_response")
async def turn_response(
    body: TurnRequestBody, client: Optional[AsyncOpenAI] = Depends(get_openai_client)
):
    """Forward a turn request upstream and republish its events as SSE."""
    if client is None:
        logger.error("OPENAI_API_KEY is not defined in environment variables")
        return JSONResponse({"error": "API key not configured"}, status_code=500)

    request = TurnRequest.from_payload(body.model_dump())
    try:
        events = await open_upstream(client, request)
    except openai.OpenAIError as e:
        logger.error(f"Error creating response: {e}")
        return JSONResponse({"error": str(e)}, status_code=502)

    return StreamingResponse(
        frame_events(events),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@app.get("/api/models")
async def list_models():
    return [
        {
            "value": info.value,
            "label": info.label,
            "description": info.description,
            "type": info.type.value,
            "effort_levels": effort_levels(info.value),
        }
        for info in MODELS
    ]


# level of the package logger before the first live session raised it
_saved_package_level = logging.NOTSET


def _attach_ui_handler(handler: UILogHandler) -> logging.Logger:
    """Forward package logs at INFO and above to a session's log handler."""
    global _saved_package_level
    package_logger = logging.getLogger("responses_chat")
    if not any(isinstance(h, UILogHandler) for h in package_logger.handlers):
        _saved_package_level = package_logger.level
    package_logger.addHandler(handler)
    if package_logger.getEffectiveLevel() > logging.INFO:
        package_logger.setLevel(logging.INFO)
    return package_logger


def _detach_ui_handler(package_logger: logging.Logger, handler: UILogHandler) -> None:
    package_logger.removeHandler(handler)
    # the last session out restores the level found by the first one in
    if not any(isinstance(h, UILogHandler) for h in package_logger.handlers):
        package_logger.setLevel(_saved_package_level)


async def handle_websocket_session(websocket: WebSocket, driver: TurnDriver, conversation_id: str):
    """Serve one chat session until the client disconnects."""
    session = ChatSession(websocket, driver)
    log_handler = UILogHandler(session, conversation_id)
    package_logger = _attach_ui_handler(log_handler)

    await session.send_snapshot()
    processing_task = asyncio.create_task(session.message_loop())

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message_data = json.loads(data)
            except json.JSONDecodeError:
                await session._send_internal_message("Messages must be JSON objects")
                continue
            if not isinstance(message_data, dict):
                await session._send_internal_message("Messages must be JSON objects")
                continue
            await session.handle_client_message(message_data)
    except WebSocketDisconnect:
        logger.info(f"SYSTEM: Client {conversation_id} disconnected")
    except Exception as e:
        logger.error(f"ERROR: WebSocket error: {e}")
    finally:
        processing_task.cancel()
        _detach_ui_handler(package_logger, log_handler)
        session.close()
        aclose = getattr(driver.transport, "aclose", None)
        if aclose is not None:
            await aclose()


@app.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    settings: Settings = Depends(get_settings),
    client: Optional[AsyncOpenAI] = Depends(get_openai_client),
):
    await websocket.accept()
    if client is None and not settings.relay_url:
        await websocket.send_text(json.dumps({"type": "error", "content": "API key not configured"}))
        await websocket.close(code=1011, reason="API key not configured")
        return

    conversation_id = str(uuid.uuid4())
    driver = create_driver(settings, client, conversation_id)
    await handle_websocket_session(websocket, driver, conversation_id)
