"""Runtime configuration read from the environment (and ``.env`` via python-dotenv)."""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .models import effort_levels, get_model_info

logger = logging.getLogger(__name__)

DEVELOPER_PROMPT = """
You are a helpful assistant helping users with their queries.
If they need up to date information, you can use the web search tool to search the web for relevant information.
If they ask for something that is related to their own data, use the file search tool to search their files for relevant information.
If they ask questions related to the weather, jokes or anything a registered function covers, call that function.
""".strip()

INITIAL_MESSAGE = "Hi, how can I help you?"

DEFAULT_MODEL = "gpt-4.1"
DEFAULT_EFFORT = "medium"

CONTINUATION_CONTEXT = "context"
CONTINUATION_PREVIOUS_RESPONSE = "previous_response"


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}, using {default}")
        return default


@dataclass
class ModelConfig:
    """Model selection for a chat session."""

    model: str = DEFAULT_MODEL
    reasoning_effort: str = DEFAULT_EFFORT

    def update(self, model: Optional[str] = None, effort: Optional[str] = None) -> Dict[str, str]:
        """Set model and reasoning effort with validation and clamping.

        Unknown models are ignored. The effort is clamped to the levels the
        effective model accepts; ``minimal`` maps to ``low`` where it is not
        offered. Returns the effective values that were applied.
        """
        effective_model = self.model
        if model:
            if get_model_info(model) is None:
                logger.warning(f"Ignoring unknown model {model!r}")
            else:
                effective_model = model

        allowed = effort_levels(effective_model)
        effective_effort = effort or self.reasoning_effort
        if allowed:
            if effective_effort == "minimal" and "minimal" not in allowed:
                effective_effort = "low"
            if effective_effort not in allowed:
                effective_effort = (
                    self.reasoning_effort if self.reasoning_effort in allowed else allowed[0]
                )

        self.model = effective_model
        self.reasoning_effort = effective_effort
        return {"model": effective_model, "effort": effective_effort}


@dataclass
class MCPConfig:
    server_url: str = ""
    server_label: str = ""
    skip_approval: bool = False
    allowed_tools: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.server_url and self.server_label)

    def allowed_tool_names(self) -> List[str]:
        return [t.strip() for t in self.allowed_tools.split(",") if t.strip()]


@dataclass
class ToolsConfig:
    """Which tool families are offered to the model on each turn."""

    web_search_enabled: bool = False
    web_search_location: Dict[str, str] = field(default_factory=dict)
    file_search_enabled: bool = False
    vector_store_id: Optional[str] = None
    code_interpreter_enabled: bool = False
    functions_enabled: bool = True
    mcp: MCPConfig = field(default_factory=MCPConfig)

    @classmethod
    def from_env(cls) -> "ToolsConfig":
        location = {
            key: os.getenv(f"RESPONSES_CHAT_WEB_SEARCH_{key.upper()}", "")
            for key in ("country", "region", "city")
        }
        return cls(
            web_search_enabled=_env_flag("RESPONSES_CHAT_WEB_SEARCH"),
            web_search_location={k: v for k, v in location.items() if v},
            file_search_enabled=_env_flag("RESPONSES_CHAT_FILE_SEARCH"),
            vector_store_id=os.getenv("RESPONSES_CHAT_VECTOR_STORE_ID") or None,
            code_interpreter_enabled=_env_flag("RESPONSES_CHAT_CODE_INTERPRETER"),
            functions_enabled=_env_flag("RESPONSES_CHAT_FUNCTIONS", default=True),
            mcp=MCPConfig(
                server_url=os.getenv("RESPONSES_CHAT_MCP_SERVER_URL", ""),
                server_label=os.getenv("RESPONSES_CHAT_MCP_SERVER_LABEL", ""),
                skip_approval=_env_flag("RESPONSES_CHAT_MCP_SKIP_APPROVAL"),
                allowed_tools=os.getenv("RESPONSES_CHAT_MCP_ALLOWED_TOOLS", ""),
            ),
        )


@dataclass
class Settings:
    openai_api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    reasoning_effort: str = DEFAULT_EFFORT
    continuation: str = CONTINUATION_CONTEXT
    max_iterations: int = 100
    # When set, sessions stream through this relay instead of calling upstream directly.
    relay_url: Optional[str] = None
    developer_prompt: str = DEVELOPER_PROMPT
    tools: ToolsConfig = field(default_factory=ToolsConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        continuation = os.getenv("RESPONSES_CHAT_CONTINUATION", CONTINUATION_CONTEXT)
        if continuation not in (CONTINUATION_CONTEXT, CONTINUATION_PREVIOUS_RESPONSE):
            logger.warning(f"Unknown continuation mode {continuation!r}, using {CONTINUATION_CONTEXT}")
            continuation = CONTINUATION_CONTEXT
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            model=os.getenv("RESPONSES_CHAT_MODEL", DEFAULT_MODEL),
            reasoning_effort=os.getenv("RESPONSES_CHAT_REASONING_EFFORT", DEFAULT_EFFORT),
            continuation=continuation,
            max_iterations=_env_int("RESPONSES_CHAT_MAX_ITERATIONS", 100),
            relay_url=os.getenv("RESPONSES_CHAT_RELAY_URL") or None,
            tools=ToolsConfig.from_env(),
        )

    def model_config(self) -> ModelConfig:
        config = ModelConfig()
        config.update(self.model, self.reasoning_effort)
        return config
