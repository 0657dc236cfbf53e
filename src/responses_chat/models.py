"""Catalog of selectable backend models and their capabilities."""

from enum import Enum
from typing import Dict, List, NamedTuple, Optional


class ModelType(str, Enum):
    NORMAL = "normal"
    REASONING = "reasoning"
    RESEARCH = "research"


class ModelInfo(NamedTuple):
    value: str
    label: str
    description: str
    type: ModelType


MODELS: List[ModelInfo] = [
    # Reasoning models
    ModelInfo("o3", "o3", "Standard performance model", ModelType.REASONING),
    ModelInfo("o3-pro", "o3-pro", "Enhanced professional model", ModelType.REASONING),
    ModelInfo("o4-mini", "o4-mini", "Compact flagship model", ModelType.REASONING),
    ModelInfo("gpt-5", "GPT-5", "Flagship reasoning model", ModelType.REASONING),
    # Research models
    ModelInfo("o4-mini-deep-research", "o4-mini-deep-research", "Deep research model", ModelType.RESEARCH),
    ModelInfo("o3-deep-research", "o3-deep-research", "Deep research model", ModelType.RESEARCH),
    # Normal models (no reasoning support)
    ModelInfo("codex-mini-latest", "codex-mini-latest", "Coding assistant model", ModelType.NORMAL),
    ModelInfo("gpt-4.1", "GPT-4.1", "Next-gen flagship model", ModelType.NORMAL),
    ModelInfo("gpt-4.1-mini", "GPT-4.1-mini", "Compact GPT-4.1 model", ModelType.NORMAL),
    ModelInfo("gpt-4o", "GPT-4o", "Multimodal flagship model", ModelType.NORMAL),
]

# Effort levels accepted per reasoning model; others use DEFAULT_EFFORT_LEVELS.
EFFORT_LEVELS: Dict[str, List[str]] = {
    "gpt-5": ["minimal", "low", "medium", "high"],
}
DEFAULT_EFFORT_LEVELS = ["low", "medium", "high"]


def get_model_info(model: str) -> Optional[ModelInfo]:
    for info in MODELS:
        if info.value == model:
            return info
    return None


def supports_reasoning(model: str) -> bool:
    """Only reasoning-type models accept an adjustable reasoning effort."""
    info = get_model_info(model)
    return info is not None and info.type == ModelType.REASONING


def is_research_model(model: str) -> bool:
    info = get_model_info(model)
    return info is not None and info.type == ModelType.RESEARCH


def effort_levels(model: str) -> List[str]:
    if not supports_reasoning(model):
        return []
    return EFFORT_LEVELS.get(model, DEFAULT_EFFORT_LEVELS)
