"""Model catalog -- the models a user can select and their capabilities."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


@dataclass
class ModelInfo:
    """
    Describes one selectable model.

    ``reasoning`` is one of:

    * ``False`` -- no reasoning parameters are sent.
    * ``True`` -- reasoning is always on; an effort level may be sent.
    * ``[True, False]`` -- reasoning can be toggled per request.
    * a model id string -- requests are routed to that id whenever a
      reasoning effort other than ``"none"`` is selected.
    """

    id: str
    name: str = ""
    description: str = ""
    reasoning: bool | str | list[bool] = False
    vision: bool = False
    tool_use: bool = True
    extra_functions: list[str] = field(default_factory=list)
    extra_parameters: dict[str, Any] = field(default_factory=dict)
    category: str = ""

    @property
    def has_toggleable_reasoning(self) -> bool:
        return (
            isinstance(self.reasoning, list)
            and len(self.reasoning) == 2
            and self.reasoning[0] is True
            and self.reasoning[1] is False
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


DEFAULT_MODELS: list[dict[str, Any]] = [
    {
        "category": "Standard / Custom",
        "models": [
            {
                "id": "gpt-4o",
                "name": "GPT-4o",
                "description": "OpenAI's high-intelligence flagship model",
                "vision": True,
            },
            {
                "id": "gpt-3.5-turbo",
                "name": "GPT-3.5 Turbo",
                "description": "Fast, inexpensive model for simple tasks",
            },
            {
                "id": "claude-3-5-sonnet-20240620",
                "name": "Claude 3.5 Sonnet",
                "description": "Anthropic's most intelligent model",
                "vision": True,
            },
            {
                "id": "llama3",
                "name": "Llama 3 (Ollama/Local)",
                "description": "Standard model ID for local Llama 3 instances",
            },
            {
                "id": "user-defined",
                "name": "Generic Custom Model",
                "description": "Sends 'user-defined' as model ID. Use with proxies "
                "that default to a specific model.",
            },
        ],
    },
]


class ModelCatalog:
    """Registry of selectable models, constructed explicitly and injected."""

    def __init__(self, models: list[ModelInfo] | None = None) -> None:
        self._models: dict[str, ModelInfo] = {}
        for m in models or []:
            self.register(m)

    def register(self, model: ModelInfo) -> None:
        self._models[model.id] = model

    def find(self, model_id: str | None) -> ModelInfo | None:
        if not model_id:
            return None
        return self._models.get(model_id)

    def all(self) -> list[ModelInfo]:
        return list(self._models.values())

    @property
    def default_model_id(self) -> str | None:
        return next(iter(self._models), None)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_data(cls, data: list[dict[str, Any]]) -> ModelCatalog:
        """
        Build a catalog from a list of models and/or categories.

        A category is a dict with ``models``; its ``category`` name is copied
        onto each nested model.  Categories may nest.
        """
        catalog = cls()
        for model in _flatten(data, category=""):
            catalog.register(model)
        return catalog

    @classmethod
    def from_file(cls, path: str | Path | None) -> ModelCatalog:
        """
        Load a catalog from a JSON or YAML file.

        Falls back to ``DEFAULT_MODELS`` when the file is missing, unreadable
        or empty.
        """
        if path is not None:
            p = Path(path).expanduser()
            if p.is_file():
                try:
                    with p.open("r", encoding="utf-8") as f:
                        data = yaml.safe_load(f)
                except yaml.YAMLError:
                    logger.exception("Invalid models config %s, using defaults", p)
                    data = None
                if isinstance(data, list) and data:
                    return cls.from_data(data)
        return cls.from_data(DEFAULT_MODELS)


def _flatten(items: list[dict[str, Any]], category: str) -> list[ModelInfo]:
    models: list[ModelInfo] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        if isinstance(item.get("models"), list):
            models.extend(
                _flatten(item["models"], item.get("category", category))
            )
        if item.get("id"):
            models.append(_model_from_dict(item, category))
    return models


def _model_from_dict(raw: dict[str, Any], category: str) -> ModelInfo:
    return ModelInfo(
        id=raw["id"],
        name=raw.get("name") or raw["id"],
        description=raw.get("description", ""),
        reasoning=raw.get("reasoning", False),
        vision=bool(raw.get("vision", False)),
        tool_use=raw.get("tool_use") is not False,
        extra_functions=list(raw.get("extra_functions") or []),
        extra_parameters=dict(raw.get("extra_parameters") or {}),
        category=raw.get("category", category),
    )


# ---------------------------------------------------------------------------
# Parameter helpers
# ---------------------------------------------------------------------------


def effective_reasoning_effort(model: ModelInfo, saved: str | None = None) -> str:
    """
    The reasoning effort to use for *model*.

    A saved per-model choice wins; otherwise the second entry of
    ``extra_parameters["reasoning_effort"]`` is the model's default.
    """
    if saved:
        return saved
    options = model.extra_parameters.get("reasoning_effort")
    if isinstance(options, list) and len(options) > 1 and options[1]:
        return str(options[1])
    return "default"


def model_parameters(
    model: ModelInfo,
    base: dict[str, Any],
    saved_effort: str | None = None,
) -> dict[str, Any]:
    """Merge configured sampling parameters with the model's own extras."""
    effort = effective_reasoning_effort(model, saved_effort)
    params = {**base, **model.extra_parameters}
    params.pop("reasoning_effort", None)
    if model.has_toggleable_reasoning:
        params["reasoning"] = {"effort": effort, "enabled": effort != "none"}
    else:
        params["reasoning"] = {"effort": effort}
    return params
