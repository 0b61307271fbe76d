"""
Tool descriptors as exposed to an LLM tool-calling API.

Servers describe tools with arbitrary property names; LLM APIs only accept
``[a-zA-Z0-9_-]``. Keys are rewritten here, and the rewrite is recorded so
arguments coming back from the model can be mapped to the server's keys.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

MAX_TOOL_NAME_LENGTH = 64

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_SEPARATORS = re.compile(r"[\s./:\\]+")


def sanitize_key(key: str) -> str:
    """Replace every character outside ``[a-zA-Z0-9_-]`` with ``_``."""
    return _UNSAFE_CHARS.sub("_", key)


def _dedupe(candidate: str, taken: set[str] | dict[str, Any]) -> str:
    if candidate not in taken:
        return candidate
    n = 2
    while f"{candidate}_{n}" in taken:
        n += 1
    return f"{candidate}_{n}"


def sanitize_properties(properties: dict[str, Any]) -> tuple[dict[str, Any], dict[str, str]]:
    """
    Sanitize the keys of a JSON-schema ``properties`` mapping.

    Two raw keys that sanitize to the same value never overwrite each
    other: the later one gets a numeric suffix.

    Returns:
        (sanitized properties, {sanitized key: raw key}). The second
        mapping only lists keys that changed.
    """
    clean: dict[str, Any] = {}
    renamed: dict[str, str] = {}
    for raw_key, value in properties.items():
        key = _dedupe(sanitize_key(str(raw_key)), clean)
        if key != raw_key:
            logger.debug(f"Renamed schema property '{raw_key}' -> '{key}'")
            renamed[key] = raw_key
        clean[key] = value
    return clean, renamed


def external_tool_name(origin: str, name: str) -> str:
    """
    Build the externally visible name of ``name`` on server ``origin``.

    Separators collapse to ``_``, anything else unsafe is dropped, and the
    result is cut to the 64 characters LLM APIs allow.
    """
    raw = f"{origin}__{name}"
    normalized = _UNSAFE_CHARS.sub("", _SEPARATORS.sub("_", raw))
    return normalized[:MAX_TOOL_NAME_LENGTH] or "tool"


def unique_tool_name(base: str, taken: set[str] | dict[str, Any]) -> str:
    """Suffix ``base`` until it is not in ``taken``, staying within the length limit."""
    if base not in taken:
        return base
    n = 2
    while True:
        suffix = f"_{n}"
        candidate = base[: MAX_TOOL_NAME_LENGTH - len(suffix)] + suffix
        if candidate not in taken:
            return candidate
        n += 1


@dataclass
class ToolDescriptor:
    """A tool as declared by one server."""
    name: str
    description: str | None = None
    input_schema: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolDescriptor":
        if not isinstance(data, dict) or not data.get("name"):
            raise ValueError(f"Invalid tool declaration: {data!r}")
        schema = (
            data.get("inputSchema")
            or data.get("input_schema")
            or data.get("parameters")
            or {}
        )
        return cls(
            name=str(data["name"]),
            description=data.get("description") or None,
            input_schema=dict(schema),
        )

    @property
    def display_description(self) -> str:
        return self.description or f"Execute {self.name} tool"

    def sanitized_schema(self) -> tuple[dict[str, Any], dict[str, str]]:
        """The ``input_schema`` block with safe keys, plus the key renames."""
        properties, renamed = sanitize_properties(self.input_schema.get("properties") or {})
        schema: dict[str, Any] = {"type": "object", "properties": properties}

        required = self.input_schema.get("required")
        if required:
            reverse = {raw: key for key, raw in renamed.items()}
            schema["required"] = [reverse.get(key, key) for key in required]
        return schema, renamed

    def to_tool_param(self, name: str | None = None) -> dict[str, Any]:
        """
        Descriptor in LLM tool-calling format:
        ``{name, description, input_schema: {type, properties, required?}}``.
        """
        schema, _ = self.sanitized_schema()
        return {
            "name": name or self.name,
            "description": self.display_description,
            "input_schema": schema,
        }


@dataclass
class ToolResult:
    """Outcome of a dispatched tool call, errors included, as data."""
    content: str
    is_error: bool = False
    raw: Any = None

    @classmethod
    def success(cls, result: Any) -> "ToolResult":
        content = result if isinstance(result, str) else json.dumps(result, indent=2)
        return cls(content=content, raw=result)

    @classmethod
    def failure(cls, error: BaseException) -> "ToolResult":
        return cls(content=str(error), is_error=True, raw=error)

    def to_content_block(self, tool_use_id: str) -> dict[str, Any]:
        block: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": tool_use_id,
            "content": self.content,
        }
        if self.is_error:
            block["is_error"] = True
        return block
