"""Prompt catalog for the shopping pipeline.

Prompts live in ``prompts/catalog.json`` as nested objects and are addressed
by dotted keys (``answer.prompt``). Values use ``string.Template``
placeholders.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

CATALOG_PATH = Path(__file__).resolve().parents[1] / "prompts" / "catalog.json"

# Every prompt the orchestrator and product extractor render.
REQUIRED_PROMPTS = (
    "intent.system",
    "product_queries.prompt",
    "product_extraction.system",
    "product_extraction.prompt",
    "answer.prompt",
    "placeholder.generating",
)

_prompts: dict[str, str] | None = None
_loaded_mtime_ns: int | None = None


class PromptCatalogError(ValueError):
    """The catalog file is malformed or lacks a prompt the pipeline needs."""


def _flatten(node: dict[str, Any], prefix: str, out: dict[str, str]) -> None:
    for name, value in node.items():
        key = f"{prefix}.{name}" if prefix else name
        if isinstance(value, dict):
            _flatten(value, key, out)
        elif isinstance(value, str):
            out[key] = value
        else:
            raise PromptCatalogError(f"Prompt {key} must be a string or an object")


def _catalog() -> dict[str, str]:
    """Dotted key -> template text, reloaded when the file changes."""
    global _prompts, _loaded_mtime_ns
    mtime_ns = CATALOG_PATH.stat().st_mtime_ns
    if _prompts is None or _loaded_mtime_ns != mtime_ns:
        raw = json.loads(CATALOG_PATH.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise PromptCatalogError(f"{CATALOG_PATH.name} must hold a JSON object")
        flat: dict[str, str] = {}
        _flatten(raw, "", flat)
        _prompts, _loaded_mtime_ns = flat, mtime_ns
    return _prompts


def prompt_keys() -> list[str]:
    return sorted(_catalog())


def check_catalog(required: tuple[str, ...] = REQUIRED_PROMPTS) -> list[str]:
    """Fail fast at startup when a required prompt is missing."""
    keys = set(prompt_keys())
    missing = [key for key in required if key not in keys]
    if missing:
        raise PromptCatalogError(f"Prompt catalog is missing: {', '.join(missing)}")
    return sorted(keys)


def render_prompt(key: str, **values: Any) -> str:
    text = _catalog().get(key)
    if text is None:
        raise KeyError(f"Prompt key not found: {key}")
    try:
        return Template(text).substitute(values)
    except KeyError as exc:
        raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc


def clear_prompt_cache() -> None:
    global _prompts, _loaded_mtime_ns
    _prompts = None
    _loaded_mtime_ns = None
