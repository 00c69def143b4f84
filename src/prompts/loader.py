"""Access to the prompt texts shipped next to this module."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

PROMPT_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=8)
def load_prompt(name: str) -> str:
    """Return the stripped text of ``<name>`` (``.txt`` is assumed when no suffix is given)."""

    path = PROMPT_DIR / name
    if not path.suffix:
        path = path.with_suffix(".txt")
    if not path.is_file():
        raise RuntimeError(f"Prompt file not found: {path.name}")
    return path.read_text(encoding="utf-8").strip()
