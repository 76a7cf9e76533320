"""Manager roster loaded from a static JSON file."""

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

ANALYSIS_MAX_LENGTH = 4000

# C0/C1 control characters except newline, which separates paragraphs
_CONTROL_CHARS = re.compile(r"[\x00-\x09\x0b-\x1f\x7f-\x9f]")


def clean_analysis(text: Any, max_length: int = ANALYSIS_MAX_LENGTH) -> str | None:
    """Strip control characters and cap length; blank text becomes None."""
    if text is None:
        return None
    text = _CONTROL_CHARS.sub("", str(text))
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text.strip() or None


@dataclass(frozen=True)
class Manager:
    """One leaderboard participant and the stock they picked."""

    name: str
    stock_symbol: str
    analysis: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "stock_symbol", self.stock_symbol.upper().strip())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Manager":
        return cls(
            name=str(data["name"]),
            stock_symbol=str(data["stockSymbol"]),
            analysis=clean_analysis(data.get("analysis")),
        )


def load_managers(path: str | Path | None = None) -> list[Manager]:
    """
    Load the roster from managers.json (MANAGERS_FILE overrides the path).

    A missing or malformed file yields an empty roster; bad entries are skipped.
    """
    path = Path(path or os.environ.get("MANAGERS_FILE", "managers.json"))
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Error loading {path}: {e}")
        return []

    managers: list[Manager] = []
    for item in raw if isinstance(raw, list) else []:
        try:
            managers.append(Manager.from_dict(item))
        except (KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Skipping malformed manager entry {item!r}: {e}")
    return managers
