"""
Helpers shared by the reasoning client and the replay CLI.

``safe_json_serialize`` flattens decision payloads (enums, numpy scalars,
pandas timestamps, dataclasses) into plain JSON types. ``extract_json``
recovers the object a language model wrapped in prose or code fences.
"""

import json
import logging
import re
from collections.abc import Iterator
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

import numpy as np
import pandas as pd

logger = logging.getLogger("reengage.outreach.utils")

_FENCE = re.compile(r"```(?:json)?\s*\n(.*?)\n```", re.DOTALL)
_OUTER_BRACES = re.compile(r"\{.*\}", re.DOTALL)

# Leaf conversions, checked in order; pd.Timestamp subclasses datetime
_SCALARS: tuple[tuple[type | tuple[type, ...], Any], ...] = (
    (Enum, lambda v: v.value),
    (np.bool_, bool),
    (np.integer, int),
    (np.floating, float),
    (np.ndarray, lambda v: v.tolist()),
    ((datetime, date), lambda v: v.isoformat()),
    (timedelta, lambda v: v.total_seconds()),
    (pd.DataFrame, lambda v: v.to_dict(orient="records")),
    (pd.Series, lambda v: v.to_dict()),
)


def safe_json_serialize(obj: Any) -> Any:
    """Recursively convert ``obj`` into something ``json.dumps`` accepts.

    Objects exposing ``to_dict()`` (all outreach models do) are serialized
    through it; other dataclasses go through ``asdict``.
    """
    for kind, convert in _SCALARS:
        if isinstance(obj, kind):
            converted = convert(obj)
            return converted if converted is obj else safe_json_serialize(converted)

    if isinstance(obj, dict):
        return {key: safe_json_serialize(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [safe_json_serialize(item) for item in obj]
    if callable(getattr(obj, "to_dict", None)):
        return safe_json_serialize(obj.to_dict())
    if is_dataclass(obj) and not isinstance(obj, type):
        return safe_json_serialize(asdict(obj))
    return obj


def _json_candidates(content: str) -> Iterator[str]:
    yield content
    yield from _FENCE.findall(content)
    match = _OUTER_BRACES.search(content)
    if match:
        yield match.group()


def extract_json(content: str) -> dict | None:
    """Return the first JSON object found in a model response.

    Tries the whole text, then each fenced block, then the span between
    the outermost braces. Arrays and scalars do not count.
    """
    if not isinstance(content, str):
        return None

    for candidate in _json_candidates(content):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    logger.debug(f"No JSON object in {len(content)}-char response")
    return None


def serialize_results(results: dict) -> str:
    return json.dumps(safe_json_serialize(results), indent=2)
