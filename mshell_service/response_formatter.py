"""
Response formatter: renders command results as operator-facing text.

Documents are printed as indented relaxed extended JSON, numbers with
thousands separators, lists of documents with a leading count line.
"""

import datetime
import math
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from bson import ObjectId, json_util
from bson.json_util import RELAXED_JSON_OPTIONS

from mshell_config import HISTORY_HINT
from script_evaluator import ScriptObject
from value_converter import convert

NO_RESULTS = "no results"
NO_OUTPUT = "(no output)"


# ---------------------- HELPERS ----------------------

def _dumps(value: Any) -> str:
    return json_util.dumps(convert(value), json_options=RELAXED_JSON_OPTIONS, indent=2)


def format_number(value: Any) -> str:
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return f"{int(value):,}"
    return f"{value:,}"


def format_document(document: Mapping) -> str:
    return _dumps(document)


def _is_document_list(value: Any) -> bool:
    # an empty result set still gets its count line
    return all(isinstance(item, Mapping) for item in value)


def format_document_list(documents: List[Dict[str, Any]]) -> str:
    lines = [f"Results: {len(documents)} document(s)"]
    lines.extend(format_document(doc) for doc in documents)
    return "\n".join(lines)


# ---------------------- RESULTS ----------------------

def format_result(value: Any) -> str:
    """Render one evaluation result."""
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, ScriptObject):
        return value.render()
    if isinstance(value, datetime.datetime):
        return f'ISODate("{value.isoformat()}")'
    if isinstance(value, ObjectId):
        return f'ObjectId("{value}")'
    if isinstance(value, Mapping):
        return format_document(value)
    if isinstance(value, (list, tuple)):
        if _is_document_list(value):
            return format_document_list(list(value))
        return _dumps(list(value))
    try:
        return _dumps(value)
    except TypeError:
        return str(value)


def format_cursor_batch(batch: List[Dict[str, Any]], has_more: bool) -> str:
    """One cursor batch, with the continuation hint when more remain."""
    if not batch:
        return NO_RESULTS
    lines = [format_document(doc) for doc in batch]
    if has_more:
        lines.append(HISTORY_HINT)
    return "\n".join(lines)


# ---------------------- SHARD OUTCOMES ----------------------

def format_shard_outcome(
    name: str,
    result: Any = None,
    error: Any = None,
    printed: Optional[List[str]] = None,
) -> str:
    """Block printed for one shard in a fan-out round.

    Lines the shard printed while running (``print``, verbose diagnostics)
    come first, so everything a shard produced stays under its header.
    """
    lines = [f"\n=== Shard: {name} ==="]
    lines.extend(printed or [])
    if error is not None:
        lines.append(f"ERROR: {error}")
    elif result is None:
        lines.append(NO_OUTPUT)
    else:
        lines.append(format_result(result))
    return "\n".join(lines)
