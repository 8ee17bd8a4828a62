"""
Canonical value converter.

One pass at the scripting boundary turns whatever the evaluator produced
(dicts, lists, regex literals, host objects) into values pymongo can put
on the wire.  Nothing downstream of ``convert`` inspects evaluator types
again.
"""

import datetime
import enum
import re
import uuid
from collections.abc import Mapping
from typing import Any, Dict, List

from bson import (
    Binary,
    Code,
    DBRef,
    Decimal128,
    Int64,
    MaxKey,
    MinKey,
    ObjectId,
    Regex,
    Timestamp,
    json_util,
)

from script_evaluator import ScriptObject, ScriptRegExp


class ValueKind(enum.Enum):
    SCALAR = "scalar"
    DOCUMENT = "document"
    ARRAY = "array"
    REGEX = "regex"
    OPAQUE = "opaque"


_SCALAR_TYPES = (
    str, int, float, bool, bytes,
    datetime.datetime, uuid.UUID,
    ObjectId, Int64, Decimal128, Binary, DBRef, Timestamp, Code,
    MinKey, MaxKey, Regex,
)

# re module flag bit -> shell option letter
_PATTERN_FLAGS = (
    (re.IGNORECASE, "i"),
    (re.MULTILINE, "m"),
    (re.DOTALL, "s"),
    (re.VERBOSE, "x"),
)


def classify(value: Any) -> ValueKind:
    """Tag a value with the kind of conversion it needs."""
    if value is None or isinstance(value, _SCALAR_TYPES):
        return ValueKind.SCALAR
    if isinstance(value, (ScriptRegExp, re.Pattern)):
        return ValueKind.REGEX
    # host proxies are opaque even if they happen to look like mappings
    if isinstance(value, ScriptObject):
        return ValueKind.OPAQUE
    if isinstance(value, Mapping):
        return ValueKind.DOCUMENT
    if isinstance(value, (list, tuple)):
        return ValueKind.ARRAY
    if hasattr(value, "source") and hasattr(value, "flags"):
        return ValueKind.REGEX
    return ValueKind.OPAQUE


# ---------------------- REGEX ----------------------

def _pattern_options(pattern: "re.Pattern") -> str:
    return "".join(letter for bit, letter in _PATTERN_FLAGS if pattern.flags & bit)


def _split_regex_text(text: str):
    """Split ``/pattern/flags`` at the last slash; ``None`` if not that shape."""
    if len(text) < 2 or not text.startswith("/"):
        return None
    last = text.rfind("/")
    if last <= 0:
        return None
    return text[1:last], text[last + 1:]


def regex_marker(value: Any) -> Dict[str, str]:
    """Flatten a regex value to ``{"$regex": pattern[, "$options": flags]}``."""
    if isinstance(value, re.Pattern):
        pattern, flags = value.pattern, _pattern_options(value)
        if isinstance(pattern, bytes):
            pattern = pattern.decode("utf-8", "replace")
    else:
        source = getattr(value, "source", None)
        flags = getattr(value, "flags", None)
        if isinstance(source, str) and isinstance(flags, str):
            pattern = source
        else:
            parts = _split_regex_text(str(value))
            if parts is None:
                return {"$regex": str(value)}
            pattern, flags = parts

    marker = {"$regex": pattern}
    if flags:
        marker["$options"] = flags
    return marker


# ---------------------- CONVERSION ----------------------

def _convert_document(value: Mapping) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, item in value.items():
        key = str(key)
        if key == "$regex" and classify(item) is ValueKind.REGEX:
            marker = regex_marker(item)
            result["$regex"] = marker["$regex"]
            # an explicit $options next to the literal wins over its flags
            if "$options" in marker and "$options" not in value:
                result["$options"] = marker["$options"]
            continue
        result[key] = convert(item)
    return result


def convert(value: Any) -> Any:
    """Convert any evaluator value into a canonical (transport-ready) value.

    Total: unrecognised foreign objects become their string form.
    """
    kind = classify(value)
    if kind is ValueKind.SCALAR:
        return value
    if kind is ValueKind.DOCUMENT:
        return _convert_document(value)
    if kind is ValueKind.ARRAY:
        return [convert(item) for item in value]
    if kind is ValueKind.REGEX:
        return regex_marker(value)
    return str(value)


# ---------------------- ARGUMENT HELPERS ----------------------

def to_document(value: Any) -> Dict[str, Any]:
    """Coerce a filter/projection/update argument to a document.

    ``None`` means an empty document; strings are parsed as extended JSON.
    """
    if value is None:
        return {}
    if isinstance(value, str):
        parsed = json_util.loads(value)
        if not isinstance(parsed, Mapping):
            raise ValueError(f"Expected a document, got: {value}")
        return convert(parsed)
    if classify(value) is ValueKind.DOCUMENT:
        return convert(value)
    raise ValueError(f"Expected a document, got {type(value).__name__}")


def to_document_list(value: Any) -> List[Dict[str, Any]]:
    """Coerce a pipeline or insertMany argument to a list of documents."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [to_document(item) for item in value]
    return [to_document(value)]


def has_update_operator(document: Mapping) -> bool:
    return any(str(key).startswith("$") for key in document)


def to_update_document(value: Any) -> Dict[str, Any]:
    """Canonical update; a bare document becomes ``{"$set": document}``."""
    document = to_document(value)
    if has_update_operator(document):
        return document
    return {"$set": document}
