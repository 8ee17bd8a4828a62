import datetime
import math

from bson import ObjectId

from response_formatter import (
    format_cursor_batch,
    format_result,
    format_shard_outcome,
)
from script_evaluator import ScriptObject, ScriptRegExp


def test_scalars():
    assert format_result("switched to db x") == "switched to db x"
    assert format_result(None) == "null"
    assert format_result(True) == "true"
    assert format_result(False) == "false"


def test_numbers_use_grouping():
    assert format_result(1234567) == "1,234,567"
    assert format_result(0) == "0"
    assert format_result(1234.0) == "1,234"
    assert format_result(1234.5) == "1,234.5"
    assert format_result(math.nan) == "NaN"


def test_document_is_indented_json():
    assert format_result({"a": 1, "b": {"c": [1, 2]}}) == (
        '{\n  "a": 1,\n  "b": {\n    "c": [\n      1,\n      2\n    ]\n  }\n}'
    )


def test_document_with_bson_values():
    oid = ObjectId("5f1d7f3e9b1e8a3f4c2b1a00")
    text = format_result({"_id": oid, "name": ScriptRegExp("x", "i")})
    assert '"$oid": "5f1d7f3e9b1e8a3f4c2b1a00"' in text
    assert '"$regex": "x"' in text


def test_document_list_has_count_line():
    text = format_result([{"a": 1}, {"a": 2}])
    lines = text.split("\n")
    assert lines[0] == "Results: 2 document(s)"
    assert text.count('"a"') == 2


def test_empty_result_set_keeps_count_line():
    assert format_result([]) == "Results: 0 document(s)"


def test_plain_lists():
    assert format_result(["a", "b"]) == '[\n  "a",\n  "b"\n]'


def test_bson_scalars():
    oid = ObjectId("5f1d7f3e9b1e8a3f4c2b1a00")
    assert format_result(oid) == 'ObjectId("5f1d7f3e9b1e8a3f4c2b1a00")'
    when = datetime.datetime(2024, 3, 1, tzinfo=datetime.timezone.utc)
    assert format_result(when) == 'ISODate("2024-03-01T00:00:00+00:00")'


def test_script_objects_render_themselves():
    class Thing(ScriptObject):
        def render(self):
            return "rendered"

    assert format_result(Thing()) == "rendered"


def test_cursor_batch():
    assert format_cursor_batch([], False) == "no results"
    text = format_cursor_batch([{"n": 1}], True)
    assert text.endswith('Type "it" for more')
    assert 'Type "it"' not in format_cursor_batch([{"n": 1}], False)


def test_shard_outcome_blocks():
    assert format_shard_outcome("s0", result=5) == "\n=== Shard: s0 ===\n5"
    assert format_shard_outcome("s1", error="boom") == "\n=== Shard: s1 ===\nERROR: boom"
    assert format_shard_outcome("s2", result=[]) == "\n=== Shard: s2 ===\nResults: 0 document(s)"
    assert format_shard_outcome("s3").endswith("(no output)")
    listed = format_shard_outcome("s4", result=[{"a": 1}])
    assert "Results: 1 document(s)" in listed


def test_shard_outcome_keeps_printed_lines_in_block():
    text = format_shard_outcome("s0", result=2, printed=["hello", "VERBOSE: countDocuments query:"])
    assert text == "\n=== Shard: s0 ===\nhello\nVERBOSE: countDocuments query:\n2"
    failed = format_shard_outcome("s1", error="boom", printed=["before"])
    assert failed == "\n=== Shard: s1 ===\nbefore\nERROR: boom"
