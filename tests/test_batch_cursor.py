import gc
from unittest.mock import MagicMock

import pytest

from batch_cursor import BatchCursor
from command_translator import QueryDescriptor


def _cursor(stream, batch_size=20):
    translator = MagicMock()
    translator.open_stream.return_value = stream
    return translator, BatchCursor(translator, QueryDescriptor("items"), batch_size)


def test_construction_does_not_touch_the_server(make_stream):
    translator, cursor = _cursor(make_stream([{"n": 1}]))
    assert cursor.executed is False
    assert cursor.has_more() is True
    translator.open_stream.assert_not_called()


def test_stream_is_opened_exactly_once(make_stream):
    stream = make_stream([{"n": i} for i in range(45)])
    translator, cursor = _cursor(stream)

    first = cursor.next_batch()
    second = cursor.next_batch()
    third = cursor.next_batch()

    assert translator.open_stream.call_count == 1
    assert [len(first), len(second), len(third)] == [20, 20, 5]
    assert cursor.docs_returned == 45


def test_has_more_reflects_last_pull(make_stream):
    stream = make_stream([{"n": i} for i in range(25)])
    _, cursor = _cursor(stream)

    cursor.next_batch()
    assert cursor.has_more() is True
    pulled = stream.pulled
    cursor.has_more()
    assert stream.pulled == pulled

    cursor.next_batch()
    assert cursor.has_more() is False


def test_exact_multiple_of_batch_size_ends_cleanly(make_stream):
    stream = make_stream([{"n": i} for i in range(20)])
    _, cursor = _cursor(stream)
    assert len(cursor.next_batch()) == 20
    assert cursor.has_more() is False
    assert cursor.next_batch() == []


def test_exhaustion_releases_stream(make_stream):
    stream = make_stream([{"n": 1}])
    _, cursor = _cursor(stream)
    cursor.next_batch()
    assert cursor.closed is True
    assert stream.close_calls == 1


def test_close_is_idempotent(make_stream):
    stream = make_stream([{"n": i} for i in range(50)])
    _, cursor = _cursor(stream)
    cursor.next_batch()
    cursor.close()
    cursor.close()
    assert stream.close_calls == 1
    assert cursor.has_more() is False
    assert cursor.next_batch() == []


def test_close_before_execution_never_opens(make_stream):
    translator, cursor = _cursor(make_stream([]))
    cursor.close()
    assert cursor.next_batch() == []
    translator.open_stream.assert_not_called()


def test_failed_pull_releases_stream_and_propagates(make_stream):
    stream = make_stream([{"n": i} for i in range(10)], fail_after=3)
    _, cursor = _cursor(stream)
    with pytest.raises(RuntimeError, match="connection reset"):
        cursor.next_batch()
    assert cursor.closed is True
    assert stream.close_calls == 1


def test_unreachable_cursor_is_released(make_stream):
    stream = make_stream([{"n": i} for i in range(50)])
    _, cursor = _cursor(stream)
    cursor.next_batch()
    del cursor
    gc.collect()
    assert stream.close_calls == 1


def test_context_manager_closes(make_stream):
    stream = make_stream([{"n": i} for i in range(50)])
    translator = MagicMock()
    translator.open_stream.return_value = stream
    with BatchCursor(translator, QueryDescriptor("items")) as cursor:
        cursor.next_batch()
    assert stream.close_calls == 1


def test_has_next_and_next_document(make_stream):
    _, cursor = _cursor(make_stream([{"n": 1}, {"n": 2}]))
    assert cursor.has_next() is True
    assert cursor.next_document() == {"n": 1}
    assert cursor.next_document() == {"n": 2}
    assert cursor.has_next() is False
    assert cursor.next_document() is None


def test_drain_reads_everything(make_stream):
    _, cursor = _cursor(make_stream([{"n": i} for i in range(7)]), batch_size=3)
    assert len(cursor.drain()) == 7
    assert cursor.closed is True
