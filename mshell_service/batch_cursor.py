"""
Lazy batch cursor over a pymongo result stream.

Nothing touches the server until the first pull.  The stream is opened
exactly once and released exactly once: on exhaustion, on a failed pull,
on ``close()``, or (as a last resort) when the cursor is garbage collected.
"""

import weakref
from typing import Any, Dict, List, Optional

from command_translator import CommandTranslator, QueryDescriptor
from mshell_config import BATCH_SIZE
from mshell_logger import logger

_EXHAUSTED = object()


class CursorStateError(Exception):
    """Raised when a cursor builder method is used after execution."""


def _release(handle) -> None:
    """Close a pymongo cursor; runs from ``close()`` or the finalizer."""
    try:
        handle.close()
    except Exception as e:
        logger.error("[CURSOR] failed to release stream: %s", e)


class BatchCursor:

    def __init__(self, translator: CommandTranslator, descriptor: QueryDescriptor,
                 batch_size: int = BATCH_SIZE):
        self.translator = translator
        self.descriptor = descriptor
        self.batch_size = max(1, int(batch_size))
        self.docs_returned = 0
        self.executed = False
        self.closed = False
        self._has_more = True
        self._iterator = None
        self._lookahead: Any = _EXHAUSTED
        self._finalizer: Optional[weakref.finalize] = None

    # ---------------------- STREAM ----------------------

    def _open(self) -> None:
        if self.executed:
            return
        self.executed = True
        handle = self.translator.open_stream(self.descriptor)
        self._finalizer = weakref.finalize(self, _release, handle)
        self._iterator = iter(handle)
        logger.debug("[CURSOR] opened stream on %s", self.descriptor.collection)

    def _pull(self) -> Any:
        try:
            return next(self._iterator)
        except StopIteration:
            return _EXHAUSTED

    def _fill_lookahead(self) -> None:
        if self._lookahead is _EXHAUSTED:
            self._lookahead = self._pull()

    def _take(self) -> Any:
        self._fill_lookahead()
        doc, self._lookahead = self._lookahead, _EXHAUSTED
        return doc

    # ---------------------- PULLS ----------------------

    def next_batch(self) -> List[Dict[str, Any]]:
        """Up to ``batch_size`` documents; fewer only when the stream ends."""
        if self.closed:
            return []
        batch: List[Dict[str, Any]] = []
        try:
            self._open()
            while len(batch) < self.batch_size:
                doc = self._take()
                if doc is _EXHAUSTED:
                    break
                batch.append(doc)
            self._fill_lookahead()
        except Exception:
            self.close()
            raise

        self.docs_returned += len(batch)
        self._has_more = self._lookahead is not _EXHAUSTED
        if not self._has_more:
            self.close()
        return batch

    def has_more(self) -> bool:
        """State as of the last pull; never probes the stream."""
        if self.closed:
            return False
        return self._has_more

    def has_next(self) -> bool:
        if self.closed:
            return False
        try:
            self._open()
            self._fill_lookahead()
        except Exception:
            self.close()
            raise
        self._has_more = self._lookahead is not _EXHAUSTED
        if not self._has_more:
            self.close()
        return self._has_more

    def next_document(self) -> Optional[Dict[str, Any]]:
        if not self.has_next():
            return None
        doc = self._take()
        self.docs_returned += 1
        return doc

    def drain(self) -> List[Dict[str, Any]]:
        """Everything left in the stream; closes the cursor."""
        docs: List[Dict[str, Any]] = []
        while self.has_more():
            docs.extend(self.next_batch())
        return docs

    # ---------------------- LIFECYCLE ----------------------

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._has_more = False
        self._iterator = None
        self._lookahead = _EXHAUSTED
        if self._finalizer is not None:
            self._finalizer()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __repr__(self):
        state = "closed" if self.closed else ("open" if self.executed else "pending")
        return f"BatchCursor({self.descriptor.collection}, {state}, returned={self.docs_returned})"
