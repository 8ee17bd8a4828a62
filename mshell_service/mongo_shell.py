"""
Interactive shell session over one connection.

``MongoShell`` wires the translator, the proxies and the evaluator
together and exposes ``evaluate`` (raw value), ``execute`` (rendered
text) and ``close``.  Continuation state for ``it`` lives in an explicit
``ShellSession`` instead of a global.
"""

import datetime
import re
import threading
import weakref
from typing import Any, Callable, Dict, List, Optional

from bson import DBRef, Decimal128, Int64, ObjectId

from batch_cursor import BatchCursor
from cluster_manager import create_client
from command_translator import CommandTranslator
from mshell_config import BATCH_SIZE, DEFAULT_DATABASE, MONGO_URI, VERBOSE
from mshell_logger import logger
from proxies import CursorProxy, DatabaseProxy, ReplicaSetProxy
from response_formatter import format_result
from script_evaluator import ScriptEvaluator

NO_CURSOR = "no cursor"
SPECIFY_DATABASE = "specify database name"
SHOW_REQUIRES_ARGUMENT = "show requires an argument"

HELP_TEXT = """\
Shell commands:
  use <db>                      switch the current database
  show dbs | collections        list databases / collections
  show users | profile          list users / profiling entries
  it                            next batch of the last cursor
  exit | quit                   leave the shell

Database:
  db.getName()  db.getCollectionNames()  db.createCollection(name)
  db.dropDatabase()  db.stats()  db.runCommand(cmd)  db.getCollection(name)

Collection (db.<name>.<method>):
  find(filter, projection)  findOne(filter, projection)
  insertOne(doc)  insertMany(docs)
  updateOne(filter, update, upsert)  updateMany(filter, update, upsert)
  deleteOne(filter)  deleteMany(filter)
  count(filter)  countDocuments(filter)  estimatedDocumentCount()
  aggregate(pipeline)  distinct(field, filter)
  createIndex(keys, options)  getIndexes()  drop()  stats()

Cursor:
  sort(spec)  limit(n)  skip(n)  count()  toArray()  hasNext()  next()  itcount()

Replica set:
  rs.status()  rs.conf()  rs.isMaster()  rs.initiate(config)  rs.stepDown(seconds)"""

# ---------------------- PREPROCESSING ----------------------

_USE_RE = re.compile(r"^use\s+([^\s;]+)\s*;?$")
_SHOW_RE = re.compile(r"^show\s+([^\s;]+)\s*;?$")
_IT_RE = re.compile(r"^it\s*;?$")
_HELP_RE = re.compile(r"^help\s*;?$")

_SHOW_INLINE_RE = re.compile(r"\bshow\s+(dbs|databases|collections|tables|users|profile)\b")
_DOTTED_COLLECTION_RE = re.compile(
    r"\bdb\.([a-zA-Z_][a-zA-Z0-9_]*\.[a-zA-Z_][a-zA-Z0-9_.]*)\.([a-zA-Z_][a-zA-Z0-9_]*)\s*\("
)


def preprocess(text: str) -> str:
    """Rewrite shell shorthands into plain script."""
    text = text.strip()
    text = _SHOW_INLINE_RE.sub(r"show('\1')", text)
    return _DOTTED_COLLECTION_RE.sub(r"db.getCollection('\1').\2(", text)


# ---------------------- SCRIPT CONSTRUCTORS ----------------------

def _object_id(value: Any = None) -> ObjectId:
    return ObjectId() if value is None else ObjectId(str(value))


def _iso_date(value: Any = None) -> datetime.datetime:
    if value is None:
        return datetime.datetime.now(datetime.timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.datetime.fromtimestamp(value / 1000.0, tz=datetime.timezone.utc)
    if isinstance(value, datetime.datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def _number_long(value: Any = 0) -> Int64:
    return Int64(int(value))


def _number_int(value: Any = 0) -> int:
    return int(value)


def _number_decimal(value: Any = "0") -> Decimal128:
    return Decimal128(str(value))


def _db_ref(collection: Any, id: Any, database: Any = None) -> DBRef:
    return DBRef(str(collection), id, None if database is None else str(database))


# ---------------------- SESSION STATE ----------------------

class ShellSession:
    """Last-cursor slot plus every batch cursor opened in this session."""

    def __init__(self):
        self.last_cursor: Optional[CursorProxy] = None
        self._cursors: List[weakref.ref] = []

    def remember(self, cursor: CursorProxy) -> None:
        self.last_cursor = cursor

    def track(self, cursor: BatchCursor) -> None:
        self._cursors = [ref for ref in self._cursors if ref() is not None and not ref().closed]
        self._cursors.append(weakref.ref(cursor))

    def continue_cursor(self) -> str:
        cursor = self.last_cursor
        if cursor is None or not cursor.has_more():
            return NO_CURSOR
        return cursor.render()

    def release_cursors(self) -> None:
        """Close tracked cursors newest first; failures are logged, not raised."""
        for ref in reversed(self._cursors):
            cursor = ref()
            if cursor is None:
                continue
            try:
                cursor.close()
            except Exception as e:
                logger.error("[SHELL] failed to close cursor: %s", e)
        self._cursors = []


# ---------------------- SHELL ----------------------

class MongoShell:

    def __init__(
        self,
        client=None,
        uri: Optional[str] = None,
        database_name: Optional[str] = DEFAULT_DATABASE,
        verbose: bool = VERBOSE,
        output: Callable[[str], Any] = print,
        batch_size: int = BATCH_SIZE,
        owns_client: Optional[bool] = None,
    ):
        if client is None:
            client = create_client(uri or MONGO_URI)
            if owns_client is None:
                owns_client = True
        self.client = client
        self.output = output
        self.session = ShellSession()
        self.translator = CommandTranslator(
            client, database_name, verbose=verbose,
            owns_client=bool(owns_client), echo=output,
        )
        self.db = DatabaseProxy(self.translator, self.session, batch_size)
        self.rs = ReplicaSetProxy(client)
        self.evaluator = ScriptEvaluator(self._builtins)
        self._context = threading.get_ident()
        self._closed = False

    def _builtins(self) -> Dict[str, Any]:
        return {
            "db": self.db,
            "rs": self.rs,
            "use": self.use,
            "show": self.show,
            "it": self.session.continue_cursor,
            "help": lambda *args: HELP_TEXT,
            "print": self._print,
            "printjson": self._print,
            "ObjectId": _object_id,
            "ISODate": _iso_date,
            "Date": _iso_date,
            "NumberLong": _number_long,
            "NumberInt": _number_int,
            "NumberDecimal": _number_decimal,
            "DBRef": _db_ref,
        }

    # -- builtin commands --

    def use(self, name: Any = None) -> str:
        if name is None or str(name).strip() == "":
            return SPECIFY_DATABASE
        return self.translator.use_database(str(name).strip())

    def show(self, what: Any = None) -> Any:
        if what is None:
            return SHOW_REQUIRES_ARGUMENT
        return self.translator.execute_show_command(str(what))

    def _print(self, *values: Any) -> None:
        self.output(" ".join(format_result(value) for value in values))

    # -- evaluation --

    def _ensure_context(self) -> None:
        """Reseed the builtin scope when called from a different thread."""
        ident = threading.get_ident()
        if ident != self._context:
            self.evaluator.reseed()
            self._context = ident
            logger.debug("[SHELL] reseeded scope for thread %s", ident)

    def evaluate(self, command: str, remember: bool = True) -> Any:
        """Evaluate one command and return its raw value."""
        text = command.strip()
        if not text:
            return None

        match = _USE_RE.match(text)
        if match:
            return self.use(match.group(1))
        match = _SHOW_RE.match(text)
        if match:
            return self.show(match.group(1))
        if _IT_RE.match(text):
            return self.session.continue_cursor()
        if _HELP_RE.match(text):
            return HELP_TEXT

        self._ensure_context()
        result = self.evaluator.evaluate(preprocess(text))
        if remember and isinstance(result, CursorProxy):
            self.session.remember(result)
        return result

    def execute(self, command: str) -> Optional[str]:
        """Evaluate and render; ``None`` when there is nothing to show."""
        result = self.evaluate(command)
        if result is None:
            return None
        return format_result(result)

    def materialize(self, value: Any) -> Any:
        """Fully read a cursor into a list; other values pass through."""
        if isinstance(value, CursorProxy):
            try:
                if value.executed:
                    return value.batch.drain()
                return value.to_array()
            finally:
                value.close()
        return value

    # -- lifecycle --

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.session.release_cursors()
        try:
            self.translator.close()
        except Exception as e:
            logger.error("[SHELL] failed to close translator: %s", e)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
