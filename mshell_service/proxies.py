"""
Proxy objects the script evaluator sees as ``db``, ``db.<collection>``,
cursors and ``rs``.

Each proxy has an explicit member table.  The database proxy has one
fallback: any other member name is a collection, built once and reused.
"""

from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from pymongo import MongoClient

from batch_cursor import BatchCursor, CursorStateError
from command_translator import NO_DATABASE, CommandTranslator, QueryDescriptor
from mshell_config import BATCH_SIZE
from mshell_logger import logger
from response_formatter import format_cursor_batch
from script_evaluator import ScriptObject, truthy
from value_converter import to_document

_MISSING = object()

DOCUMENT_REQUIRED = "Document required"
DOCUMENTS_REQUIRED = "Documents array required"
COLLECTION_NAME_REQUIRED = "Collection name required"
COMMAND_REQUIRED = "Command required"


class _Proxy(ScriptObject):

    def get_member(self, name: str) -> Any:
        logger.debug("[PROXY] %s.%s", self.script_class, name)
        return super().get_member(name)


def _upsert_flag(options: Any) -> bool:
    """``update(filter, doc, true)`` and ``update(filter, doc, {upsert: true})``."""
    if isinstance(options, Mapping):
        return truthy(options.get("upsert"))
    return truthy(options)


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


# ---------------------- CURSOR ----------------------

class CursorProxy(_Proxy):
    """Chainable cursor; runs nothing until results are pulled."""

    script_class = "Cursor"
    members = {
        "sort": "sort",
        "limit": "limit",
        "skip": "skip",
        "count": "count",
        "toArray": "to_array",
        "hasNext": "has_next",
        "next": "next",
        "pretty": "pretty",
        "close": "close",
        "itcount": "itcount",
        "toString": "render",
    }

    def __init__(self, translator: CommandTranslator, descriptor: QueryDescriptor,
                 session=None, batch_size: int = BATCH_SIZE):
        self.translator = translator
        self.descriptor = descriptor
        self.batch = BatchCursor(translator, descriptor, batch_size)
        self._materialized = False
        if session is not None:
            session.track(self.batch)

    @property
    def executed(self) -> bool:
        return self.batch.executed or self._materialized

    def _check_pending(self, method: str) -> None:
        if self.executed:
            raise CursorStateError(f"Cannot call {method}() on a cursor that has already been executed")

    # -- builders --

    def sort(self, spec: Any = None) -> "CursorProxy":
        self._check_pending("sort")
        self.descriptor.sort = to_document(spec) or None
        return self

    def limit(self, count: Any = None) -> "CursorProxy":
        self._check_pending("limit")
        self.descriptor.limit = _optional_int(count)
        return self

    def skip(self, count: Any = None) -> "CursorProxy":
        self._check_pending("skip")
        self.descriptor.skip = _optional_int(count)
        return self

    def pretty(self) -> "CursorProxy":
        return self

    # -- pulls --

    def count(self) -> int:
        """Filtered count; ignores limit and skip."""
        return self.translator.count_documents(self.descriptor.collection, self.descriptor.filter)

    def to_array(self) -> List[Dict[str, Any]]:
        self._materialized = True
        return self.translator.find(self.descriptor)

    def next_batch(self) -> List[Dict[str, Any]]:
        return self.batch.next_batch()

    def has_more(self) -> bool:
        return self.batch.has_more()

    def has_next(self) -> bool:
        return self.batch.has_next()

    def next(self) -> Optional[Dict[str, Any]]:
        return self.batch.next_document()

    def itcount(self) -> int:
        return len(self.batch.drain())

    def close(self) -> None:
        self.batch.close()

    def render(self) -> str:
        batch = self.next_batch()
        return format_cursor_batch(batch, self.has_more())

    def __repr__(self):
        return f"CursorProxy({self.descriptor!r}, executed={self.executed})"


# ---------------------- COLLECTION ----------------------

class CollectionProxy(_Proxy):

    script_class = "Collection"
    members = {
        "find": "find",
        "findOne": "find_one",
        "insert": "insert_one",
        "insertOne": "insert_one",
        "insertMany": "insert_many",
        "update": "update_one",
        "updateOne": "update_one",
        "updateMany": "update_many",
        "remove": "delete_one",
        "deleteOne": "delete_one",
        "deleteMany": "delete_many",
        "count": "count",
        "countDocuments": "count_documents",
        "estimatedDocumentCount": "estimated_document_count",
        "aggregate": "aggregate",
        "distinct": "distinct",
        "drop": "drop",
        "createIndex": "create_index",
        "getIndexes": "get_indexes",
        "stats": "stats",
        "getName": "get_name",
        "toString": "render",
    }

    def __init__(self, translator: CommandTranslator, name: str,
                 session=None, batch_size: int = BATCH_SIZE):
        self.translator = translator
        self.name = name
        self.session = session
        self.batch_size = batch_size

    def find(self, filter: Any = None, projection: Any = None):
        if self.translator.current_database_name() is None:
            return NO_DATABASE
        descriptor = QueryDescriptor(
            collection=self.name,
            filter=to_document(filter),
            projection=to_document(projection) if projection is not None else None,
        )
        return CursorProxy(self.translator, descriptor, self.session, self.batch_size)

    def find_one(self, filter: Any = None, projection: Any = None):
        return self.translator.find_one(self.name, filter, projection)

    def insert_one(self, document: Any = _MISSING):
        if document is _MISSING:
            return DOCUMENT_REQUIRED
        return self.translator.insert_one(self.name, document)

    def insert_many(self, documents: Any = _MISSING):
        if documents is _MISSING:
            return DOCUMENTS_REQUIRED
        return self.translator.insert_many(self.name, documents)

    def update_one(self, filter: Any = None, update: Any = None, options: Any = False):
        return self.translator.update_one(self.name, filter, update, _upsert_flag(options))

    def update_many(self, filter: Any = None, update: Any = None, options: Any = False):
        return self.translator.update_many(self.name, filter, update, _upsert_flag(options))

    def delete_one(self, filter: Any = None):
        return self.translator.delete_one(self.name, filter)

    def delete_many(self, filter: Any = None):
        return self.translator.delete_many(self.name, filter)

    def count(self, filter: Any = None):
        if filter is None:
            return self.translator.estimated_document_count(self.name)
        return self.translator.count_documents(self.name, filter)

    def count_documents(self, filter: Any = None):
        return self.translator.count_documents(self.name, filter)

    def estimated_document_count(self):
        return self.translator.estimated_document_count(self.name)

    def aggregate(self, *stages: Any):
        if len(stages) == 1 and isinstance(stages[0], (list, tuple)):
            pipeline = stages[0]
        else:
            pipeline = list(stages)
        return self.translator.aggregate(self.name, pipeline)

    def distinct(self, key: Any = None, filter: Any = None):
        return self.translator.distinct(self.name, key, filter)

    def drop(self):
        return self.translator.drop_collection(self.name)

    def create_index(self, keys: Any = None, options: Any = None):
        return self.translator.create_index(self.name, keys, options)

    def get_indexes(self):
        return self.translator.get_indexes(self.name)

    def stats(self):
        return self.translator.collection_stats(self.name)

    def get_name(self) -> str:
        return self.name

    def render(self) -> str:
        return f"{self.translator.current_database_name()}.{self.name}"

    def __repr__(self):
        return f"CollectionProxy({self.name!r})"


# ---------------------- DATABASE ----------------------

class DatabaseProxy(_Proxy):
    """``db``: known members first, anything else names a collection."""

    script_class = "Database"
    members = {
        "getName": "get_name",
        "getCollectionNames": "get_collection_names",
        "createCollection": "create_collection",
        "dropDatabase": "drop_database",
        "stats": "stats",
        "runCommand": "run_command",
        "getCollection": "get_collection",
        "toString": "render",
    }

    def __init__(self, translator: CommandTranslator, session=None, batch_size: int = BATCH_SIZE):
        self.translator = translator
        self.session = session
        self.batch_size = batch_size
        self._collections: Dict[str, CollectionProxy] = {}

    def collection(self, name: str) -> CollectionProxy:
        proxy = self._collections.get(name)
        if proxy is None:
            proxy = CollectionProxy(self.translator, name, self.session, self.batch_size)
            self._collections[name] = proxy
        return proxy

    def member_fallback(self, name: str) -> CollectionProxy:
        return self.collection(name)

    def __getattr__(self, name: str) -> CollectionProxy:
        if name.startswith("_"):
            raise AttributeError(name)
        return self.collection(name)

    def get_name(self):
        return self.translator.current_database_name()

    def get_collection_names(self):
        return self.translator.get_collection_names()

    def create_collection(self, name: Any = None):
        if name is None:
            return COLLECTION_NAME_REQUIRED
        return self.translator.create_collection(str(name))

    def drop_database(self):
        return self.translator.drop_database()

    def stats(self):
        return self.translator.database_stats()

    def run_command(self, command: Any = None):
        if command is None:
            return COMMAND_REQUIRED
        return self.translator.run_command(command)

    def get_collection(self, name: Any = None):
        if name is None:
            return COLLECTION_NAME_REQUIRED
        return self.collection(str(name))

    def render(self) -> str:
        return str(self.translator.current_database_name())

    def __repr__(self):
        return f"DatabaseProxy({self.translator.current_database_name()!r})"


# ---------------------- REPLICA SET ----------------------

class ReplicaSetProxy(_Proxy):
    """``rs``: admin commands whose failures come back as ``{ok: 0, errmsg}``."""

    script_class = "ReplicaSet"
    members = {
        "status": "status",
        "conf": "conf",
        "isMaster": "is_master",
        "initiate": "initiate",
        "stepDown": "step_down",
    }

    def __init__(self, client: MongoClient):
        self.client = client

    def _admin_command(self, command: str, value: Any = 1) -> Dict[str, Any]:
        try:
            return self.client.admin.command(command, value)
        except Exception as e:
            logger.error("[RS] %s failed: %s", command, e)
            return {"ok": 0, "errmsg": str(e)}

    def status(self):
        return self._admin_command("replSetGetStatus")

    def conf(self):
        response = self._admin_command("replSetGetConfig")
        return response.get("config", response)

    def is_master(self):
        return self._admin_command("isMaster")

    def initiate(self, config: Any = None):
        return self._admin_command("replSetInitiate", to_document(config))

    def step_down(self, seconds: Any = 60):
        return self._admin_command("replSetStepDown", int(seconds))

    def render(self) -> str:
        return "rs"
