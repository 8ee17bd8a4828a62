"""
Command translator: typed database operations over one pymongo client.

Every argument coming from a script passes through ``value_converter``
before it reaches pymongo.  Operations that need a database return
``NO_DATABASE`` when none is selected instead of raising.
"""

import functools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from bson import json_util
from pymongo import MongoClient

from mshell_logger import logger
from value_converter import (
    convert,
    to_document,
    to_document_list,
    to_update_document,
)

NO_DATABASE = "No database selected"

# Index options forwarded to create_index; anything else is ignored
INDEX_OPTIONS = ("unique", "name", "sparse")

# ---------------------- QUERY DESCRIPTOR ----------------------


@dataclass
class QueryDescriptor:
    """Pending find: mutated by sort/limit/skip until the cursor executes."""

    collection: str
    filter: Dict[str, Any] = field(default_factory=dict)
    projection: Optional[Dict[str, Any]] = None
    sort: Optional[Dict[str, Any]] = None
    limit: Optional[int] = None
    skip: Optional[int] = None

    def find_kwargs(self) -> Dict[str, Any]:
        """pymongo ``find`` keyword arguments; unset options are omitted."""
        kwargs: Dict[str, Any] = {"filter": self.filter}
        if self.projection:
            kwargs["projection"] = self.projection
        if self.sort:
            kwargs["sort"] = list(self.sort.items())
        if self.limit is not None:
            kwargs["limit"] = int(self.limit)
        if self.skip is not None:
            kwargs["skip"] = int(self.skip)
        return kwargs


def _requires_database(method: Callable) -> Callable:
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        if self.database_name is None:
            return NO_DATABASE
        return method(self, *args, **kwargs)
    return wrapper


# ---------------------- TRANSLATOR ----------------------

class CommandTranslator:
    """Owns the active database selection for one client connection."""

    def __init__(
        self,
        client: MongoClient,
        database_name: Optional[str] = None,
        verbose: bool = False,
        owns_client: bool = False,
        echo: Callable[[str], Any] = print,
    ):
        self.client = client
        self.database_name = database_name
        self.verbose = verbose
        self.owns_client = owns_client
        self.echo = echo
        self._closed = False

    # -- database selection --

    def use_database(self, name: str) -> str:
        self.database_name = name
        logger.info("[USE] switched to database %s", name)
        return f"switched to db {name}"

    def current_database_name(self) -> Optional[str]:
        return self.database_name

    @property
    def database(self):
        return self.client[self.database_name]

    def _collection(self, name: str):
        return self.database[name]

    # -- database level --

    def list_database_names(self) -> List[str]:
        return self.client.list_database_names()

    @_requires_database
    def get_collection_names(self) -> List[str]:
        return sorted(self.database.list_collection_names())

    @_requires_database
    def create_collection(self, name: str) -> str:
        self.database.create_collection(name)
        return f"Collection created: {name}"

    @_requires_database
    def drop_database(self) -> str:
        name = self.database_name
        self.client.drop_database(name)
        return f"Database dropped: {name}"

    @_requires_database
    def drop_collection(self, name: str) -> bool:
        self.database.drop_collection(name)
        return True

    @_requires_database
    def database_stats(self) -> Dict[str, Any]:
        return self.database.command("dbStats")

    @_requires_database
    def collection_stats(self, name: str) -> Dict[str, Any]:
        return self.database.command("collStats", name)

    @_requires_database
    def run_command(self, command: Any) -> Dict[str, Any]:
        if isinstance(command, str):
            command = {command: 1}
        return self.database.command(to_document(command))

    # -- queries --

    @_requires_database
    def find(self, descriptor: QueryDescriptor) -> List[Dict[str, Any]]:
        """Eager find: the full result list."""
        cursor = self.open_stream(descriptor)
        try:
            return list(cursor)
        finally:
            cursor.close()

    def open_stream(self, descriptor: QueryDescriptor):
        """Lazy find: a live pymongo cursor for the batch cursor to drain."""
        if self.database_name is None:
            raise RuntimeError(NO_DATABASE)
        logger.debug("[FIND] %s.%s %s", self.database_name, descriptor.collection, descriptor)
        return self._collection(descriptor.collection).find(**descriptor.find_kwargs())

    @_requires_database
    def find_one(self, collection: str, filter: Any = None, projection: Any = None):
        projection_doc = to_document(projection) if projection is not None else None
        return self._collection(collection).find_one(to_document(filter), projection_doc)

    # -- writes --

    @_requires_database
    def insert_one(self, collection: str, document: Any) -> Dict[str, Any]:
        result = self._collection(collection).insert_one(to_document(document))
        return {"acknowledged": result.acknowledged, "insertedId": result.inserted_id}

    @_requires_database
    def insert_many(self, collection: str, documents: Any) -> Dict[str, Any]:
        result = self._collection(collection).insert_many(to_document_list(documents))
        return {"acknowledged": result.acknowledged, "insertedIds": list(result.inserted_ids)}

    def _update_result(self, result) -> Dict[str, Any]:
        response = {
            "acknowledged": result.acknowledged,
            "matchedCount": result.matched_count,
            "modifiedCount": result.modified_count,
        }
        if result.upserted_id is not None:
            response["upsertedId"] = result.upserted_id
        return response

    @_requires_database
    def update_one(self, collection: str, filter: Any, update: Any, upsert: bool = False) -> Dict[str, Any]:
        result = self._collection(collection).update_one(
            to_document(filter), to_update_document(update), upsert=bool(upsert)
        )
        return self._update_result(result)

    @_requires_database
    def update_many(self, collection: str, filter: Any, update: Any, upsert: bool = False) -> Dict[str, Any]:
        result = self._collection(collection).update_many(
            to_document(filter), to_update_document(update), upsert=bool(upsert)
        )
        return self._update_result(result)

    @_requires_database
    def delete_one(self, collection: str, filter: Any = None) -> Dict[str, Any]:
        result = self._collection(collection).delete_one(to_document(filter))
        return {"acknowledged": result.acknowledged, "deletedCount": result.deleted_count}

    @_requires_database
    def delete_many(self, collection: str, filter: Any = None) -> Dict[str, Any]:
        result = self._collection(collection).delete_many(to_document(filter))
        return {"acknowledged": result.acknowledged, "deletedCount": result.deleted_count}

    # -- counts --

    @_requires_database
    def count_documents(self, collection: str, filter: Any = None) -> int:
        filter_doc = to_document(filter)
        if self.verbose:
            self.echo("VERBOSE: countDocuments query:")
            self.echo(f"  Collection: {self.database_name}.{collection}")
            self.echo(f"  Filter: {json_util.dumps(filter_doc)}")
        return self._collection(collection).count_documents(filter_doc)

    @_requires_database
    def estimated_document_count(self, collection: str) -> int:
        return self._collection(collection).estimated_document_count()

    # -- aggregation --

    @_requires_database
    def aggregate(self, collection: str, pipeline: Any) -> List[Dict[str, Any]]:
        stages = to_document_list(pipeline)
        return list(self._collection(collection).aggregate(stages))

    @_requires_database
    def distinct(self, collection: str, key: str, filter: Any = None) -> List[Any]:
        return self._collection(collection).distinct(str(key), to_document(filter))

    # -- indexes --

    @_requires_database
    def create_index(self, collection: str, keys: Any, options: Any = None) -> str:
        key_doc = to_document(keys)
        index_kwargs: Dict[str, Any] = {}
        if options is not None:
            for option, value in to_document(options).items():
                if option in INDEX_OPTIONS:
                    index_kwargs[option] = str(value) if option == "name" else bool(value)
        return self._collection(collection).create_index(list(key_doc.items()), **index_kwargs)

    @_requires_database
    def get_indexes(self, collection: str) -> List[Dict[str, Any]]:
        return [convert(dict(index)) for index in self._collection(collection).list_indexes()]

    # -- show --

    def execute_show_command(self, what: str) -> Any:
        handler = _SHOW_COMMANDS.get(str(what).lower())
        if handler is None:
            return f"Unknown show command: {what}"
        return handler(self)

    def _show_databases(self) -> List[str]:
        return self.list_database_names()

    @_requires_database
    def _show_users(self) -> List[Dict[str, Any]]:
        return self.database.command("usersInfo").get("users", [])

    @_requires_database
    def _show_profile(self) -> List[Dict[str, Any]]:
        return list(self._collection("system.profile").find())

    # -- lifecycle --

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.owns_client:
            self.client.close()


_SHOW_COMMANDS: Dict[str, Callable[[CommandTranslator], Any]] = {
    "dbs": CommandTranslator._show_databases,
    "databases": CommandTranslator._show_databases,
    "collections": CommandTranslator.get_collection_names,
    "tables": CommandTranslator.get_collection_names,
    "users": CommandTranslator._show_users,
    "profile": CommandTranslator._show_profile,
}
