"""
Connection provisioning: single-target clients and the externally
supplied shard set.  Shards are never discovered, only configured.
"""

import re
from typing import Dict, List, Tuple

from pymongo import MongoClient
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError

from mshell_config import CONNECT_TIMEOUT_MS, SERVER_SELECTION_TIMEOUT_MS
from mshell_logger import logger

_CREDENTIALS_RE = re.compile(r"^(mongodb(?:\+srv)?://[^:/@]+):([^@]*)@")
_SHARD_SEPARATOR_RE = re.compile(r"[;\s]+")


def normalize_uri(raw: str) -> str:
    """Accept ``host:port`` shorthands by adding the ``mongodb://`` scheme."""
    uri = raw.strip()
    if "://" not in uri:
        uri = f"mongodb://{uri}"
    return uri


def mask_uri(uri: str) -> str:
    """Hide the password part of a connection string."""
    return _CREDENTIALS_RE.sub(r"\1:****@", uri)


def create_client(mongo_uri: str) -> MongoClient:
    """MongoClient with the connection-level timeouts; no round trip yet."""
    return MongoClient(
        normalize_uri(mongo_uri),
        serverSelectionTimeoutMS=SERVER_SELECTION_TIMEOUT_MS,
        connectTimeoutMS=CONNECT_TIMEOUT_MS,
    )


def connect_to_cluster(mongo_uri: str) -> MongoClient:
    """Create and test a MongoClient connection."""
    client = create_client(mongo_uri)
    try:
        client.admin.command("ping")  # force connection test
        return client
    except ServerSelectionTimeoutError:
        client.close()
        raise Exception("Connection timed out. Check your MongoDB URI and network.")
    except ConnectionFailure:
        client.close()
        raise Exception("Failed to connect to MongoDB cluster")


# ---------------------- SHARDS ----------------------

def parse_shard_uris(text: str) -> List[Tuple[str, str]]:
    """Parse ``name=uri`` pairs separated by ``;`` or whitespace."""
    shards: List[Tuple[str, str]] = []
    for entry in _SHARD_SEPARATOR_RE.split(text.strip()):
        if not entry:
            continue
        name, sep, uri = entry.partition("=")
        if not sep or not name or not uri:
            raise ValueError(f"Invalid shard entry '{entry}', expected name=uri")
        shards.append((name, uri))
    return shards


def connect_shards(shard_uris: Dict[str, str]) -> Dict[str, MongoClient]:
    """Connect every configured shard, in name order.

    If any shard fails, the clients opened so far are closed before the
    error propagates.
    """
    clients: Dict[str, MongoClient] = {}
    try:
        for name in sorted(shard_uris):
            logger.info("[SHARDS] connecting %s at %s", name, mask_uri(shard_uris[name]))
            clients[name] = connect_to_cluster(shard_uris[name])
    except Exception:
        close_clients(clients)
        raise
    return clients


def close_clients(clients: Dict[str, MongoClient]) -> None:
    """Close clients in reverse connection order, logging failures."""
    for name in reversed(list(clients)):
        try:
            clients[name].close()
        except Exception as e:
            logger.error("[SHARDS] failed to close %s: %s", name, e)
