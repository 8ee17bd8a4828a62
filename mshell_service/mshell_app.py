"""
FastAPI service exposing the shell over HTTP.

Features:
- Long-lived shell sessions, one MongoShell per session id
- Command execution with rendered output and captured print() lines
- One-shot fan-out over a supplied set of shard URIs
"""

import threading
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from cluster_manager import close_clients, connect_shards, connect_to_cluster, mask_uri
from mshell_config import DEFAULT_DATABASE
from mshell_logger import logger
from response_formatter import format_result
from shard_executor import ShardExecutor
from mongo_shell import MongoShell


# ---------------------- SESSION REGISTRY ----------------------

@dataclass
class SessionEntry:
    shell: MongoShell
    printed: List[str] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)


class SessionRegistry:
    """In-memory sessions; each shell runs one command at a time."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: Dict[str, SessionEntry] = {}

    def open(self, mongo_uri: str, database_name: str) -> str:
        client = connect_to_cluster(mongo_uri)
        printed: List[str] = []
        shell = MongoShell(
            client=client,
            database_name=database_name,
            output=printed.append,
            owns_client=True,
        )
        session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions[session_id] = SessionEntry(shell=shell, printed=printed)
        logger.info("[SESSIONS] opened %s on %s", session_id, mask_uri(mongo_uri))
        return session_id

    def get(self, session_id: str) -> SessionEntry:
        with self._lock:
            return self._sessions[session_id]

    def run(self, entry: SessionEntry, command: str) -> Dict[str, object]:
        with entry.lock:
            del entry.printed[:]
            output = entry.shell.execute(command)
            return {"output": output, "printed": list(entry.printed)}

    def close(self, session_id: str) -> bool:
        with self._lock:
            entry = self._sessions.pop(session_id, None)
        if entry is None:
            return False
        with entry.lock:
            entry.shell.close()
        logger.info("[SESSIONS] closed %s", session_id)
        return True

    def close_all(self) -> None:
        with self._lock:
            ids = list(self._sessions)
        for session_id in reversed(ids):
            try:
                self.close(session_id)
            except Exception as e:
                logger.error("[SESSIONS] failed to close %s: %s", session_id, e)

    def __len__(self):
        with self._lock:
            return len(self._sessions)


registry = SessionRegistry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    registry.close_all()


app = FastAPI(title="mshell service", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------- REQUEST MODELS ----------------------


class SessionRequest(BaseModel):
    mongo_uri: str
    database_name: str = DEFAULT_DATABASE


class CommandRequest(BaseModel):
    command: str = Field(..., min_length=1, description="Shell command or script")


class ShardCommandRequest(BaseModel):
    shard_uris: Dict[str, str] = Field(..., description="Shard name -> connection string")
    command: str = Field(..., min_length=1)
    database_name: str = DEFAULT_DATABASE


class ShardResult(BaseModel):
    shard: str
    ok: bool
    output: Optional[str] = None
    error: Optional[str] = None
    printed: List[str] = []


# ---------------------- ENDPOINTS ----------------------


@app.post("/sessions")
def open_session(request: SessionRequest):
    try:
        session_id = registry.open(request.mongo_uri, request.database_name)
        return {"session_id": session_id, "database": request.database_name}
    except Exception as e:
        logger.error("open-session error: %s", e)
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/sessions/{session_id}/execute")
def execute_command(session_id: str, request: CommandRequest):
    try:
        entry = registry.get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    try:
        return registry.run(entry, request.command)
    except Exception as e:
        logger.error("execute error: %s", e)
        raise HTTPException(status_code=400, detail=str(e))


@app.delete("/sessions/{session_id}")
def close_session(session_id: str):
    if not registry.close(session_id):
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return {"closed": session_id}


@app.post("/shards/execute", response_model=List[ShardResult])
def execute_on_shards(request: ShardCommandRequest):
    if not request.shard_uris:
        raise HTTPException(status_code=400, detail="No shards available")
    try:
        clients = connect_shards(request.shard_uris)
    except Exception as e:
        logger.error("shard connect error: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    try:
        executor = ShardExecutor.from_clients(
            clients, database_name=request.database_name, owns_clients=True,
        )
    except Exception as e:
        close_clients(clients)
        raise HTTPException(status_code=400, detail=str(e))

    with executor:
        outcomes = executor.execute_on_all(request.command)

    return [
        ShardResult(
            shard=outcome.shard_name,
            ok=outcome.ok,
            output=format_result(outcome.result) if outcome.ok else None,
            error=None if outcome.ok else str(outcome.error),
            printed=outcome.printed,
        )
        for outcome in outcomes
    ]


@app.get("/health")
def health():
    return {"status": "ok", "sessions": len(registry)}
