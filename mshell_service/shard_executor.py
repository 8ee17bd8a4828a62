"""
Shard fan-out: run one command on every shard at once.

Each shard gets its own ``MongoShell`` (and so its own translator); no
shell is shared between worker tasks.  All tasks are awaited before
anything is reported, and outcomes are reported in shard-name order.
No per-query deadline is imposed here; only the client's connection
timeouts apply.
"""

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pymongo import MongoClient

from mshell_config import BATCH_SIZE, DEFAULT_DATABASE, SHARD_MAX_WORKERS, VERBOSE
from mshell_logger import logger
from response_formatter import format_shard_outcome
from mongo_shell import MongoShell

NO_SHARDS = "No shards available"


@dataclass
class ShardTarget:
    name: str
    client: MongoClient


@dataclass
class ShardOutcome:
    """Result of one shard's run: exactly one of result/error is meaningful."""

    shard_name: str
    result: Any = None
    error: Optional[BaseException] = None
    printed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


class ShardExecutor:

    def __init__(
        self,
        targets: List[ShardTarget],
        database_name: str = DEFAULT_DATABASE,
        verbose: bool = VERBOSE,
        max_workers: int = SHARD_MAX_WORKERS,
        owns_clients: bool = False,
        batch_size: int = BATCH_SIZE,
    ):
        self.targets = sorted(targets, key=lambda target: target.name)
        self.owns_clients = owns_clients
        # per-shard print sink; reported inside that shard's block
        self._printed: Dict[str, List[str]] = {target.name: [] for target in self.targets}
        self.shells: Dict[str, MongoShell] = {
            target.name: MongoShell(
                client=target.client,
                database_name=database_name,
                verbose=verbose,
                output=self._printed[target.name].append,
                batch_size=batch_size,
                owns_client=False,
            )
            for target in self.targets
        }
        workers = max_workers if max_workers > 0 else max(1, len(self.targets))
        self._pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="shard")
        self._closed = False

    @classmethod
    def from_clients(cls, clients: Dict[str, MongoClient], **kwargs) -> "ShardExecutor":
        targets = [ShardTarget(name, client) for name, client in clients.items()]
        return cls(targets, **kwargs)

    @property
    def shard_names(self) -> List[str]:
        return [target.name for target in self.targets]

    def _run_on_shard(self, name: str, command: str) -> ShardOutcome:
        shell = self.shells[name]
        printed = self._printed[name]
        del printed[:]
        try:
            # fan-out results are read fully; no live cursor crosses the boundary
            value = shell.evaluate(command, remember=False)
            return ShardOutcome(name, result=shell.materialize(value), printed=list(printed))
        except Exception as e:
            logger.info("[FANOUT] shard %s failed: %s", name, e)
            return ShardOutcome(name, error=e, printed=list(printed))

    def execute_on_all(self, command: str) -> List[ShardOutcome]:
        """Run ``command`` on every shard; outcomes in shard-name order."""
        if not self.targets:
            return []

        logger.info("[FANOUT] running on %d shard(s): %s", len(self.targets), command)
        futures = {
            name: self._pool.submit(self._run_on_shard, name, command)
            for name in self.shard_names
        }
        try:
            wait(futures.values())
        except KeyboardInterrupt:
            logger.warning("[FANOUT] interrupted, abandoning round")
            for future in futures.values():
                future.cancel()
            raise

        outcomes = [futures[name].result() for name in self.shard_names]
        logger.info(
            "[FANOUT] done: %d ok, %d failed",
            sum(1 for o in outcomes if o.ok),
            sum(1 for o in outcomes if not o.ok),
        )
        return outcomes

    def execute_on_all_shards(self, command: str, out: Callable[[str], Any] = print) -> None:
        """Run ``command`` and print one block per shard."""
        if not self.targets:
            out(NO_SHARDS)
            return
        for outcome in self.execute_on_all(command):
            out(format_shard_outcome(
                outcome.shard_name, outcome.result, outcome.error, outcome.printed,
            ))

    # ---------------------- LIFECYCLE ----------------------

    def close(self) -> None:
        """Release the pool, then shells, then clients (reverse order)."""
        if self._closed:
            return
        self._closed = True
        try:
            self._pool.shutdown(wait=True)
        except Exception as e:
            logger.error("[FANOUT] failed to stop worker pool: %s", e)

        for name in reversed(self.shard_names):
            try:
                self.shells[name].close()
            except Exception as e:
                logger.error("[FANOUT] failed to close shell for %s: %s", name, e)

        if self.owns_clients:
            for target in reversed(self.targets):
                try:
                    target.client.close()
                except Exception as e:
                    logger.error("[FANOUT] failed to close client for %s: %s", target.name, e)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
