"""
Command-line entry point.

    mshell [uri] [-e EXPR | -f FILE] [-s] [--shard NAME=URI ...] [-v]
"""

import argparse
import sys
from typing import Any, Callable, List, Optional

from cluster_manager import (
    connect_shards,
    connect_to_cluster,
    create_client,
    mask_uri,
    normalize_uri,
    parse_shard_uris,
)
from mshell_config import DEFAULT_DATABASE, MONGO_URI, SHARD_URIS, VERBOSE
from mshell_logger import configure_logging, logger
from shard_executor import ShardExecutor
from mongo_shell import MongoShell

PROMPT = "mshell> "
CONTINUATION_PROMPT = "... "
EXIT_COMMANDS = ("exit", "quit")


def _print_error(message: str) -> None:
    print(message, file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mshell",
        description="Interactive shell for MongoDB deployments",
    )
    parser.add_argument("uri", nargs="?", help="connection string, e.g. mongodb://host:27017/db")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("-e", "--eval", metavar="EXPR", help="evaluate an expression and exit")
    group.add_argument("-f", "--file", metavar="FILE", help="execute a script file and exit")
    parser.add_argument("-s", "--shards", action="store_true",
                        help="run every command on each configured shard")
    parser.add_argument("--shard", action="append", default=[], metavar="NAME=URI",
                        help="shard connection (repeatable); also read from SHARD_URIS")
    parser.add_argument("-v", "--verbose", action="store_true", default=VERBOSE,
                        help="print queries sent to the server")
    return parser


def is_complete_statement(text: str) -> bool:
    """True once brackets balance and no string literal is left open."""
    depth = 0
    quote: Optional[str] = None
    escaped = False
    for ch in text.strip():
        if escaped:
            escaped = False
            continue
        if ch == "\\":
            escaped = True
            continue
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in "\"'":
            quote = ch
        elif ch in "{([":
            depth += 1
        elif ch in "})]":
            depth -= 1
    return depth <= 0 and quote is None


def _database_from_uri(client, default: str = DEFAULT_DATABASE) -> str:
    return client.get_default_database(default).name


# ---------------------- EXECUTION ----------------------

def execute_command(
    shell: MongoShell,
    command: str,
    executor: Optional[ShardExecutor] = None,
    out: Callable[[str], Any] = print,
    err: Callable[[str], Any] = _print_error,
) -> bool:
    """Run one command; errors are printed, not raised."""
    try:
        if executor is not None:
            out("Executing on all shards:")
            executor.execute_on_all_shards(command, out)
        else:
            rendered = shell.execute(command)
            if rendered is not None:
                out(rendered)
        return True
    except Exception as e:
        err(f"ERROR: {e}")
        logger.debug("Command failed: %s", command, exc_info=True)
        return False


def run_interactive(
    shell: MongoShell,
    uri: str,
    executor: Optional[ShardExecutor] = None,
    read: Callable[[str], str] = input,
    out: Callable[[str], Any] = print,
) -> None:
    out("MongoDB Shell (mshell)")
    out("Type 'help' for help, 'exit' or 'quit' to exit")
    out(f"Connected to: {mask_uri(uri)}")
    if executor is not None:
        out(f"Shard execution mode: ENABLED ({', '.join(executor.shard_names) or 'no shards'})")
    out("")

    buffer: List[str] = []
    while True:
        try:
            line = read(CONTINUATION_PROMPT if buffer else PROMPT)
        except EOFError:
            break
        except KeyboardInterrupt:
            buffer = []
            out("^C")
            continue

        if not buffer and line.strip() in EXIT_COMMANDS:
            break
        if not line.strip() and not buffer:
            continue

        buffer.append(line)
        text = "\n".join(buffer)
        if not is_complete_statement(text):
            continue
        buffer = []
        try:
            execute_command(shell, text.strip(), executor, out)
        except KeyboardInterrupt:
            out("^C")

    out("\nBye!")


# ---------------------- MAIN ----------------------

def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        configure_logging("INFO")

    uri = normalize_uri(args.uri or MONGO_URI)
    logger.info("Using connection string: %s", mask_uri(uri))

    # plain -e evaluation may not need the server at all
    try:
        if args.eval is None or args.shards:
            client = connect_to_cluster(uri)
        else:
            client = create_client(uri)
    except Exception as e:
        _print_error(f"Failed to connect to MongoDB at {mask_uri(uri)}")
        _print_error(f"ERROR: {e}")
        _print_error("\nMake sure MongoDB is running and accessible.")
        _print_error("Usage: mshell [mongodb://]host[:port][/database]")
        return 1

    shell = MongoShell(
        client=client,
        database_name=_database_from_uri(client),
        verbose=args.verbose,
        owns_client=True,
    )
    executor = None
    try:
        if args.shards:
            pairs = parse_shard_uris(SHARD_URIS)
            for entry in args.shard:
                pairs.extend(parse_shard_uris(entry))
            clients = connect_shards(dict(pairs))
            executor = ShardExecutor.from_clients(
                clients,
                database_name=shell.translator.current_database_name(),
                verbose=args.verbose,
                owns_clients=True,
            )

        if args.file:
            with open(args.file, "r", encoding="utf-8") as f:
                ok = execute_command(shell, f.read(), executor)
            return 0 if ok else 1
        if args.eval is not None:
            return 0 if execute_command(shell, args.eval, executor) else 1

        run_interactive(shell, uri, executor)
        return 0
    except Exception as e:
        _print_error(f"ERROR: {e}")
        return 1
    finally:
        if executor is not None:
            executor.close()
        shell.close()


if __name__ == "__main__":
    sys.exit(main())
