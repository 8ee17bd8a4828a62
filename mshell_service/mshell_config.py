import os
from dotenv import load_dotenv

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
DEFAULT_DATABASE = os.getenv("DEFAULT_DATABASE", "test")

# ---- Connection timeouts (the only deadlines the shell imposes) ----
SERVER_SELECTION_TIMEOUT_MS = int(os.getenv("SERVER_SELECTION_TIMEOUT_MS", "5000"))
CONNECT_TIMEOUT_MS = int(os.getenv("CONNECT_TIMEOUT_MS", "3000"))

# ---- Cursor ----
BATCH_SIZE = int(os.getenv("BATCH_SIZE", "20"))
HISTORY_HINT = 'Type "it" for more'

# ---- Shard fan-out ----
# "name=uri" pairs separated by ';' or whitespace (URIs may contain commas),
# e.g. "shard0=mongodb://h0:27018;shard1=mongodb://h1:27018"
SHARD_URIS = os.getenv("SHARD_URIS", "")

# 0 means one worker per shard
SHARD_MAX_WORKERS = int(os.getenv("SHARD_MAX_WORKERS", "0"))

# ---- Diagnostics ----
VERBOSE = os.getenv("VERBOSE", "false").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "WARNING")
