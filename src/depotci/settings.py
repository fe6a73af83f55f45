from __future__ import annotations
import os

# Upper bound on steps per uploaded chunk. The scheduler struggles with
# larger payloads.
CHUNK_SIZE = int(os.environ.get("DEPOTCI_CHUNK_SIZE", "192"))

# Name of the callable every definition file has to provide.
ENTRYPOINT = os.environ.get("DEPOTCI_ENTRYPOINT", "define")

DEFAULT_DEFINITION = "default.py"
SKIP_SUBTREE = ".skip-subtree"
SKIP_TREE = ".skip-tree"

STORE_DIR = os.environ.get("DEPOTCI_STORE", ".depotci/store")

# Program name used in generated step commands.
CLI_NAME = os.environ.get("DEPOTCI_CLI", "depotci")

TARGET_MAP_FILE = "target-map.json"
