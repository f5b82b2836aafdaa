import os
import tempfile
import threading

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.environ.get("WCP_MCP_LOG_LEVEL", "INFO").upper()

SERVER_NAME = os.environ.get("WCP_MCP_SERVER_NAME", "wcp-mcp")

# Converted VCD files are written here before being handed to WAL.
WORK_DIR = os.environ.get("WCP_MCP_WORK_DIR", "")

_work_dir_lock = threading.Lock()


def get_work_dir():
    """Return the directory for converted VCD files, creating it if needed."""
    global WORK_DIR
    with _work_dir_lock:
        if not WORK_DIR:
            WORK_DIR = tempfile.mkdtemp(prefix="wcp-mcp-")
        os.makedirs(WORK_DIR, exist_ok=True)
        return WORK_DIR
