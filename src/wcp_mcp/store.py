"""Owned store of opened waveforms.

The store maps a file name to a loaded waveform. WCP sources keep their parsed
`WcpWaveform`, which answers hierarchy and signal-range queries directly; for
WAL-based analysis they are exported to VCD and loaded into a WAL
`TraceContainer`. Other formats (VCD, FST) go straight to WAL.

All access to the file table goes through one lock, so a single store can be
shared by concurrent request handlers. Loading happens outside that lock;
concurrent openers of the same path wait on a per-path lock instead.
"""

import logging
import os
import tempfile
import threading
from typing import Any, Dict, List, Optional

from wal.core import TraceContainer

from . import config
from .errors import WaveformStoreError
from .model import WcpWaveform
from .parser import parse_wcp_bytes, parse_wcp_file
from .vcd import wcp_to_vcd

logger = logging.getLogger(__name__)

WCP_SUFFIX = ".wcp"


def is_wcp_file(path: str) -> bool:
    return path.lower().endswith(WCP_SUFFIX)


class LoadedWaveform:
    """A waveform registered in the store.

    Exactly one of `waveform` (WCP source) or a WAL container (other formats)
    is the primary source; WCP sources build their container on first use.
    """

    def __init__(
        self,
        name: str,
        waveform: Optional[WcpWaveform] = None,
        container: Optional[TraceContainer] = None,
        work_dir: Optional[str] = None,
    ):
        self.name = name
        self.waveform = waveform
        self._container = container
        self._work_dir = work_dir
        self._vcd_path: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def is_wcp(self) -> bool:
        return self.waveform is not None

    def vcd_text(self) -> str:
        if self.waveform is None:
            raise WaveformStoreError(f"{self.name} is not a WCP source")
        return wcp_to_vcd(self.waveform)

    def container(self) -> TraceContainer:
        """Return the WAL container, exporting WCP sources to VCD on first use."""
        with self._lock:
            if self._container is None:
                work_dir = self._work_dir or config.get_work_dir()
                with tempfile.NamedTemporaryFile(
                    mode="w", suffix=".vcd", dir=work_dir, delete=False
                ) as f:
                    f.write(self.vcd_text())
                    self._vcd_path = f.name
                logger.info(f"Loading converted VCD for {self.name}: {self._vcd_path}")
                container = TraceContainer()
                container.load(self._vcd_path)
                self._container = container
            return self._container

    def signal_names(self) -> List[str]:
        return list(self.container().signals)

    def discard(self) -> None:
        """Remove the converted VCD file, if one was written."""
        with self._lock:
            if self._vcd_path and os.path.exists(self._vcd_path):
                os.unlink(self._vcd_path)
            self._vcd_path = None


def _new_scope(name: str, ref: int) -> Dict[str, Any]:
    return {"name": name, "ref": ref, "vars": [], "scopes": []}


def _insert_var(root: Dict[str, Any], scope_names: List[str], var: Dict[str, Any], next_ref: List[int]) -> None:
    node = root
    for scope_name in scope_names:
        child = next((s for s in node["scopes"] if s["name"] == scope_name), None)
        if child is None:
            child = _new_scope(scope_name, next_ref[0])
            next_ref[0] += 1
            node["scopes"].append(child)
        node = child
    node["vars"].append(var)


def wcp_hierarchy(waveform: WcpWaveform) -> Dict[str, Any]:
    """Build a nested scope tree from the '/'-separated signal paths.

    Unlike the VCD exporter, signals that share an ancestor share one scope
    node. Var refs are signal indices; scope refs number scopes in creation
    order starting after the root (0).
    """
    root = _new_scope("root", 0)
    next_ref = [1]
    for index, signal in enumerate(waveform.signals):
        scope_names = [part for part in signal.scope_key.split("/") if part]
        var = {"name": signal.leaf_name, "ref": index, "width": signal.width, "type": signal.signal_type}
        _insert_var(root, scope_names, var, next_ref)
    return root


def wal_hierarchy(container: TraceContainer) -> Dict[str, Any]:
    """Build a nested scope tree from WAL's '.'-separated signal names."""
    root = _new_scope("root", 0)
    next_ref = [1]
    for index, signal in enumerate(container.signals):
        parts = signal.split(".")
        var = {"name": parts[-1], "ref": index, "width": container.signal_width(signal), "type": "wire"}
        _insert_var(root, parts[:-1], var, next_ref)
    return root


class WaveformStore:
    """Thread-safe table of opened waveforms keyed by file name."""

    def __init__(self, work_dir: Optional[str] = None):
        self._files: Dict[str, LoadedWaveform] = {}
        self._lock = threading.Lock()
        self._load_locks: Dict[str, threading.Lock] = {}
        self._work_dir = work_dir

    def open_file(self, path: str) -> LoadedWaveform:
        """Open a waveform file, returning the cached entry if already open.

        Args:
            path: Path to a .wcp file, or any format WAL can load (.vcd, .fst)

        Returns:
            LoadedWaveform: The registered waveform
        """
        with self._lock:
            loaded = self._files.get(path)
            if loaded is not None:
                return loaded
            load_lock = self._load_locks.setdefault(path, threading.Lock())

        # The table lock is released while loading; only openers of the same
        # path wait on load_lock.
        try:
            with load_lock:
                with self._lock:
                    loaded = self._files.get(path)
                if loaded is None:
                    loaded = self._load(path)
                    with self._lock:
                        self._files[path] = loaded
                return loaded
        finally:
            with self._lock:
                if self._load_locks.get(path) is load_lock:
                    del self._load_locks[path]

    def _load(self, path: str) -> LoadedWaveform:
        if is_wcp_file(path):
            return LoadedWaveform(path, waveform=parse_wcp_file(path), work_dir=self._work_dir)

        logger.info(f"Loading waveform file: {path}")
        container = TraceContainer()
        container.load(path)
        return LoadedWaveform(path, container=container, work_dir=self._work_dir)

    def load_bytes(self, name: str, data: bytes) -> LoadedWaveform:
        """Parse an uploaded WCP buffer and register it under `name`."""
        waveform = parse_wcp_bytes(data)
        logger.info(f"Loaded {name} ({len(data)} bytes)")
        loaded = LoadedWaveform(name, waveform=waveform, work_dir=self._work_dir)
        with self._lock:
            previous = self._files.pop(name, None)
            self._files[name] = loaded
        if previous is not None:
            previous.discard()
        return loaded

    def get(self, name: str) -> LoadedWaveform:
        with self._lock:
            loaded = self._files.get(name)
        if loaded is None:
            raise WaveformStoreError(f"File not found: {name}")
        return loaded

    def list_files(self) -> List[str]:
        with self._lock:
            return list(self._files)

    def close(self, name: str) -> None:
        with self._lock:
            loaded = self._files.pop(name, None)
        if loaded is None:
            raise WaveformStoreError(f"File not found: {name}")
        loaded.discard()

    def clear(self) -> None:
        with self._lock:
            files = list(self._files.values())
            self._files.clear()
        for loaded in files:
            loaded.discard()

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._files

    def __len__(self) -> int:
        with self._lock:
            return len(self._files)

    def get_hierarchy(self, name: str) -> Dict[str, Any]:
        loaded = self.get(name)
        if loaded.is_wcp:
            return wcp_hierarchy(loaded.waveform)
        return wal_hierarchy(loaded.container())

    def get_changes(self, name: str, signal_ref: int, start: int, end: int) -> List[Dict[str, Any]]:
        """Value changes of one signal with start <= time <= end.

        Args:
            name: File name the waveform was registered under
            signal_ref: Signal index, as reported by get_hierarchy
            start: First time (inclusive)
            end: Last time (inclusive)

        Returns:
            List of {"time": int, "value": str} in time order
        """
        loaded = self.get(name)
        if not loaded.is_wcp:
            raise WaveformStoreError(f"Signal changes are only available for WCP sources: {name}")

        waveform = loaded.waveform
        if not 0 <= signal_ref < len(waveform.signals):
            raise WaveformStoreError(f"Invalid signal reference: {signal_ref}")

        changes = []
        for change in waveform.changes_for(signal_ref):
            if change.time < start:
                continue
            if change.time > end:
                break
            changes.append({"time": change.time, "value": change.value})
        return changes
