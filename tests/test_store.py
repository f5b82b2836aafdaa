import pytest
import os
import threading

import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))

from wcp_mcp import config
from wcp_mcp.errors import MissingSectionError, WaveformStoreError
from wcp_mcp.store import WaveformStore, is_wcp_file, wcp_hierarchy
from wcp_mcp.parser import parse_wcp_file

TRACE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), 'traces'))
EXAMPLE_FILE = os.path.join(TRACE_DIR, 'example.wcp')
COUNTER_FILE = os.path.join(TRACE_DIR, 'counter.wcp')


@pytest.fixture
def store(tmp_path):
    store = WaveformStore(work_dir=str(tmp_path))
    yield store
    store.clear()


def test_is_wcp_file():
    assert is_wcp_file("trace.wcp")
    assert is_wcp_file("TRACE.WCP")
    assert not is_wcp_file("trace.vcd")


def test_open_file_caches(store):
    """Test that opening the same file twice returns the cached entry."""
    loaded = store.open_file(EXAMPLE_FILE)
    assert loaded.is_wcp
    assert store.list_files() == [EXAMPLE_FILE]

    assert store.open_file(EXAMPLE_FILE) is loaded
    assert len(store) == 1


def test_failed_load_does_not_pollute_cache(store, tmp_path):
    bad = tmp_path / "bad.wcp"
    bad.write_text("no sections here")

    with pytest.raises(MissingSectionError):
        store.open_file(str(bad))
    assert len(store) == 0
    assert str(bad) not in store


def test_load_bytes_replaces_entry(store):
    with open(EXAMPLE_FILE, "rb") as f:
        data = f.read()

    first = store.load_bytes("upload.wcp", data)
    second = store.load_bytes("upload.wcp", data)
    assert first is not second
    assert store.get("upload.wcp") is second
    assert store.list_files() == ["upload.wcp"]


def test_get_unknown_file(store):
    with pytest.raises(WaveformStoreError) as excinfo:
        store.get("nope.wcp")
    assert "File not found: nope.wcp" in str(excinfo.value)


def test_close(store):
    store.open_file(EXAMPLE_FILE)
    store.close(EXAMPLE_FILE)
    assert store.list_files() == []
    with pytest.raises(WaveformStoreError):
        store.close(EXAMPLE_FILE)


def test_hierarchy_is_nested_tree():
    """Test that the store hierarchy shares scopes between signals."""
    waveform = parse_wcp_file(COUNTER_FILE)
    root = wcp_hierarchy(waveform)

    assert root["name"] == "root"
    assert root["ref"] == 0
    assert root["vars"] == []
    assert [s["name"] for s in root["scopes"]] == ["tb"]

    tb = root["scopes"][0]
    assert [v["name"] for v in tb["vars"]] == ["clk", "reset"]
    assert [v["ref"] for v in tb["vars"]] == [0, 1]
    assert [s["name"] for s in tb["scopes"]] == ["dut"]

    dut = tb["scopes"][0]
    assert dut["vars"] == [{"name": "counter", "ref": 2, "width": 4, "type": "reg"}]
    assert dut["ref"] != tb["ref"]


def test_hierarchy_root_level_signal(store):
    store.load_bytes("flat.wcp", b"HEADER\nversion: 1\nEND_HEADER\nSIGNALS\nclk: clk\nEND_SIGNALS\n")
    root = store.get_hierarchy("flat.wcp")
    assert root["scopes"] == []
    assert root["vars"] == [{"name": "clk", "ref": 0, "width": 1, "type": "wire"}]


def test_get_changes_range(store):
    """Test inclusive time-range filtering of one signal's changes."""
    store.open_file(EXAMPLE_FILE)

    assert store.get_changes(EXAMPLE_FILE, 0, 0, 100) == [
        {"time": 0, "value": "0"},
        {"time": 10, "value": "1"},
        {"time": 20, "value": "0"},
        {"time": 30, "value": "1"},
    ]
    assert store.get_changes(EXAMPLE_FILE, 0, 10, 20) == [
        {"time": 10, "value": "1"},
        {"time": 20, "value": "0"},
    ]
    assert store.get_changes(EXAMPLE_FILE, 1, 1, 30) == [{"time": 20, "value": "FF"}]
    assert store.get_changes(EXAMPLE_FILE, 1, 50, 40) == []


def test_get_changes_sorted_by_time(store):
    store.load_bytes(
        "unsorted.wcp",
        b"HEADER\nversion: 1\nEND_HEADER\nSIGNALS\na: /a\nEND_SIGNALS\n"
        b"WAVEFORM\n30: a=1\n10: a=0\n10: a=x\nEND_WAVEFORM\n",
    )
    assert store.get_changes("unsorted.wcp", 0, 0, 100) == [
        {"time": 10, "value": "0"},
        {"time": 10, "value": "x"},
        {"time": 30, "value": "1"},
    ]


def test_get_changes_invalid_ref(store):
    store.open_file(EXAMPLE_FILE)
    with pytest.raises(WaveformStoreError):
        store.get_changes(EXAMPLE_FILE, 5, 0, 10)
    with pytest.raises(WaveformStoreError):
        store.get_changes(EXAMPLE_FILE, -1, 0, 10)


def test_concurrent_open_parses_once(store):
    """Test that concurrent opens of one file share a single entry."""
    results = []

    def worker():
        results.append(store.open_file(COUNTER_FILE))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 8
    assert all(r is results[0] for r in results)


def test_vcd_text(store):
    loaded = store.open_file(EXAMPLE_FILE)
    assert "$enddefinitions $end" in loaded.vcd_text()


def test_wal_container_from_wcp(store, tmp_path):
    """Test that WCP traces are converted to VCD and loaded into WAL."""
    loaded = store.open_file(COUNTER_FILE)
    container = loaded.container()

    assert "tb.clk" in container.signals
    assert "tb.dut.counter" in container.signals
    assert container.signal_width("tb.dut.counter") == 4
    assert loaded.container() is container
    assert any(name.endswith(".vcd") for name in os.listdir(tmp_path))


def test_clear_removes_converted_files(store, tmp_path):
    loaded = store.open_file(COUNTER_FILE)
    loaded.container()
    store.clear()
    assert not any(name.endswith(".vcd") for name in os.listdir(tmp_path))


def test_non_wcp_source_rejects_change_queries(store, tmp_path):
    """Test that VCD files are loaded through WAL and answer hierarchy queries."""
    vcd_file = tmp_path / "counter.vcd"
    loaded = store.open_file(COUNTER_FILE)
    vcd_file.write_text(loaded.vcd_text())

    vcd_loaded = store.open_file(str(vcd_file))
    assert not vcd_loaded.is_wcp

    root = store.get_hierarchy(str(vcd_file))
    assert [s["name"] for s in root["scopes"]] == ["tb"]

    with pytest.raises(WaveformStoreError):
        store.get_changes(str(vcd_file), 0, 0, 10)
    with pytest.raises(WaveformStoreError):
        vcd_loaded.vcd_text()


def test_slow_load_does_not_block_other_files(store, monkeypatch):
    """Test that a file being loaded does not stall the rest of the table."""
    started = threading.Event()
    release = threading.Event()
    original_load = store._load

    def load(path):
        if path == "slow.wcp":
            started.set()
            release.wait(5)
            return original_load(EXAMPLE_FILE)
        return original_load(path)

    monkeypatch.setattr(store, "_load", load)
    worker = threading.Thread(target=store.open_file, args=("slow.wcp",))
    worker.start()
    assert started.wait(5)
    try:
        assert store.open_file(COUNTER_FILE).is_wcp
        assert store.list_files() == [COUNTER_FILE]
    finally:
        release.set()
        worker.join()

    assert sorted(store.list_files()) == sorted([COUNTER_FILE, "slow.wcp"])


def test_discard_after_close_leaves_no_converted_file(store, tmp_path):
    loaded = store.open_file(COUNTER_FILE)
    loaded.container()
    store.close(COUNTER_FILE)
    loaded.discard()
    assert not any(name.endswith(".vcd") for name in os.listdir(tmp_path))


def test_default_work_dir_created_once(monkeypatch):
    """Test that concurrent callers share one default work directory."""
    monkeypatch.setattr(config, "WORK_DIR", "")
    results = []

    def worker():
        results.append(config.get_work_dir())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(set(results)) == 1
    assert os.path.isdir(results[0])
    os.rmdir(results[0])
