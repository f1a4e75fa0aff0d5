"""Tests for io/execution_store.py: durable execution records."""

import json

import pytest

import streamcall.io.execution_store
from streamcall.io.execution_store import ExecutionRecord, ExecutionStore, StorageError


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "data" / "executions.json"


def test_missing_file_reads_empty(store_path):
    assert ExecutionStore(store_path).records() == []


def test_store_then_lookup_from_fresh_instance(store_path):
    ExecutionStore(store_path).store_execution(
        ExecutionRecord("search", "c1", "sig", arguments={"q": "x"}, result={"ok": True})
    )
    reloaded = ExecutionStore(store_path)
    record = reloaded.get_previous_execution("search", "c1", "sig")
    assert record is not None
    assert record.arguments == {"q": "x"}
    assert record.result == {"ok": True}
    assert reloaded.get_previous_execution("fetch", "c1", "sig") is None
    assert reloaded.get_previous_execution_legacy("c1", "sig") is not None


def test_file_layout(store_path):
    ExecutionStore(store_path).store_execution(ExecutionRecord("search", "c1", "sig"))
    data = json.loads(store_path.read_text())
    assert [row["call_id"] for row in data["executions"]] == ["c1"]


def test_accepts_bare_list(store_path):
    store_path.parent.mkdir(parents=True)
    store_path.write_text(json.dumps([{"function_name": "f", "call_id": "c9", "content_signature": "s"}]))
    assert ExecutionStore(store_path).get_previous_execution("f", "c9", "s") is not None


def test_corrupt_file_raises_storage_error(store_path):
    store_path.parent.mkdir(parents=True)
    store_path.write_text("{nope")
    with pytest.raises(StorageError):
        ExecutionStore(store_path).records()


def test_remove_call_ids_and_clear(store_path):
    store = ExecutionStore(store_path)
    store.store_execution(ExecutionRecord("f", "c1", "s"))
    store.store_execution(ExecutionRecord("f", "c2", "s"))
    assert store.remove_call_ids(["c1"]) == 1
    assert [r.call_id for r in ExecutionStore(store_path).records()] == ["c2"]
    store.clear()
    assert ExecutionStore(store_path).records() == []


def test_in_memory_store_never_touches_disk(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    store = ExecutionStore()
    store.store_execution(ExecutionRecord("f", "c1", "s"))
    assert store.path is None
    assert len(store.records()) == 1
    assert list(tmp_path.iterdir()) == []


def test_default_path_respects_env(tmp_path, monkeypatch):
    monkeypatch.delenv("STREAMCALL_EXECUTIONS_FILE", raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    assert streamcall.io.execution_store.get_executions_path() == tmp_path / "streamcall" / "executions.json"
    monkeypatch.setenv("STREAMCALL_EXECUTIONS_FILE", str(tmp_path / "x.json"))
    assert streamcall.io.execution_store.get_executions_path() == tmp_path / "x.json"
