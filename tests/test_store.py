import pytest

from errors import ConflictError, ValidationError
from store import MemoryStore


@pytest.fixture
def mem():
    return MemoryStore()


def test_insert_assigns_id_and_copies(mem):
    doc = {"name": "a"}
    doc_id = mem.insert("things", doc)
    doc["name"] = "changed"
    assert mem.find_one("things", {"id": doc_id}) == {"name": "a", "id": doc_id}


def test_duplicate_id_conflicts(mem):
    mem.insert("things", {"id": "x"})
    with pytest.raises(ConflictError):
        mem.insert("things", {"id": "x"})


def test_find_sort_and_limit(mem):
    for n, group in [(3, "b"), (1, "a"), (2, "b")]:
        mem.insert("things", {"n": n, "group": group})
    assert [d["n"] for d in mem.find("things", sort=[("n", -1)])] == [3, 2, 1]
    assert [d["n"] for d in mem.find("things", sort=[("group", 1), ("n", 1)])] == [1, 2, 3]
    assert [d["n"] for d in mem.find("things", {"group": "b"}, limit=1)] == [3]


def test_replace_requires_match_unless_upsert(mem):
    with pytest.raises(ConflictError):
        mem.replace("things", {"key": "k"}, {"key": "k", "v": 1})
    mem.replace("things", {"key": "k"}, {"key": "k", "v": 1}, upsert=True)
    mem.replace("things", {"key": "k"}, {"key": "k", "v": 2}, upsert=True)
    docs = mem.find("things")
    assert len(docs) == 1 and docs[0]["v"] == 2


def test_delete_counts(mem):
    mem.insert("things", {"g": 1})
    mem.insert("things", {"g": 1})
    mem.insert("things", {"g": 2})
    assert mem.delete("things", {"g": 1}) == 2
    assert mem.delete("things", {"g": 1}) == 0


def test_transaction_rolls_back_and_skips_callbacks(mem):
    calls = []
    mem.insert("things", {"id": "keep"})
    with pytest.raises(ValueError):
        with mem.transaction():
            mem.insert("things", {"id": "drop"})
            mem.delete("things", {"id": "keep"})
            mem.on_commit(lambda: calls.append("committed"))
            raise ValueError("abort")
    assert [d["id"] for d in mem.find("things")] == ["keep"]
    assert calls == []


def test_nested_transaction_defers_callbacks_to_outermost(mem):
    calls = []
    with mem.transaction():
        with mem.transaction():
            mem.on_commit(lambda: calls.append("inner"))
        assert calls == []
    assert calls == ["inner"]


def test_on_commit_outside_transaction_runs_now(mem):
    calls = []
    mem.on_commit(lambda: calls.append(1))
    assert calls == [1]


@pytest.mark.parametrize("limit", [0, -1])
def test_non_positive_limit_is_rejected(mem, limit):
    mem.insert("things", {"n": 1})
    with pytest.raises(ValidationError):
        mem.find("things", limit=limit)


def test_rollback_restores_replaced_and_deleted_documents(mem):
    mem.insert("things", {"id": "a", "v": 1})
    mem.insert("things", {"id": "b", "v": 1})
    with pytest.raises(RuntimeError):
        with mem.transaction():
            mem.replace("things", {"id": "a"}, {"v": 2})
            mem.replace("things", {"id": "a"}, {"v": 3})
            mem.delete("things", {"id": "b"})
            mem.replace("things", {"key": "new"}, {"key": "new"}, upsert=True)
            raise RuntimeError("abort")
    assert sorted((d["id"], d["v"]) for d in mem.find("things")) == [("a", 1), ("b", 1)]


def test_read_only_transaction_records_nothing(mem):
    mem.insert("things", {"id": "a"})
    with mem.transaction():
        mem.find("things")
        assert mem._local.undo == []
