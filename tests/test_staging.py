import asyncio

import pytest

from scbridge.engine.errors import StagingWriteFailure
from scbridge.engine.staging import StagingStore, next_artifact_id, wrap_block


def test_wrap_block():
    assert wrap_block("1 + 1;") == "(\n1 + 1;\n)\n"
    assert wrap_block("x.play;\n\n  ") == "(\nx.play;\n)\n"


def test_ids_are_distinct_within_one_millisecond():
    ids = [next_artifact_id() for _ in range(2000)]
    assert len(set(ids)) == len(ids)


def test_write_creates_wrapped_artifact(tmp_path):
    store = StagingStore(tmp_path)
    path = store.write("abc", "s.boot;")
    assert path.parent == tmp_path.resolve()
    assert path.name == "sc_eval_abc.scd"
    assert path.read_text(encoding="utf-8") == "(\ns.boot;\n)\n"


def test_write_never_clobbers(tmp_path):
    store = StagingStore(tmp_path)
    path = store.write("dup", "a;")
    with pytest.raises(StagingWriteFailure):
        store.write("dup", "b;")
    assert path.read_text(encoding="utf-8") == "(\na;\n)\n"


def test_write_failure_when_dir_unusable(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    store = StagingStore(blocker)
    with pytest.raises(StagingWriteFailure):
        store.write("id", "1;")


def test_remove_is_idempotent(tmp_path):
    store = StagingStore(tmp_path)
    path = store.write("once", "1;")
    assert store.remove(path) is True
    assert store.remove(path) is False
    assert not path.exists()


def test_scheduled_removal_fires(tmp_path):
    store = StagingStore(tmp_path, ttl=0.05)

    async def scenario():
        path = store.write("ttl", "1;")
        store.schedule_removal(path)
        assert store.pending == [path]
        await asyncio.sleep(0.2)
        return path

    path = asyncio.run(scenario())
    assert not path.exists()
    assert store.pending == []


def test_discard_cancels_timer(tmp_path):
    store = StagingStore(tmp_path, ttl=10)

    async def scenario():
        path = store.write("early", "1;")
        store.schedule_removal(path)
        assert store.discard(path) is True
        return path

    path = asyncio.run(scenario())
    assert not path.exists()
    assert store.pending == []


def test_close_removes_everything_pending(tmp_path):
    store = StagingStore(tmp_path, ttl=10)

    async def scenario():
        paths = [store.write(str(i), "1;") for i in range(3)]
        for p in paths:
            store.schedule_removal(p)
        store.close()
        return paths

    paths = asyncio.run(scenario())
    assert not any(p.exists() for p in paths)
