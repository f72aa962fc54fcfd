import threading

from registrar.services.task_queue import DeferredTaskQueue


def test_jobs_run_on_worker_and_drain_waits():
    q = DeferredTaskQueue("test", max_workers=1)
    done = []
    try:
        for i in range(5):
            assert q.enqueue(f"job:{i}", lambda i=i: done.append(i))
        assert q.drain(timeout=5.0)
        assert sorted(done) == [0, 1, 2, 3, 4]
        stats = q.stats()
        assert stats["processed"] == 5
        assert stats["pending"] == 0
        assert stats["running"] is True
    finally:
        q.stop()
    assert not q.is_running()


def test_same_key_is_coalesced_while_waiting():
    q = DeferredTaskQueue("coalesce", max_workers=1)
    gate = threading.Event()
    calls = []
    try:
        # Bloquea al único worker para que las siguientes claves esperen en cola
        q.enqueue("blocker", gate.wait)
        assert q.enqueue("recompute-credits:1", lambda: calls.append("first"))
        assert not q.enqueue("recompute-credits:1", lambda: calls.append("second"))
        gate.set()
        assert q.drain(timeout=5.0)
    finally:
        q.stop()
    # Se ejecuta una sola vez, con el trabajo más reciente
    assert calls == ["second"]
    assert q.stats()["coalesced"] == 1


def test_failures_are_counted_not_raised():
    q = DeferredTaskQueue("failing", max_workers=1)

    def boom():
        raise RuntimeError("boom")

    try:
        assert q.enqueue("bad", boom)
        assert q.enqueue("good", lambda: None)
        assert q.drain(timeout=5.0)
    finally:
        q.stop()
    stats = q.stats()
    assert stats["failed"] == 1
    assert stats["processed"] == 1


def test_disabled_queue_runs_inline():
    q = DeferredTaskQueue("inline", enabled=False)
    calls = []
    assert q.enqueue("k", lambda: calls.append(1))
    assert calls == [1]
    assert not q.is_running()
    assert q.drain(timeout=0.1)


def test_counters_are_exact_with_several_workers():
    q = DeferredTaskQueue("parallel", max_workers=4)

    def flaky(i):
        if i % 3 == 0:
            raise ValueError(i)

    try:
        for i in range(60):
            q.enqueue(f"job:{i}", lambda i=i: flaky(i))
        assert q.drain(timeout=10.0)
    finally:
        q.stop()
    stats = q.stats()
    assert stats["enqueued"] == 60
    assert stats["failed"] == 20
    assert stats["processed"] == 40
