import threading
import pytest
from conftest import KeywordEmbedder
from mnemos.memory.formation import FormationEventType, FormationPipeline, FormationTask
from mnemos.memory.queue import AsyncStatus, FormationQueue
from mnemos.memory.store import MemoryStore

CONTENTS = [
    "User prefers dark mode",
    "Project uses PostgreSQL",
    "User likes coffee",
    "User writes python",
    "User writes typescript",
]


class GatedEmbedder(KeywordEmbedder):
    """Blocks every embed call until the gate opens."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.gate = threading.Event()

    def embed(self, text):
        self.entered.set()
        assert self.gate.wait(5), "gate never opened"
        return super().embed(text)


@pytest.fixture
def events():
    return []


@pytest.fixture
def statuses():
    return []


@pytest.fixture
def formation_queue(store, events, statuses):
    pipeline = FormationPipeline(store)
    q = FormationQueue(pipeline, buffer_size=10, on_status=statuses.append)
    q.on_formation(events.append)
    yield q
    q.stop(timeout=1)


def test_every_task_yields_one_event_in_order(formation_queue, store, events):
    formation_queue.start()
    ids = [formation_queue.submit(FormationTask(content=c)) for c in CONTENTS]

    assert formation_queue.stop(timeout=5)
    assert [e.task_id for e in events] == ids
    assert all(e.kind == FormationEventType.CREATED for e in events)
    assert store.count() == len(CONTENTS)


def test_wait_for_formations_keeps_queue_running(formation_queue, store, events):
    formation_queue.start()
    for c in CONTENTS[:3]:
        formation_queue.submit(FormationTask(content=c))

    assert formation_queue.wait_for_formations(timeout=5)
    assert store.count() == 3

    formation_queue.submit(FormationTask(content=CONTENTS[3]))
    assert formation_queue.wait_for_formations(timeout=5)
    assert len(events) == 4


def test_wait_for_formations_when_idle(formation_queue):
    assert formation_queue.wait_for_formations(timeout=0.1)


def test_status_transitions(formation_queue, statuses):
    formation_queue.start()
    task_id = formation_queue.submit(FormationTask(content="User likes coffee"))
    formation_queue.wait_for_formations(timeout=5)

    mine = [s for s in statuses if s.task_id == task_id]
    assert [s.status for s in mine] == [AsyncStatus.PENDING, AsyncStatus.IN_PROGRESS, AsyncStatus.COMPLETED]
    assert mine[-1].message == "Memory stored"


def test_skip_and_supersede_messages(formation_queue, statuses):
    formation_queue.start()
    formation_queue.submit(FormationTask(content="User prefers dark mode"))
    formation_queue.submit(FormationTask(content="User prefers dark mode"))
    formation_queue.submit(FormationTask(content="User prefers light mode"))
    formation_queue.wait_for_formations(timeout=5)

    done = [s.message for s in statuses if s.status == AsyncStatus.COMPLETED]
    assert done == ["Memory stored", "Already remembered", "Memory updated"]


def test_failed_formation_reports_failed_status(bare_store, events, statuses):
    q = FormationQueue(FormationPipeline(bare_store), buffer_size=5, on_status=statuses.append)
    q.on_formation(events.append)
    q.start()
    q.submit(FormationTask(content="User likes coffee"))
    assert q.stop(timeout=5)

    assert statuses[-1].status == AsyncStatus.FAILED
    assert statuses[-1].message.startswith("Failed: ")
    assert [e.kind for e in events] == [FormationEventType.FAILED]


def test_full_buffer_rejects_without_blocking(store, events, statuses):
    q = FormationQueue(FormationPipeline(store), buffer_size=2, on_status=statuses.append)
    q.on_formation(events.append)

    for c in CONTENTS[:3]:
        q.submit(FormationTask(content=c))

    assert q.pending() == 2
    assert events[0].kind == FormationEventType.FAILED
    assert events[0].reason == "Memory queue full"
    assert statuses[-1].status == AsyncStatus.FAILED


def test_stop_before_start_abandons_buffer(store, events):
    q = FormationQueue(FormationPipeline(store), buffer_size=5)
    q.on_formation(events.append)
    q.submit(FormationTask(content="User likes coffee"))
    q.submit(FormationTask(content="User writes python"))

    assert q.stop(timeout=1)
    assert [e.reason for e in events] == ["Abandoned at shutdown"] * 2
    assert q.wait_for_formations(timeout=0.1)
    assert store.count() == 0


def test_stop_timeout_abandons_remaining(engine, events):
    embedder = GatedEmbedder()
    q = FormationQueue(FormationPipeline(MemoryStore(engine, embedder)), buffer_size=5)
    q.on_formation(events.append)
    q.start()

    first = q.submit(FormationTask(content="User likes coffee"))
    assert embedder.entered.wait(5)
    second = q.submit(FormationTask(content="User writes python"))
    third = q.submit(FormationTask(content="User writes typescript"))

    assert q.stop(timeout=0.2) is False

    embedder.gate.set()
    assert q.wait_for_formations(timeout=5)

    by_task = {e.task_id: e for e in events}
    assert len(events) == 3
    assert by_task[first].kind == FormationEventType.CREATED
    assert by_task[second].reason == "Abandoned at shutdown"
    assert by_task[third].reason == "Abandoned at shutdown"


def test_submit_after_stop_is_rejected(formation_queue, events, statuses):
    formation_queue.start()
    formation_queue.stop(timeout=1)

    task_id = formation_queue.submit(FormationTask(content="User likes coffee"))
    assert statuses[-1].task_id == task_id
    assert statuses[-1].message == "Memory queue stopped"
    assert events[-1].kind == FormationEventType.FAILED

    with pytest.raises(RuntimeError):
        formation_queue.start()


def test_broken_status_sink_does_not_stop_worker(store, events):
    def sink(update):
        raise RuntimeError("ui gone")

    q = FormationQueue(FormationPipeline(store), buffer_size=5, on_status=sink)
    q.on_formation(events.append)
    q.start()
    q.submit(FormationTask(content="User likes coffee"))
    q.submit(FormationTask(content="User writes python"))

    assert q.stop(timeout=5)
    assert [e.kind for e in events] == [FormationEventType.CREATED] * 2


def test_stop_racing_submit_still_reports_task(store, events):
    q = FormationQueue(FormationPipeline(store), buffer_size=5)
    q.on_formation(events.append)
    real_put = q._tasks.put_nowait
    stopper = threading.Thread(target=q.stop, kwargs={"timeout": 1})

    def put_while_stopping(task):
        # stop() arrives between the stopping check and the put
        stopper.start()
        stopper.join(0.2)
        assert stopper.is_alive(), "stop() must wait for the in-flight submit"
        real_put(task)

    q._tasks.put_nowait = put_while_stopping
    task_id = q.submit(FormationTask(content="User likes coffee"))
    stopper.join(5)

    assert not stopper.is_alive()
    assert q.wait_for_formations(timeout=1)
    assert [(e.task_id, e.reason) for e in events] == [(task_id, "Abandoned at shutdown")]
    assert q.pending() == 0
