import threading
import time

from batch_runner import BatchRunner
from errors import RemoteError
from generation import SceneGenerator
from storyboard import FAILED, SUCCEEDED

from conftest import wait_for


def make_runner(store, registry):
    return BatchRunner(SceneGenerator(store, registry))


def test_runs_every_pending_scene_sequentially_and_isolates_failures(store, registry):
    scenes = [store.add_scene(f"scene {i}") for i in range(4)]
    done = store.add_scene("already drawn")
    store.update(done.id, image_url="data:image/png;base64,OLD", status=SUCCEEDED)

    order = []
    in_flight = []
    max_in_flight = []

    def factory_for(scene_id):
        def run(token):
            in_flight.append(scene_id)
            max_in_flight.append(len(in_flight))
            order.append(scene_id)
            try:
                if scene_id == scenes[1].id:
                    raise RemoteError("Job Failed: quota exceeded")
                return "data:image/png;base64,NEW"
            finally:
                in_flight.remove(scene_id)
        return run

    assert make_runner(store, registry).run_all(factory_for) is True

    assert order == [s.id for s in scenes]
    assert max(max_in_flight) == 1
    assert store.get(scenes[1].id).status == FAILED
    assert [store.get(s.id).status for s in (scenes[0], scenes[2], scenes[3])] == [SUCCEEDED] * 3
    assert store.get(done.id).image_url == "data:image/png;base64,OLD"


def test_scenes_added_during_the_run_are_not_picked_up(store, registry):
    first = store.add_scene()
    attempted = []

    def factory_for(scene_id):
        def run(token):
            attempted.append(scene_id)
            if len(attempted) == 1:
                store.add_scene("late arrival")
            return "data:image/png;base64,X"
        return run

    make_runner(store, registry).run_all(factory_for)
    assert attempted == [first.id]
    assert len(store.pending_ids()) == 1


def test_overlapping_run_all_is_rejected(store, registry):
    store.add_scene()
    runner = make_runner(store, registry)
    started, release = threading.Event(), threading.Event()

    def factory_for(scene_id):
        def run(token):
            started.set()
            release.wait(5)
            return "data:image/png;base64,X"
        return run

    worker = threading.Thread(target=runner.run_all, args=(factory_for,), daemon=True)
    worker.start()
    assert started.wait(2)
    assert runner.is_running
    assert runner.run_all(factory_for) is False

    release.set()
    worker.join(2)
    assert not runner.is_running


def test_cancel_stops_current_job_and_skips_the_rest(store, registry):
    scenes = [store.add_scene() for _ in range(3)]
    runner = make_runner(store, registry)
    started = threading.Event()
    attempted = []

    def factory_for(scene_id):
        def run(token):
            attempted.append(scene_id)
            started.set()
            token.wait(30)
            return "data:image/png;base64,X"
        return run

    worker = threading.Thread(target=runner.run_all, args=(factory_for,), daemon=True)
    worker.start()
    assert started.wait(2)
    assert runner.cancel() is True
    worker.join(2)

    assert attempted == [scenes[0].id]
    assert store.get(scenes[0].id).status == FAILED
    assert runner.cancel() is False


def test_deleted_scene_is_skipped(store, registry):
    keep, gone = store.add_scene(), store.add_scene()
    generated = []

    def factory_for(scene_id):
        scene = store.get(scene_id)

        def run(token):
            generated.append(scene.id)
            if scene.id == keep.id:
                store.delete_scene(gone.id)
            return "data:image/png;base64,X"
        return run

    make_runner(store, registry).run_all(factory_for)
    assert generated == [keep.id]


def test_progress_reports_completion(store, registry):
    store.add_scene()
    messages = []
    runner = BatchRunner(SceneGenerator(store, registry), progress_callback=lambda m, t: messages.append(t))
    runner.run_all(lambda scene_id: (lambda token: "data:image/png;base64,X"))
    assert wait_for(lambda: messages[-1] == "complete")
    assert messages[0] == "batch"


def test_cancel_while_preparing_the_next_job(store, registry):
    scene = store.add_scene()
    runner = make_runner(store, registry)
    preparing = threading.Event()
    ran = []

    def factory_for(scene_id):
        preparing.set()
        time.sleep(0.3)

        def run(token):
            ran.append(scene_id)
            return "data:image/png;base64,X"
        return run

    worker = threading.Thread(target=runner.run_all, args=(factory_for,), daemon=True)
    worker.start()
    assert preparing.wait(2)
    assert runner.cancel() is True
    worker.join(2)

    assert ran == []
    assert store.get(scene.id).status != SUCCEEDED
    assert store.get(scene.id).image_url is None


def test_stop_during_last_scene_reports_stopped(store, registry):
    store.add_scene()
    messages = []
    runner = BatchRunner(SceneGenerator(store, registry), progress_callback=lambda m, t: messages.append((t, m)))
    started = threading.Event()

    def factory_for(scene_id):
        def run(token):
            started.set()
            token.wait(5)
            token.raise_if_cancelled()
            return "data:image/png;base64,X"
        return run

    worker = threading.Thread(target=runner.run_all, args=(factory_for,), daemon=True)
    worker.start()
    assert started.wait(2)
    runner.cancel()
    worker.join(2)

    assert all(kind != "complete" for kind, _ in messages)
    assert messages[-1][1].startswith("⏹️ Batch stopped after 1/1")
