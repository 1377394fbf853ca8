"""
Storyboard Forge - Batch Queue Runner
"Generate all": one scene at a time, in storyboard order.

The image API is rate limited per key, so there is no parallel fan-out.
"""
import logging
import threading

logger = logging.getLogger(__name__)


class BatchRunner:
    """
    Serially generates every scene that has no image yet.

    Args:
        generator: SceneGenerator used for each scene
        progress_callback: Optional callback(message, msg_type)
    """

    def __init__(self, generator, progress_callback=None):
        self.generator = generator
        self.progress_callback = progress_callback
        self._running = threading.Lock()
        self._cancelled = threading.Event()
        self._current = None

    @property
    def is_running(self):
        return self._running.locked()

    def _progress(self, message, msg_type="info"):
        if self.progress_callback:
            self.progress_callback(message, msg_type)

    def run_all(self, job_factory_for, scene_ids=None):
        """
        Generate the pending scenes one after another.

        Args:
            job_factory_for: callable(scene_id) -> job_factory(token)
            scene_ids: Scenes to consider; defaults to the store's scenes without an image.
                       The list is snapshotted: scenes added during the run are not picked up.

        Returns:
            False if another batch was already running, True once the pass is over
        """
        if not self._running.acquire(blocking=False):
            logger.info("Batch already in progress, ignoring run_all")
            return False
        try:
            self._cancelled.clear()
            if scene_ids is None:
                scene_ids = self.generator.store.pending_ids()
            queue = list(scene_ids)
            total = len(queue)
            self._progress(f"🚀 Generating {total} scene(s)...", "batch")

            done = 0
            for index, scene_id in enumerate(queue, start=1):
                if self._cancelled.is_set():
                    break
                self._current = scene_id
                try:
                    job_factory = job_factory_for(scene_id)
                except Exception:
                    # e.g. the scene was deleted after the snapshot
                    logger.exception("Could not prepare job for scene %s, skipping", scene_id)
                    continue
                if self._cancelled.is_set():
                    break
                logger.info("Batch %d/%d: scene %s", index, total, scene_id)
                # cancel() may land before generate registers its token; the event covers that gap
                self.generator.generate(scene_id, job_factory, stop_event=self._cancelled)
                done += 1

            if self._cancelled.is_set():
                # also when the stop hit the last scene
                self._progress(f"⏹️ Batch stopped after {done}/{total} scene(s)", "info")
            else:
                self._progress(f"✅ Batch finished: {done}/{total} scene(s) attempted", "complete")
            return True
        finally:
            self._current = None
            self._running.release()

    def cancel(self):
        """Stop the job in flight and skip the rest of the queue."""
        if not self.is_running:
            return False
        self._cancelled.set()
        current = self._current
        if current is not None:
            self.generator.stop(current)
        return True
