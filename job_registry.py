"""
Storyboard Forge - Job Registry
Maps a scene id to the token of its in-flight job so a "stop" action can reach it.
"""
import logging
import threading

logger = logging.getLogger(__name__)


class JobAlreadyRunning(Exception):
    """A job is already registered for this scene."""

    def __init__(self, scene_id):
        super().__init__(f"A generation job is already running for scene {scene_id}")
        self.scene_id = scene_id


class JobRegistry:
    """
    Lookup-only map of scene id -> CancellationToken.

    The registry never disposes tokens; whoever created the token does that.
    """

    def __init__(self):
        self._tokens = {}
        self._lock = threading.Lock()

    def register(self, scene_id, token):
        """Raises JobAlreadyRunning if another job is registered for scene_id."""
        with self._lock:
            if scene_id in self._tokens:
                raise JobAlreadyRunning(scene_id)
            self._tokens[scene_id] = token

    def lookup(self, scene_id):
        with self._lock:
            return self._tokens.get(scene_id)

    def unregister(self, scene_id, token=None):
        """
        Remove the entry for scene_id.

        With `token`, only remove it if it still belongs to that token, so a finishing
        job never drops the entry of a newer job for the same scene.
        """
        with self._lock:
            current = self._tokens.get(scene_id)
            if current is None or (token is not None and current is not token):
                return None
            return self._tokens.pop(scene_id)

    def stop(self, scene_id, reason=None):
        """Cancel and forget the job for scene_id. Returns False if there was none."""
        token = self.unregister(scene_id)
        if token is None:
            return False
        token.cancel(reason)
        logger.info("Stop requested for scene %s", scene_id)
        return True

    def active_ids(self):
        with self._lock:
            return list(self._tokens)

    def __contains__(self, scene_id):
        with self._lock:
            return scene_id in self._tokens

    def __len__(self):
        with self._lock:
            return len(self._tokens)
