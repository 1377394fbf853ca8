"""
Storyboard Forge - Scene generation
Binds one remote generation job to one scene: token, registry entry, status fields.
"""
import logging

from cancellation import TIMEOUT_REASON, CancellationToken
from config import DEFAULT_JOB_TIMEOUT_SECONDS
from errors import AuthError, CancelledError, GenerationError, ProtocolError
from job_registry import JobAlreadyRunning
from storyboard import FAILED, SUCCEEDED, SceneNotFound

logger = logging.getLogger(__name__)

STOPPED_REASON = "Stopped by user"


class SceneGenerator:
    """
    Runs job factories for scenes and records the outcome on the scene.

    Args:
        store: SceneStore holding the scenes
        registry: JobRegistry shared with whoever may stop jobs
        job_timeout: Hard ceiling in seconds for a single job
        progress_callback: Optional callback(message, msg_type)
    """

    def __init__(self, store, registry, job_timeout=DEFAULT_JOB_TIMEOUT_SECONDS, progress_callback=None):
        self.store = store
        self.registry = registry
        self.job_timeout = job_timeout
        self.progress_callback = progress_callback

    def _progress(self, message, msg_type="info"):
        if self.progress_callback:
            self.progress_callback(message, msg_type)

    def is_generating(self, scene_id):
        return scene_id in self.registry

    def generate(self, scene_id, job_factory, stop_event=None):
        """
        Run `job_factory(token)` for a scene and store the image or the failure.

        Blocks until the job concludes. Never raises for job failures: the scene's
        status and error are the result.

        `stop_event` (a threading.Event) lets a caller that stops jobs by scene id, like the
        batch runner, cancel this job even before its registry entry exists.

        Returns:
            False if the scene is unknown or already has a job in flight, True otherwise
        """
        token = CancellationToken(self.job_timeout)
        try:
            self.registry.register(scene_id, token)
        except JobAlreadyRunning:
            token.dispose()
            logger.warning("Rejected generate for scene %s: job already in flight", scene_id)
            return False
        if stop_event is not None and stop_event.is_set():
            token.cancel(STOPPED_REASON)

        try:
            try:
                attempt = self.store.begin_attempt(scene_id)
            except SceneNotFound:
                logger.warning("Cannot generate unknown scene %s", scene_id)
                return False

            label = self._label(scene_id)
            self._progress(f"🖼️ Generating {label}...", "info")

            try:
                token.raise_if_cancelled()
                image_url = job_factory(token)
                if token.is_cancelled():
                    raise CancelledError(token.reason)
            except CancelledError:
                self._fail(scene_id, attempt, token.reason or TIMEOUT_REASON, cancelled=True)
            except Exception as e:
                # Job factories build payloads from user data; their failures belong on the scene too
                if token.is_cancelled():
                    self._fail(scene_id, attempt, token.reason, cancelled=True)
                else:
                    if isinstance(e, GenerationError):
                        self._log_failure(scene_id, e)
                    else:
                        logger.exception("Unexpected error generating scene %s", scene_id)
                    self._fail(scene_id, attempt, str(e) or "Failed")
            else:
                if self.store.update(scene_id, attempt=attempt, status=SUCCEEDED, image_url=image_url, error=None):
                    self._progress(f"✅ {label} ready", "success")
            return True
        finally:
            token.dispose()
            self.registry.unregister(scene_id, token)

    def stop(self, scene_id):
        """
        Cancel the in-flight job of a scene, if any.

        The scene is marked failed right away; the worker notices the token at its next checkpoint.
        """
        try:
            attempt = self.store.get(scene_id).attempt
        except SceneNotFound:
            attempt = None
        if not self.registry.stop(scene_id, STOPPED_REASON):
            return False
        if attempt is None:
            return True
        self.store.update(scene_id, attempt=attempt, status=FAILED, error=STOPPED_REASON)
        self._progress(f"⏹️ {self._label(scene_id)} stopped", "info")
        return True

    def _label(self, scene_id):
        try:
            return f"scene {self.store.get(scene_id).scene_number}"
        except SceneNotFound:
            return f"scene {scene_id}"

    def _fail(self, scene_id, attempt, message, cancelled=False):
        if not self.store.update(scene_id, attempt=attempt, status=FAILED, error=message):
            return
        if cancelled:
            logger.info("Scene %s cancelled: %s", scene_id, message)
            self._progress(f"⏹️ {self._label(scene_id)}: {message}", "info")
        else:
            self._progress(f"❌ {self._label(scene_id)} failed: {message[:100]}", "error")

    @staticmethod
    def _log_failure(scene_id, error):
        if isinstance(error, AuthError):
            logger.error("Scene %s: %s", scene_id, error)
        elif isinstance(error, ProtocolError):
            logger.warning("Scene %s: remote contract violation: %s", scene_id, error)
        else:
            logger.warning("Scene %s failed: %s", scene_id, error)
