"""
Storyboard Forge - Flask Application
HTTP surface for storyboard scenes: generate, edit, stop, generate-all, progress stream.

Generation endpoints answer right away and run the job in a background thread;
clients watch the scene status (or the SSE progress stream) for the outcome.
"""
import json
import logging
import os
import threading
import time

from flask import Flask, Response, jsonify, request

from batch_runner import BatchRunner
from config import load_settings
from generation import SceneGenerator
from image_service import edit_job, page_job
from job_client import RemoteJobClient
from job_registry import JobRegistry
from storyboard import SceneNotFound, SceneStore

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "storyboard-dev-key")

# Set by configure(); built from the environment on first use otherwise
_workspace_state = None


# =============================================================================
# WORKSPACE
# =============================================================================

class Project:
    """Scene store plus the generator and batch runner bound to it."""

    def __init__(self, store, registry, client, settings, progress_callback):
        self.store = store
        self.client = client
        self.generator = SceneGenerator(store, registry, job_timeout=settings.job_timeout,
                                        progress_callback=progress_callback)
        self.runner = BatchRunner(self.generator, progress_callback=progress_callback)

    def page_job_for(self, scene_id):
        return page_job(self.client, self.store.get(scene_id), self.store.inputs)

    def active_scene_ids(self):
        registry = self.generator.registry
        return [s.id for s in self.store.list_scenes() if s.id in registry]


class Workspace:
    """
    Everything the routes share: projects, the job registry, the API client
    and the per-project progress streams.
    """

    def __init__(self, settings, client=None):
        self.settings = settings
        self.registry = JobRegistry()
        self.client = client or RemoteJobClient(
            settings.api_url,
            api_key=settings.api_key,
            request_timeout=settings.request_timeout,
            default_poll_interval_ms=settings.poll_interval_ms,
        )
        self.progress_streams = {}
        self._projects = {}
        self._lock = threading.Lock()

    def progress_callback_factory(self, project_id):
        """Create a progress callback that pushes to the project's SSE stream."""
        def callback(message, msg_type="info"):
            self.progress_streams.setdefault(project_id, []).append({
                "message": message,
                "type": msg_type,
                "timestamp": time.time(),
            })
        return callback

    def project(self, project_id, create=False):
        """Return the Project, loading it from disk on first use. None if it does not exist."""
        with self._lock:
            project = self._projects.get(project_id)
            if project is not None:
                return project
            store = SceneStore.load(project_id, self.settings.projects_dir)
            saved = store.path is not None and store.path.exists()
            if not saved and not create:
                return None
            project = Project(store, self.registry, self.client, self.settings,
                              self.progress_callback_factory(project_id))
            self._projects[project_id] = project
            return project


def configure(settings=None, client=None):
    """
    (Re)build the shared workspace: settings, job registry, API client, projects.

    Args:
        settings: Settings; read from the environment when omitted
        client: Optional RemoteJobClient (tests pass a fake)

    Returns:
        The Flask app
    """
    global _workspace_state
    settings = settings or load_settings()
    _workspace_state = Workspace(settings, client=client)
    if not settings.api_key:
        logger.warning("STORYBOARD_API_KEY is not set; generation requests will be rejected")
    return app


def _workspace():
    if _workspace_state is None:
        configure()
    return _workspace_state


def _project_or_404(project_id, create=False):
    project = _workspace().project(project_id, create=create)
    if project is None:
        return None, (jsonify({"error": "Project not found"}), 404)
    return project, None


def _start_worker(target, *args):
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


# =============================================================================
# ROUTES - Scenes
# =============================================================================

@app.route("/api/project/<project_id>/scenes", methods=["GET"])
def list_scenes(project_id):
    project, error = _project_or_404(project_id)
    if error:
        return error
    return jsonify({
        "scenes": [s.to_dict() for s in project.store.list_scenes()],
        "generating_all": project.runner.is_running,
    })


@app.route("/api/project/<project_id>/scenes", methods=["POST"])
def add_scene(project_id):
    """Add a scene (manual add or one row of a script breakdown)."""
    project, _ = _project_or_404(project_id, create=True)
    data = request.get_json(silent=True) or {}
    try:
        scene = project.store.add_scene(
            content=data.get("content", ""),
            shots=data.get("shots"),
            grid_size=data.get("grid_size"),
            character_ids=data.get("character_ids"),
        )
    except TypeError as e:
        return jsonify({"error": f"Invalid scene: {e}"}), 400
    return jsonify(scene.to_dict()), 201


@app.route("/api/project/<project_id>/scene/<scene_id>", methods=["GET"])
def get_scene(project_id, scene_id):
    project, error = _project_or_404(project_id)
    if error:
        return error
    try:
        return jsonify(project.store.get(scene_id).to_dict())
    except SceneNotFound:
        return jsonify({"error": f"Scene {scene_id} not found"}), 404


@app.route("/api/project/<project_id>/scene/<scene_id>", methods=["DELETE"])
def delete_scene(project_id, scene_id):
    project, error = _project_or_404(project_id)
    if error:
        return error
    project.generator.stop(scene_id)
    if not project.store.delete_scene(scene_id):
        return jsonify({"error": f"Scene {scene_id} not found"}), 404
    return jsonify({"status": "deleted"})


# =============================================================================
# ROUTES - Generation
# =============================================================================

@app.route("/api/project/<project_id>/scene/<scene_id>/generate", methods=["POST"])
def generate_scene(project_id, scene_id):
    """Generate (or regenerate) the sheet for one scene."""
    project, error = _project_or_404(project_id)
    if error:
        return error
    if project.runner.is_running:
        return jsonify({"error": "Generate-all is in progress"}), 409
    if project.generator.is_generating(scene_id):
        return jsonify({"error": "Scene is already generating"}), 409
    try:
        job = project.page_job_for(scene_id)
    except SceneNotFound:
        return jsonify({"error": f"Scene {scene_id} not found"}), 404

    _start_worker(project.generator.generate, scene_id, job)
    return jsonify({"status": "generating", "scene_id": scene_id}), 202


@app.route("/api/project/<project_id>/scene/<scene_id>/edit", methods=["POST"])
def edit_scene(project_id, scene_id):
    """Edit the current sheet of a scene with a text instruction and optional material images."""
    project, error = _project_or_404(project_id)
    if error:
        return error
    if project.runner.is_running:
        return jsonify({"error": "Generate-all is in progress"}), 409
    if project.generator.is_generating(scene_id):
        return jsonify({"error": "Scene is already generating"}), 409
    data = request.get_json(silent=True) or {}
    try:
        scene = project.store.get(scene_id)
        job = edit_job(project.client, scene, data.get("instruction", ""), project.store.inputs,
                       materials=data.get("materials"))
    except SceneNotFound:
        return jsonify({"error": f"Scene {scene_id} not found"}), 404
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    _start_worker(project.generator.generate, scene_id, job)
    return jsonify({"status": "generating", "scene_id": scene_id}), 202


@app.route("/api/project/<project_id>/scene/<scene_id>/stop", methods=["POST"])
def stop_scene(project_id, scene_id):
    """Stop the job of one scene. Stopping a scene with no job is a no-op."""
    project, error = _project_or_404(project_id)
    if error:
        return error
    return jsonify({"stopped": project.generator.stop(scene_id)})


@app.route("/api/project/<project_id>/generate-all", methods=["POST"])
def generate_all(project_id):
    """Generate every scene without an image, one at a time."""
    project, error = _project_or_404(project_id)
    if error:
        return error
    if project.runner.is_running:
        return jsonify({"error": "Generate-all is already in progress"}), 409

    pending = project.store.pending_ids()
    _workspace().progress_streams[project_id] = []
    _start_worker(project.runner.run_all, project.page_job_for, pending)
    return jsonify({"status": "generating", "scene_ids": pending}), 202


@app.route("/api/project/<project_id>/stop-all", methods=["POST"])
def stop_all(project_id):
    """Cancel generate-all (if running) and every in-flight scene of the project."""
    project, error = _project_or_404(project_id)
    if error:
        return error
    batch_cancelled = project.runner.cancel()
    stopped = [sid for sid in project.active_scene_ids() if project.generator.stop(sid)]
    return jsonify({"batch_cancelled": batch_cancelled, "stopped": stopped})


# =============================================================================
# ROUTES - Project inputs, import / export
# =============================================================================

@app.route("/api/project/<project_id>/inputs", methods=["GET"])
def get_inputs(project_id):
    project, error = _project_or_404(project_id)
    if error:
        return error
    return jsonify(project.store.export_project()["inputs"])


@app.route("/api/project/<project_id>/inputs", methods=["PUT"])
def put_inputs(project_id):
    project, _ = _project_or_404(project_id, create=True)
    try:
        project.store.set_inputs(request.get_json(silent=True) or {})
    except TypeError as e:
        return jsonify({"error": f"Invalid inputs: {e}"}), 400
    return jsonify(project.store.export_project()["inputs"])


@app.route("/api/project/<project_id>/export", methods=["GET"])
def export_project(project_id):
    project, error = _project_or_404(project_id)
    if error:
        return error
    data = project.store.export_project()
    return Response(
        json.dumps(data, indent=2, ensure_ascii=False),
        mimetype="application/json",
        headers={"Content-Disposition": f'attachment; filename="storyboard_project_{project_id}.json"'},
    )


@app.route("/api/project/<project_id>/import", methods=["POST"])
def import_project(project_id):
    project, _ = _project_or_404(project_id, create=True)
    if project.runner.is_running or project.active_scene_ids():
        return jsonify({"error": "Stop running generations before importing"}), 409
    try:
        project.store.import_project(request.get_json(silent=True))
    except (ValueError, TypeError) as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"status": "imported", "scenes": len(project.store.list_scenes())})


# =============================================================================
# ROUTES - SSE Progress Stream
# =============================================================================

@app.route("/api/project/<project_id>/progress")
def progress_stream(project_id):
    """SSE endpoint for real-time progress updates."""
    streams = _workspace().progress_streams
    # Only initialize if no stream exists yet (don't clear mid-generation!)
    streams.setdefault(project_id, [])

    def generate():
        current = None
        last_index = 0
        heartbeat = 0

        while True:
            messages = streams.get(project_id, [])
            if messages is not current:
                # generate-all swaps in a fresh list
                current = messages
                last_index = 0

            while last_index < len(messages):
                msg = messages[last_index]
                last_index += 1
                yield f"data: {json.dumps(msg)}\n\n"
                if msg.get("type") == "complete":
                    return

            # Heartbeat every 15 seconds
            heartbeat += 1
            if heartbeat % 30 == 0:
                yield ": heartbeat\n\n"

            time.sleep(0.5)

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


# MAIN
# =============================================================================

if __name__ == "__main__":
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    port = int(os.environ.get("PORT", 5050))
    debug = os.environ.get("FLASK_ENV") == "development"
    configure(settings).run(host="0.0.0.0", port=port, debug=debug)
