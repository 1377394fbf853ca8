"""
Storyboard Forge - Storyboard model
Scenes (the pages we generate images for), project inputs, and a thread-safe
per-project store persisted as JSON.
"""
import copy
import json
import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path

logger = logging.getLogger(__name__)

PROJECT_VERSION = 2
STORYBOARD_FILENAME = "storyboard.json"

# Scene generation status
IDLE = "idle"
GENERATING = "generating"
SUCCEEDED = "succeeded"
FAILED = "failed"
STATUSES = (IDLE, GENERATING, SUCCEEDED, FAILED)

GRID_2X2 = "2x2 (4 Shots)"
GRID_3X3 = "3x3 (9 Shots)"


@dataclass
class Shot:
    panel_number: int
    shot_type: str = "Wide Shot"
    description: str = ""


@dataclass
class CharacterProfile:
    id: str
    name: str
    description: str = ""
    image: str = None  # data URI reference image


@dataclass
class StoryboardInputs:
    style: str = "Cinematic storyboard sketch"
    color_type: str = "Full Color"
    aspect_ratio: str = "16:9"
    language: str = "English"
    grid_size: str = GRID_2X2
    characters: list = field(default_factory=list)
    global_background_image: str = None

    @classmethod
    def from_dict(cls, data):
        data = dict(data or {})
        data["characters"] = [
            c if isinstance(c, CharacterProfile) else CharacterProfile(**c)
            for c in data.get("characters", [])
        ]
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Scene:
    id: str
    scene_number: int
    content: str = ""
    shots: list = field(default_factory=list)
    grid_size: str = GRID_2X2
    character_ids: list = field(default_factory=list)
    reference_image: str = None
    material_images: list = field(default_factory=list)

    status: str = IDLE
    image_url: str = None
    error: str = None
    attempt: int = 0

    @classmethod
    def from_dict(cls, data):
        data = dict(data)
        data["shots"] = [s if isinstance(s, Shot) else Shot(**s) for s in data.get("shots", [])]
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self):
        return asdict(self)


class SceneNotFound(KeyError):
    pass


class SceneStore:
    """
    Scenes of one project.

    Every read returns a copy; all writes go through the store so that worker
    threads and request handlers never share a mutable Scene.

    Args:
        project_id: Project identifier (also the folder name on disk)
        projects_dir: Root folder for persistence; None keeps everything in memory
    """

    def __init__(self, project_id, projects_dir=None):
        self.project_id = project_id
        self.projects_dir = Path(projects_dir) if projects_dir else None
        self.inputs = StoryboardInputs()
        self._scenes = {}
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    @property
    def path(self):
        if self.projects_dir is None:
            return None
        return self.projects_dir / self.project_id / STORYBOARD_FILENAME

    @classmethod
    def load(cls, project_id, projects_dir=None):
        """Load a project from disk, or start an empty one if nothing is saved yet."""
        store = cls(project_id, projects_dir)
        path = store.path
        if path is not None and path.exists():
            with open(path) as f:
                store.import_project(json.load(f), save=False)
            logger.info("Loaded %d scene(s) for project %s", len(store._scenes), project_id)
        return store

    def save(self):
        """Write the project to disk. Returns False if the write failed; memory state is kept either way."""
        path = self.path
        if path is None:
            return True
        with self._lock:
            data = self.export_project()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except OSError as e:
            logger.error("Could not save project %s to %s: %s", self.project_id, path, e)
            return False
        return True

    def export_project(self):
        with self._lock:
            return {
                "version": PROJECT_VERSION,
                "type": "storyboard",
                "timestamp": int(time.time() * 1000),
                "inputs": asdict(self.inputs),
                "scenes": [s.to_dict() for s in self._ordered()],
            }

    def import_project(self, data, save=True):
        """
        Replace inputs and scenes with an exported project document.

        Scenes saved mid-generation come back as idle: their jobs died with the old process.
        """
        if not isinstance(data, dict) or not isinstance(data.get("scenes"), list):
            raise ValueError("Invalid project file: missing scenes list")
        scenes = {}
        for raw in data["scenes"]:
            scene = Scene.from_dict(raw)
            if scene.status == GENERATING:
                scene.status = IDLE
            scenes[scene.id] = scene
        with self._lock:
            self.inputs = StoryboardInputs.from_dict(data.get("inputs"))
            self._scenes = scenes
        if save:
            self.save()

    # -------------------------------------------------------------------------
    # Scenes
    # -------------------------------------------------------------------------

    def _ordered(self):
        return sorted(self._scenes.values(), key=lambda s: s.scene_number)

    def add_scene(self, content="", shots=None, grid_size=None, character_ids=None):
        with self._lock:
            number = max((s.scene_number for s in self._scenes.values()), default=0) + 1
            scene = Scene(
                id=uuid.uuid4().hex,
                scene_number=number,
                content=content,
                shots=[s if isinstance(s, Shot) else Shot(**s) for s in (shots or [])],
                grid_size=grid_size or self.inputs.grid_size,
                character_ids=list(character_ids or []),
            )
            self._scenes[scene.id] = scene
            self.save()
            return copy.deepcopy(scene)

    def get(self, scene_id):
        with self._lock:
            scene = self._scenes.get(scene_id)
            if scene is None:
                raise SceneNotFound(scene_id)
            return copy.deepcopy(scene)

    def list_scenes(self):
        with self._lock:
            return [copy.deepcopy(s) for s in self._ordered()]

    def delete_scene(self, scene_id):
        with self._lock:
            if self._scenes.pop(scene_id, None) is None:
                return False
            self.save()
            return True

    def pending_ids(self):
        """Ids of scenes that have no image yet, in storyboard order."""
        with self._lock:
            return [s.id for s in self._ordered() if not s.image_url]

    def set_inputs(self, inputs):
        with self._lock:
            self.inputs = inputs if isinstance(inputs, StoryboardInputs) else StoryboardInputs.from_dict(inputs)
            self.save()

    # -------------------------------------------------------------------------
    # Generation bookkeeping
    # -------------------------------------------------------------------------

    def begin_attempt(self, scene_id):
        """Mark the scene generating, clear its error and return the new attempt number."""
        with self._lock:
            scene = self._scenes.get(scene_id)
            if scene is None:
                raise SceneNotFound(scene_id)
            scene.attempt += 1
            scene.status = GENERATING
            scene.error = None
            self.save()
            return scene.attempt

    def update(self, scene_id, attempt=None, **changes):
        """
        Apply field changes to a scene.

        With `attempt`, the write is dropped unless it belongs to the scene's latest attempt.
        Returns True if the scene was updated.
        """
        with self._lock:
            scene = self._scenes.get(scene_id)
            if scene is None:
                return False
            if attempt is not None and scene.attempt != attempt:
                logger.debug("Dropping stale update for scene %s (attempt %s, current %s)",
                             scene_id, attempt, scene.attempt)
                return False
            for key, value in changes.items():
                if not hasattr(scene, key):
                    raise AttributeError(f"Scene has no field {key!r}")
                setattr(scene, key, value)
            self.save()
            return True
