"""
Storyboard Forge - Image Service
Builds request payloads for storyboard pages and wraps them as job factories
for SceneGenerator: factory(token) -> data URI.
"""
ASPECT_RATIOS = {
    "1:1": "IMAGE_ASPECT_RATIO_SQUARE",
    "16:9": "IMAGE_ASPECT_RATIO_LANDSCAPE",
    "9:16": "IMAGE_ASPECT_RATIO_PORTRAIT",
    "2.39:1": "IMAGE_ASPECT_RATIO_LANDSCAPE",
}
DEFAULT_ASPECT_RATIO = "IMAGE_ASPECT_RATIO_LANDSCAPE"


def map_aspect_ratio(ratio):
    return ASPECT_RATIOS.get(ratio, DEFAULT_ASPECT_RATIO)


def inline_image_part(data_uri, default_mime="image/png"):
    """Turn a data URI into an inline_data part. Returns None for anything that is not base64 data."""
    if not data_uri or "base64," not in data_uri:
        return None
    header, data = data_uri.split("base64,", 1)
    mime = header.split(";")[0].split(":")[-1] if header.startswith("data:") else ""
    return {"inline_data": {"mime_type": mime or default_mime, "data": data}}


def _cast_for(scene, inputs):
    return [c for c in inputs.characters if c.id in scene.character_ids]


def _shot_list(scene):
    if scene.shots:
        return "\n".join(
            f"Panel {s.panel_number} [CAMERA: {s.shot_type}]: {s.description}" for s in scene.shots
        )
    return scene.content


def _cast_text(cast):
    if not cast:
        return ""
    lines = [f"Cast {i} ({c.name}): {c.description}" for i, c in enumerate(cast, start=1)]
    return "CAST IN SCENE:\n" + "\n".join(lines) + "\n"


def _payload(parts, inputs):
    return {
        "contents": [{"parts": parts}],
        "generationConfig": {"imageConfig": {"aspectRatio": map_aspect_ratio(inputs.aspect_ratio)}},
        "cleanup": True,
    }


def _reference_parts(images):
    parts = []
    for image in images:
        part = inline_image_part(image)
        if part:
            parts.append(part)
    return parts


def build_page_payload(scene, inputs):
    """
    Request body for a fresh storyboard sheet.

    Args:
        scene: Scene to draw
        inputs: StoryboardInputs (style, aspect ratio, cast, global background)
    """
    cast = _cast_for(scene, inputs)
    prompt = (
        f"STORYBOARD SHEET, {scene.grid_size or inputs.grid_size} grid.\n"
        f"STYLE: {inputs.style}\nCOLOR: {inputs.color_type}\n"
        f"{_cast_text(cast)}"
        f"SHOT LIST:\n{_shot_list(scene)}\n"
        f"(Language: {inputs.language})"
    )
    images = [inputs.global_background_image, scene.reference_image]
    images += list(scene.material_images)
    images += [c.image for c in cast]
    return _payload([{"text": prompt}] + _reference_parts(images), inputs)


def build_edit_payload(scene, instruction, inputs, materials=None):
    """Request body that modifies the scene's current image according to `instruction`."""
    if not scene.image_url:
        raise ValueError(f"Scene {scene.scene_number} has no image to edit")
    if not instruction or not instruction.strip():
        raise ValueError("Edit instruction is empty")
    cast = _cast_for(scene, inputs)
    prompt = (
        "EDIT STORYBOARD SHEET. Keep the grid layout.\n"
        f"STYLE: {inputs.style}\n"
        f"{_cast_text(cast)}"
        f"INSTRUCTION: {instruction.strip()}"
    )
    images = [scene.image_url, inputs.global_background_image]
    images += list(materials or [])
    images += [c.image for c in cast]
    return _payload([{"text": prompt}] + _reference_parts(images), inputs)


def page_job(client, scene, inputs):
    """Job factory that renders a new sheet for `scene`."""
    payload = build_page_payload(scene, inputs)

    def run(token):
        return client.run(payload, token)
    return run


def edit_job(client, scene, instruction, inputs, materials=None):
    """Job factory that edits the current sheet of `scene`."""
    payload = build_edit_payload(scene, instruction, inputs, materials)

    def run(token):
        return client.run(payload, token)
    return run
