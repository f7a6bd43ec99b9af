"""Compose final generation prompts from project, scene and character sources."""

import random

from pydantic import BaseModel, Field

from placeholder import resolve_placeholders
from workspace import GenerationParameters, Project


MAX_SEED = 2**32 - 1


class SceneNotFoundError(Exception):
    """Scene does not belong to the project."""
    pass


class CharacterPrompt(BaseModel):
    """Resolved prompt text for one character."""
    character_id: int | None = None
    name: str
    prompt: str = ""
    negative: str = ""


class ComposedPrompt(BaseModel):
    """Fully resolved prompt text for one image."""
    general_prompt: str = ""
    negative_prompt: str = ""
    characters: list[CharacterPrompt] = Field(default_factory=list)


class ImageRequest(BaseModel):
    """Everything the image client needs to generate one image."""
    prompts: ComposedPrompt
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)
    seed: int = Field(..., ge=0, le=MAX_SEED)


def merge_character_values(
    scene_values: dict[str, str],
    override_values: dict[str, str],
) -> dict[str, str]:
    """Overlay a character's scene overrides on the scene values.

    Overrides left blank fall back to the scene value.
    """
    merged = dict(scene_values)
    merged.update({key: value for key, value in override_values.items() if value != ""})
    return merged


def compose_prompts(project: Project, project_scene_id: int | None) -> ComposedPrompt:
    """
    Resolve every prompt template of a project for one scene.

    Project templates are resolved with the scene's placeholder values.
    Each enabled character's templates are resolved with the scene values
    overlaid by that character's overrides for the scene.

    Args:
        project: Project holding templates, characters and scenes
        project_scene_id: Scene to resolve for, or None for no scene values

    Returns:
        The composed prompt

    Raises:
        SceneNotFoundError: If the scene is not part of the project
    """
    scene_values: dict[str, str] = {}
    overrides: dict[int, dict[str, str]] = {}

    if project_scene_id is not None:
        scene = project.get_scene(project_scene_id)
        if scene is None:
            raise SceneNotFoundError(
                f"Scene {project_scene_id} not found in project {project.id}"
            )
        scene_values = scene.placeholders
        overrides = project.override_map(project_scene_id)

    characters = []
    for character in sorted(project.characters, key=lambda c: c.slot_index):
        if not character.enabled:
            continue
        values = merge_character_values(scene_values, overrides.get(character.id, {}))
        characters.append(CharacterPrompt(
            character_id=character.id,
            name=character.name,
            prompt=resolve_placeholders(character.prompt, values),
            negative=resolve_placeholders(character.negative, values),
        ))

    return ComposedPrompt(
        general_prompt=resolve_placeholders(project.general_prompt, scene_values),
        negative_prompt=resolve_placeholders(project.negative_prompt, scene_values),
        characters=characters,
    )


def build_request(prompts: ComposedPrompt, parameters: GenerationParameters) -> ImageRequest:
    """Attach parameters and a seed to a composed prompt.

    A seed pinned in the parameters is reused; otherwise every call
    draws a fresh one.
    """
    seed = parameters.seed if parameters.seed is not None else random.randint(0, MAX_SEED)
    return ImageRequest(prompts=prompts, parameters=parameters, seed=seed)
