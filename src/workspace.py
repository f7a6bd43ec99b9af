"""Pydantic models for the prompt sources of a project."""

from pydantic import BaseModel, Field


class GenerationParameters(BaseModel):
    """Image generation parameters stored on a project."""
    width: int = Field(832, ge=64, le=4096)
    height: int = Field(1216, ge=64, le=4096)
    steps: int = Field(28, ge=1, le=50)
    cfg_scale: float = Field(5.0, ge=0.0, le=10.0)
    cfg_rescale: float = Field(0.0, ge=0.0, le=1.0)
    sampler: str = "k_euler_ancestral"
    scheduler: str = "native"
    seed: int | None = Field(None, ge=0, le=2**32 - 1)
    smea: bool = False
    smea_dyn: bool = False
    variety: bool = False
    quality_toggle: bool = True
    uc_preset: int = Field(3, ge=0)
    image_format: str = "png"
    character_position_enabled: bool = False


class Character(BaseModel):
    """A character slot with its own prompt templates."""
    id: int
    name: str
    slot_index: int = 0
    prompt: str = ""
    negative: str = ""
    enabled: bool = True


class ProjectScene(BaseModel):
    """A scene of a project and its placeholder values."""
    id: int
    name: str
    placeholders: dict[str, str] = Field(default_factory=dict)
    sort_order: int = 0


class CharacterSceneOverride(BaseModel):
    """Placeholder values for one character within one scene."""
    project_scene_id: int
    character_id: int
    placeholders: dict[str, str] = Field(default_factory=dict)


class Project(BaseModel):
    """A project: prompt templates, characters and scenes."""
    id: int
    name: str
    description: str | None = None
    general_prompt: str = ""
    negative_prompt: str = ""
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)
    characters: list[Character] = Field(default_factory=list)
    scenes: list[ProjectScene] = Field(default_factory=list)
    overrides: list[CharacterSceneOverride] = Field(default_factory=list)

    def get_scene(self, scene_id: int) -> ProjectScene | None:
        """Return the scene with the given id, if any."""
        for scene in self.scenes:
            if scene.id == scene_id:
                return scene
        return None

    def override_map(self, scene_id: int) -> dict[int, dict[str, str]]:
        """Map character id to its placeholder overrides for one scene."""
        return {
            override.character_id: override.placeholders
            for override in self.overrides
            if override.project_scene_id == scene_id
        }
