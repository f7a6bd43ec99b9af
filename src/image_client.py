"""Client for the NovelAI image generation endpoint."""

import io
import logging
import re
import zipfile
from dataclasses import dataclass

import httpx

from config import settings
from prompt_composer import ImageRequest


logger = logging.getLogger(__name__)

GENERATE_PATH = "/ai/generate-image"
IMAGE_NAME_RE = re.compile(r"\.(png|webp|jpg|jpeg)$", re.IGNORECASE)


class ImageGenerationError(Exception):
    """Raised when the generation API rejects a request or returns no image."""
    pass


@dataclass
class GeneratedImage:
    """Raw image bytes returned by the API and the seed that produced them."""
    data: bytes
    seed: int


def build_payload(request: ImageRequest, model: str) -> dict:
    """
    Build the JSON body for a generate-image call.

    Args:
        request: Composed prompts, parameters and seed
        model: API model identifier

    Returns:
        Request body dictionary
    """
    prompts = request.prompts
    params = request.parameters
    use_coords = params.character_position_enabled

    char_captions = [
        {"char_caption": c.prompt, "centers": [{"x": 0, "y": 0}]}
        for c in prompts.characters
    ]
    negative_char_captions = [
        {"char_caption": c.negative, "centers": [{"x": 0, "y": 0}]}
        for c in prompts.characters
    ]

    return {
        "input": prompts.general_prompt,
        "model": model,
        "action": "generate",
        "parameters": {
            "prompt": prompts.general_prompt,
            "negative_prompt": prompts.negative_prompt,
            "width": params.width,
            "height": params.height,
            "n_samples": 1,
            "steps": params.steps,
            "scale": params.cfg_scale,
            "cfg_rescale": params.cfg_rescale,
            "sampler": params.sampler,
            "noise_schedule": params.scheduler,
            "seed": request.seed,
            "sm": params.smea,
            "sm_dyn": params.smea_dyn,
            "variety": params.variety,
            "qualityToggle": params.quality_toggle,
            "ucPreset": params.uc_preset,
            "params_version": 3,
            "legacy_v3_extend": False,
            "image_format": params.image_format,
            "v4_prompt": {
                "caption": {
                    "base_caption": prompts.general_prompt,
                    "char_captions": char_captions,
                },
                "use_coords": use_coords,
                "use_order": True,
            },
            "v4_negative_prompt": {
                "caption": {
                    "base_caption": prompts.negative_prompt,
                    "char_captions": negative_char_captions,
                },
            },
            "characterPrompts": [
                {
                    "prompt": c.prompt,
                    "uc": c.negative,
                    "enabled": True,
                    "center": {"x": 0, "y": 0},
                }
                for c in prompts.characters
            ],
            "use_coords": use_coords,
        },
    }


def extract_image(archive: bytes) -> bytes:
    """Return the first image file from a zip response body."""
    try:
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            for name in zf.namelist():
                if IMAGE_NAME_RE.search(name):
                    return zf.read(name)
    except zipfile.BadZipFile as e:
        raise ImageGenerationError(f"Invalid archive in API response: {e}") from e
    raise ImageGenerationError("No image found in API response")


class ImageClient:
    """Generates one image per call against the NovelAI API."""

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: API base URL (defaults to settings)
            model: Model identifier (defaults to settings)
            timeout: Read timeout in seconds (defaults to settings)
            transport: Optional httpx transport, used by tests
        """
        self.base_url = (base_url or settings.novelai.base_url).rstrip("/")
        self.model = model or settings.novelai.model
        self.timeout = timeout or settings.novelai.timeout
        self._transport = transport

    async def generate(self, request: ImageRequest, api_key: str) -> GeneratedImage:
        """
        Generate a single image.

        Args:
            request: Composed prompts, parameters and seed
            api_key: Bearer token for the API

        Returns:
            The generated image bytes and seed

        Raises:
            ImageGenerationError: On a non-success response or missing image
            httpx.HTTPError: On transport failures
        """
        payload = build_payload(request, self.model)
        logger.debug(f"Generate request seed={request.seed} characters={len(request.prompts.characters)}")

        timeout = httpx.Timeout(10.0, read=self.timeout)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.base_url}{GENERATE_PATH}",
                json=payload,
                headers={"Authorization": f"Bearer {api_key}"},
            )

        if response.status_code < 200 or response.status_code >= 300:
            raise ImageGenerationError(f"NAI API error {response.status_code}: {response.text}")

        return GeneratedImage(data=extract_image(response.content), seed=request.seed)
