"""
Application configuration.

Everything is read from environment variables once, when the Flask app is
created. DO NOT hardcode API keys - use environment variables.
"""
import os
import tempfile
from dataclasses import dataclass, field
from typing import Optional

# Raster / trace / extrusion constants
CANVAS_SIZE = 512
CANVAS_FILL = (255, 255, 255)
THRESHOLD_CUTOFF = 127
TRACE_TURD_SIZE = 100          # contours smaller than this (px^2) are specks
TRACE_TOLERANCE = 1.0          # approxPolyDP epsilon in pixels
MODEL_WIDTH_MM = 50.0          # canvas width maps to this many model units
EXTRUDE_DEPTH = 2.0
BEVEL_THICKNESS = 0.4
BEVEL_SIZE = 0.3
BEVEL_SEGMENTS = 3

# Metallic material
METAL_COLORS = {
    'gold': (0.83, 0.69, 0.22, 1.0),
    'silver': (0.75, 0.75, 0.78, 1.0),
    'bronze': (0.69, 0.45, 0.2, 1.0),
    'copper': (0.72, 0.45, 0.2, 1.0),
    'nickel': (0.64, 0.64, 0.6, 1.0),
}
METALNESS = 1.0
ROUGHNESS = 0.3


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_str(name, default=None):
    value = os.environ.get(name, '').strip()
    return value or default


def _choice(value, allowed, default):
    value = (value or '').strip().lower()
    return value if value in allowed else default


@dataclass(frozen=True)
class HandlerOptions:
    """Feature flags for the single coin handler.

    Each historical variant of the endpoint is one combination of these flags.
    """

    vision_fallback: bool = True        # retry text-only on a content-policy rejection
    output_format: str = 'base64'       # 'url' or 'base64' for the 2D image
    multiple_images: bool = False       # accept more than one reference image
    generate_model: bool = False        # run the image -> 3D pipeline
    model_format: str = 'glb'           # 'glb' or 'stl'
    model_output: str = 'base64'        # 'base64' inline or 'url' temp download
    reject_empty_trace: bool = False    # empty trace -> 422 instead of empty model
    preview_lights: bool = False        # add light nodes to the exported scene

    def __post_init__(self):
        object.__setattr__(self, 'output_format', _choice(self.output_format, ('url', 'base64'), 'base64'))
        object.__setattr__(self, 'model_format', _choice(self.model_format, ('glb', 'stl'), 'glb'))
        object.__setattr__(self, 'model_output', _choice(self.model_output, ('url', 'base64'), 'base64'))

    @classmethod
    def from_env(cls):
        return cls(
            vision_fallback=_env_flag('ENABLE_VISION_FALLBACK', True),
            output_format=_env_str('OUTPUT_FORMAT', 'base64'),
            multiple_images=_env_flag('ALLOW_MULTIPLE_IMAGES', False),
            generate_model=_env_flag('GENERATE_MODEL', False),
            model_format=_env_str('MODEL_FORMAT', 'glb'),
            model_output=_env_str('MODEL_OUTPUT', 'base64'),
            reject_empty_trace=_env_flag('REJECT_EMPTY_TRACE', False),
            preview_lights=_env_flag('PREVIEW_LIGHTS', False),
        )


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = ''
    openai_base_url: Optional[str] = None
    allowed_origin: str = '*'
    image_model: str = 'gpt-image-1'
    image_size: str = '1024x1024'
    image_quality: Optional[str] = None
    image_style: Optional[str] = None
    image_response_format: Optional[str] = None
    image_timeout: float = 120.0
    download_timeout: float = 30.0
    artifact_dir: str = field(default_factory=lambda: os.path.join(tempfile.gettempdir(), 'coin-forge'))
    artifact_max_age: float = 900.0
    options: HandlerOptions = field(default_factory=HandlerOptions)

    @property
    def has_api_key(self):
        return len(self.openai_api_key) > 10

    @classmethod
    def from_env(cls):
        """Load settings from the process environment"""
        return cls(
            openai_api_key=os.environ.get('OPENAI_API_KEY', '').strip(),
            openai_base_url=_env_str('OPENAI_BASE_URL'),
            allowed_origin=_env_str('ALLOWED_ORIGIN', '*'),
            image_model=_env_str('IMAGE_MODEL', 'gpt-image-1'),
            image_size=_env_str('IMAGE_SIZE', '1024x1024'),
            image_quality=_env_str('IMAGE_QUALITY'),
            image_style=_env_str('IMAGE_STYLE'),
            image_response_format=_env_str('IMAGE_RESPONSE_FORMAT'),
            image_timeout=float(_env_str('IMAGE_TIMEOUT', '120')),
            download_timeout=float(_env_str('DOWNLOAD_TIMEOUT', '30')),
            artifact_dir=_env_str('ARTIFACT_DIR', os.path.join(tempfile.gettempdir(), 'coin-forge')),
            artifact_max_age=float(_env_str('ARTIFACT_MAX_AGE', '900')),
            options=HandlerOptions.from_env(),
        )
