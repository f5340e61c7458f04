"""
Configuration for the RoboDoc screening service.

Settings live in YAML files under ``config/``:
- model_config.yaml: segment table, preprocessing and inference policy
- llm_config.yaml: chat completion endpoint and assistant prompt
- system_config.yaml: dashboard and logging

Missing files fall back to the defaults below. Paths and secrets can be
overridden from the environment.

Author: RoboDoc Team
License: MIT
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple
import yaml

logger = logging.getLogger(__name__)

PROJECT_DIR = Path(__file__).resolve().parent.parent.parent
CONFIG_DIR = Path(os.getenv("ROBODOC_CONFIG_DIR", str(PROJECT_DIR / 'config')))

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
ALLOWED_MIME_TYPES = ('image/jpeg', 'image/png')

# segment -> (asset directory, width, height, title)
DEFAULT_SEGMENTS: Dict[str, Tuple[str, int, int, str]] = {
    'eye': ('eye_model', 416, 416, 'Eyes Check'),
    'ear': ('ear_model', 416, 416, 'Ears Check'),
    'skin': ('skin_model', 320, 320, 'Skin Check'),
    'scalp': ('scalp_model', 320, 320, 'Scalp Check'),
    'teeth': ('oral_model', 416, 416, 'Teeth Check'),
}


@dataclass(frozen=True)
class SegmentSpec:
    """
    Static description of one body segment.

    Attributes:
        name: Segment identifier (eye, ear, skin, scalp, teeth)
        model_path: Path to the segment's .tflite graph model
        labels_path: Path to the segment's label metadata YAML
        width: Model input width in pixels
        height: Model input height in pixels
        title: Human-readable name for the screen
    """
    name: str
    model_path: Path
    labels_path: Path
    width: int
    height: int
    title: str = ''

    @property
    def input_size(self) -> Tuple[int, int]:
        """(width, height) as OpenCV expects it."""
        return (self.width, self.height)

    @property
    def input_shape(self) -> Tuple[int, int, int, int]:
        """Batch-of-one NHWC shape fed to the model."""
        return (1, self.height, self.width, 3)

    @property
    def tensor_length(self) -> int:
        return self.width * self.height * 3


@dataclass(frozen=True)
class InferenceSettings:
    """Preprocessing and inference policy shared by every segment."""
    normalization: str = '0-1'
    interpolation: str = 'nearest'
    cache_models: bool = False
    score_activation: str = 'none'
    top_k: int = 3
    num_threads: int = 2
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    allowed_mime_types: Tuple[str, ...] = ALLOWED_MIME_TYPES


@dataclass(frozen=True)
class ChatSettings:
    """Settings for the hosted chat completion API."""
    endpoint: str = 'https://api.groq.com/openai/v1/chat/completions'
    model: str = 'meta-llama/llama-4-maverick-17b-128e-instruct'
    temperature: float = 0.5
    max_tokens: int = 1024
    api_key_env: str = 'GROQ_API_KEY'
    timeout_seconds: float = 30.0
    system_prompt: Optional[str] = None


@dataclass(frozen=True)
class DashboardSettings:
    host: str = '0.0.0.0'
    port: int = 8080
    debug: bool = False
    secret_key_env: str = 'DASHBOARD_SECRET_KEY'
    max_previews: int = 32
    log_level: str = 'INFO'


def load_yaml(path: Path) -> Dict[str, Any]:
    """
    Load a YAML config file.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed mapping, or an empty dict if the file is missing or invalid
    """
    if not path.exists():
        logger.warning(f"Config file not found: {path}")
        return {}

    try:
        with open(path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load config {path}: {e}")
        return {}

    if not isinstance(loaded, dict):
        logger.error(f"Config {path} is not a mapping, ignoring it")
        return {}
    return loaded


def build_segment_table(
    config: Optional[Mapping[str, Any]] = None,
    model_dir: Optional[Path] = None
) -> Mapping[str, SegmentSpec]:
    """
    Build the immutable segment table.

    Entries under ``segments:`` in the config override the defaults field
    by field. Relative asset paths resolve against ``model_dir``.

    Args:
        config: Parsed model_config.yaml contents
        model_dir: Base directory for model assets (default: ROBODOC_MODEL_DIR,
            then ``model_dir`` from the config, then ``models/``)

    Returns:
        Read-only mapping of segment name to SegmentSpec
    """
    config = config or {}
    if model_dir is None:
        model_dir = os.getenv("ROBODOC_MODEL_DIR") or config.get('model_dir') or 'models'
    base_dir = Path(model_dir)
    if not base_dir.is_absolute():
        base_dir = PROJECT_DIR / base_dir
    overrides = config.get('segments') or {}

    table = {}
    for name, (asset_dir, width, height, title) in DEFAULT_SEGMENTS.items():
        entry = overrides.get(name) or {}
        model_path = Path(entry.get('model', f"{asset_dir}/model.tflite"))
        labels_path = Path(entry.get('labels', f"{asset_dir}/metadata.yaml"))
        table[name] = SegmentSpec(
            name=name,
            model_path=model_path if model_path.is_absolute() else base_dir / model_path,
            labels_path=labels_path if labels_path.is_absolute() else base_dir / labels_path,
            width=int(entry.get('width', width)),
            height=int(entry.get('height', height)),
            title=entry.get('title', title),
        )

    return MappingProxyType(table)


def build_inference_settings(config: Optional[Mapping[str, Any]] = None) -> InferenceSettings:
    """Read preprocessing/inference policy from model_config.yaml contents."""
    config = config or {}
    inference = config.get('inference') or {}
    upload = config.get('upload') or {}

    activation = inference.get('score_activation', 'none')
    if activation not in ('none', 'softmax', 'auto'):
        logger.warning(f"Unknown score_activation '{activation}', using 'none'")
        activation = 'none'

    return InferenceSettings(
        normalization=config.get('normalization', '0-1'),
        interpolation=config.get('interpolation', 'nearest'),
        cache_models=bool(inference.get('cache_models', False)),
        score_activation=activation,
        top_k=int(inference.get('top_k', 3)),
        num_threads=int(inference.get('num_threads', 2)),
        max_upload_bytes=int(upload.get('max_bytes', MAX_UPLOAD_BYTES)),
        allowed_mime_types=tuple(upload.get('allowed_mime_types', ALLOWED_MIME_TYPES)),
    )


def build_chat_settings(config: Optional[Mapping[str, Any]] = None) -> ChatSettings:
    """Read chat API settings from llm_config.yaml contents."""
    config = config or {}
    api = config.get('api') or {}
    prompts = config.get('prompts') or {}
    defaults = ChatSettings()

    return ChatSettings(
        endpoint=api.get('endpoint', defaults.endpoint),
        model=api.get('model', defaults.model),
        temperature=float(api.get('temperature', defaults.temperature)),
        max_tokens=int(api.get('max_tokens', defaults.max_tokens)),
        api_key_env=api.get('api_key_env', defaults.api_key_env),
        timeout_seconds=float(api.get('timeout_seconds', defaults.timeout_seconds)),
        system_prompt=prompts.get('system_prompt'),
    )


def build_dashboard_settings(config: Optional[Mapping[str, Any]] = None) -> DashboardSettings:
    """Read dashboard and logging settings from system_config.yaml contents."""
    config = config or {}
    dashboard = config.get('dashboard') or {}
    logging_config = config.get('logging') or {}
    defaults = DashboardSettings()

    return DashboardSettings(
        host=dashboard.get('host', defaults.host),
        port=int(dashboard.get('port', defaults.port)),
        debug=bool(dashboard.get('debug', defaults.debug)),
        secret_key_env=dashboard.get('secret_key_env', defaults.secret_key_env),
        max_previews=int(dashboard.get('max_previews', defaults.max_previews)),
        log_level=str(logging_config.get('level', defaults.log_level)).upper(),
    )


@dataclass(frozen=True)
class Settings:
    """Everything the service reads at startup."""
    segments: Mapping[str, SegmentSpec]
    inference: InferenceSettings = field(default_factory=InferenceSettings)
    chat: ChatSettings = field(default_factory=ChatSettings)
    dashboard: DashboardSettings = field(default_factory=DashboardSettings)


def load_settings(config_dir: Optional[Path] = None) -> Settings:
    """
    Load all settings from a config directory.

    Args:
        config_dir: Directory holding the YAML files (default: CONFIG_DIR)

    Returns:
        Settings with an immutable segment table
    """
    config_dir = Path(config_dir or CONFIG_DIR)

    model_config = load_yaml(config_dir / 'model_config.yaml')
    llm_config = load_yaml(config_dir / 'llm_config.yaml')
    system_config = load_yaml(config_dir / 'system_config.yaml')

    return Settings(
        segments=build_segment_table(model_config),
        inference=build_inference_settings(model_config),
        chat=build_chat_settings(llm_config),
        dashboard=build_dashboard_settings(system_config),
    )
