"""Configuration management for voicememo."""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass
class AudioConfig:
    """Capture loop and voice activity configuration."""
    device: str = "default"
    sample_rate: int = 16000
    channels: int = 1
    tick_interval_ms: int = 50
    silence_threshold_db: float = -40.0
    silence_duration_ms: int = 5000
    min_recording_ms: int = 1000
    min_audio_seconds: float = 0.5
    artifact_dir: str = "./data/recordings"

    @property
    def block_samples(self) -> int:
        """Samples read per tick."""
        return int(self.sample_rate * self.tick_interval_ms / 1000)

    @property
    def min_samples(self) -> int:
        """Fewest samples a session must collect to produce an artifact."""
        return int(self.sample_rate * self.min_audio_seconds)


@dataclass
class TranscriptionConfig:
    """Speech-to-text configuration."""
    backend: str = "api"  # "api" or "local"
    api_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "whisper-1"
    language: str = "ko"
    timeout: float = 60.0
    whisper_model: str = "small"
    whisper_device: str = "cpu"
    whisper_compute_type: str = "int8"


@dataclass
class ClassifierConfig:
    """Intent classification configuration."""
    api_url: str = "https://generativelanguage.googleapis.com/v1beta"
    api_key: str = ""
    model: str = "gemini-2.0-flash"
    temperature: float = 0.1
    max_output_tokens: int = 256
    timeout: float = 30.0


@dataclass
class DocumentConfig:
    """Remote document (GitHub repository file) configuration."""
    api_url: str = "https://api.github.com"
    token: str = ""
    owner: str = ""
    repo: str = ""
    branch: str = "main"
    file_path: str = "00_obsidian-meta/rubato-manager.md"
    prompt_path: str = "01_Permanent/prompt/rubato-manager.md"
    timeout: float = 30.0


@dataclass
class WebConfig:
    """HTTP control API."""
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = "./logs/voicememo.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# Environment variables consulted when a secret is left empty in the YAML file
SECRET_ENV_VARS = {
    ("transcription", "api_key"): "OPENAI_API_KEY",
    ("classifier", "api_key"): "GEMINI_API_KEY",
    ("document", "token"): "GITHUB_TOKEN",
}


@dataclass
class Config:
    """Main configuration container."""
    audio: AudioConfig = field(default_factory=AudioConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    document: DocumentConfig = field(default_factory=DocumentConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}, using defaults")
            return cls()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls(
            audio=AudioConfig(**data.get("audio", {})),
            transcription=TranscriptionConfig(**data.get("transcription", {})),
            classifier=ClassifierConfig(**data.get("classifier", {})),
            document=DocumentConfig(**data.get("document", {})),
            web=WebConfig(**data.get("web", {})),
            logging=LoggingConfig(**data.get("logging", {})),
        )

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "audio": asdict(self.audio),
            "transcription": asdict(self.transcription),
            "classifier": asdict(self.classifier),
            "document": asdict(self.document),
            "web": asdict(self.web),
            "logging": asdict(self.logging),
        }

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def apply_env_secrets(self) -> None:
        """Fill empty secrets from the environment."""
        for (section, key), env_var in SECRET_ENV_VARS.items():
            target = getattr(self, section)
            if not getattr(target, key):
                value = os.environ.get(env_var, "")
                if value:
                    setattr(target, key, value)
                    logger.debug(f"Using {env_var} for {section}.{key}")

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        log_level = getattr(logging, self.logging.level.upper(), logging.INFO)

        handlers = [logging.StreamHandler()]

        if self.logging.file:
            log_path = Path(self.logging.file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path))

        logging.basicConfig(
            level=log_level,
            format=self.logging.format,
            handlers=handlers,
        )

    def ensure_directories(self) -> None:
        """Create necessary directories."""
        Path(self.audio.artifact_dir).mkdir(parents=True, exist_ok=True)


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from file, then fill secrets from the environment."""
    if path is None:
        path = os.environ.get("VOICEMEMO_CONFIG", "config/settings.yaml")
    config = Config.from_yaml(path)
    config.apply_env_secrets()
    return config
