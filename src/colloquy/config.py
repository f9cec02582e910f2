"""Configuration management for colloquy: settings, credentials and config files."""

import os
import json
import logging
import getpass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import keyring
from keyring.errors import KeyringError
from pydantic import Field, PrivateAttr, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .models.conversation_config import ConversationConfig
from .services.llm.base import DEFAULT_TIMEOUT, LLMProviderKind, ProviderCredentials

logger = logging.getLogger(__name__)

# Get default colloquy directory - prioritize environment variable or fallback to home directory
DEFAULT_COLLOQUY_DIR = os.getenv('COLLOQUY_DIR', str(Path.home() / '.colloquy'))

class PathManager:
    """Manages all file paths used by the application."""

    def __init__(self, base_dir: Union[str, Path]):
        """Initialize with the base directory."""
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

        self.subdirs = {
            "output": self.base_dir / "output",  # For exported transcripts
            "data": self.base_dir / "data",      # For database files
            "logs": self.base_dir / "logs",      # For log files
            "config": self.base_dir / "config",  # For configuration files
        }

        for subdir in self.subdirs.values():
            subdir.mkdir(parents=True, exist_ok=True)

        logger.debug(f"Initialized path manager with base directory: {self.base_dir}")

    def get_path(self, category: str) -> Path:
        """Get the path for a specific category."""
        if category not in self.subdirs:
            new_path = self.base_dir / category
            new_path.mkdir(parents=True, exist_ok=True)
            self.subdirs[category] = new_path
        return self.subdirs[category]

    def get_file_path(self, category: str, filename: str) -> Path:
        """Get a path to a specific file within a category."""
        return self.get_path(category) / filename

    def get_db_path(self, db_name: str) -> Path:
        return self.get_file_path("data", f"{db_name}.db")

    def get_log_path(self, log_name: str) -> Path:
        return self.get_file_path("logs", f"{log_name}.log")

    def get_unique_output_path(self, prefix: str, suffix: str) -> Path:
        """Generate a unique output path with timestamp."""
        import datetime
        timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        return self.get_file_path("output", f"{prefix}_{timestamp}{suffix}")

class SecureKeyManager:
    """Manages secure storage and retrieval of API keys."""

    APP_NAME = "colloquy"

    @staticmethod
    def get_key(service_name: str) -> Optional[str]:
        """Retrieve an API key from secure storage."""
        try:
            return keyring.get_password(SecureKeyManager.APP_NAME, service_name)
        except KeyringError as e:
            logger.error(f"Failed to retrieve key for {service_name}: {e}")
            return None

    @staticmethod
    def set_key(service_name: str, key: str) -> bool:
        """Store an API key in secure storage."""
        try:
            keyring.set_password(SecureKeyManager.APP_NAME, service_name, key)
            return True
        except KeyringError as e:
            logger.error(f"Failed to store key for {service_name}: {e}")
            return False

    @staticmethod
    def delete_key(service_name: str) -> bool:
        """Delete an API key from secure storage."""
        try:
            keyring.delete_password(SecureKeyManager.APP_NAME, service_name)
            return True
        except KeyringError as e:
            logger.error(f"Failed to delete key for {service_name}: {e}")
            return False

    @staticmethod
    def prompt_for_key(service_name: str, force_input: bool = False) -> Optional[str]:
        """Prompt user for API key and store it securely."""
        existing_key = None if force_input else SecureKeyManager.get_key(service_name)
        if existing_key:
            return existing_key

        print(f"Please enter your {service_name} API key (input will be hidden):")
        key = getpass.getpass()
        if key:
            SecureKeyManager.set_key(service_name, key)
            return key
        return None

class Settings(BaseSettings):
    """Application settings loaded from environment variables with secure API key handling."""

    colloquy_dir: Path = Field(DEFAULT_COLLOQUY_DIR, validation_alias="COLLOQUY_DIR")

    # Direct keys win over keyring references
    openai_api_key: Optional[SecretStr] = Field(None, validation_alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[SecretStr] = Field(None, validation_alias="ANTHROPIC_API_KEY")
    openai_api_key_ref: Optional[str] = Field("", validation_alias="OPENAI_API_KEY_REF")
    anthropic_api_key_ref: Optional[str] = Field("", validation_alias="ANTHROPIC_API_KEY_REF")

    # Endpoints
    openai_base_url: Optional[str] = Field(None, validation_alias="OPENAI_BASE_URL")
    anthropic_base_url: Optional[str] = Field(None, validation_alias="ANTHROPIC_BASE_URL")
    ollama_host: str = Field("http://localhost:11434", validation_alias="OLLAMA_HOST")
    request_timeout: float = Field(DEFAULT_TIMEOUT, gt=0, validation_alias="REQUEST_TIMEOUT")

    # Logging
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(None, validation_alias="LOG_FILE")

    _paths: Optional[PathManager] = PrivateAttr(default=None)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._paths = PathManager(self.colloquy_dir)
        if not self.log_file:
            self.log_file = self._paths.get_log_path("colloquy")

    @property
    def paths(self) -> PathManager:
        return self._paths

    def _resolve_key(
        self,
        direct: Optional[SecretStr],
        ref: Optional[str],
        default_ref: str,
        prompt_if_missing: bool
    ) -> Optional[str]:
        if direct and direct.get_secret_value():
            return direct.get_secret_value()

        if ref:
            key = SecureKeyManager.get_key(ref)
            if key:
                return key

        if prompt_if_missing:
            return SecureKeyManager.prompt_for_key(ref or default_ref)
        return None

    def get_openai_api_key(self, prompt_if_missing: bool = False) -> Optional[str]:
        """Get OpenAI API key from the environment or secure storage."""
        return self._resolve_key(
            self.openai_api_key, self.openai_api_key_ref, "openai-api", prompt_if_missing
        )

    def get_anthropic_api_key(self, prompt_if_missing: bool = False) -> Optional[str]:
        """Get Anthropic API key from the environment or secure storage."""
        return self._resolve_key(
            self.anthropic_api_key, self.anthropic_api_key_ref, "anthropic-api", prompt_if_missing
        )

    def provider_credentials(self, kinds: Optional[List[str]] = None, interactive: bool = False) -> ProviderCredentials:
        """Collect credentials once, for the provider kinds that will be used."""
        wanted = {k.lower() for k in kinds} if kinds else {k.value for k in LLMProviderKind}

        api_keys: Dict[str, SecretStr] = {}
        if LLMProviderKind.OPENAI.value in wanted:
            key = self.get_openai_api_key(prompt_if_missing=interactive)
            if key:
                api_keys[LLMProviderKind.OPENAI.value] = SecretStr(key)
        if LLMProviderKind.ANTHROPIC.value in wanted:
            key = self.get_anthropic_api_key(prompt_if_missing=interactive)
            if key:
                api_keys[LLMProviderKind.ANTHROPIC.value] = SecretStr(key)

        base_urls = {LLMProviderKind.OLLAMA.value: self.ollama_host}
        if self.openai_base_url:
            base_urls[LLMProviderKind.OPENAI.value] = self.openai_base_url
        if self.anthropic_base_url:
            base_urls[LLMProviderKind.ANTHROPIC.value] = self.anthropic_base_url

        return ProviderCredentials(
            api_keys=api_keys,
            base_urls=base_urls,
            timeout=self.request_timeout
        )

    def setup_logging(self, level: Optional[str] = None):
        """Configure logging based on settings."""
        level = getattr(logging, (level or self.log_level).upper(), logging.INFO)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)

        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        # All logs go to file
        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(
                logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            )
            root_logger.addHandler(file_handler)

        # Only warnings and errors on the console
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
        root_logger.addHandler(console_handler)

        logger.info(f"Logging to file: {self.log_file}")

# Create global settings instance
settings = Settings()

def _read_json(path: Path) -> Any:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"File not found: {path}") from None
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

def load_conversation_config(config_path: Union[str, Path]) -> ConversationConfig:
    """Load and validate a conversation configuration file.

    Speakers reference character files by name; those are resolved from the
    ``characters`` directory next to the configuration file.
    """
    config_path = Path(config_path)
    logger.info(f"Loading configuration from {config_path}")
    data = _read_json(config_path)
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration in {config_path} must be a JSON object")

    speakers_key = "speakers" if "speakers" in data else "llmProviders"
    speakers = data.get(speakers_key)
    if not isinstance(speakers, list):
        raise ConfigurationError("Configuration must include a list of speakers")

    characters_dir = config_path.parent / "characters"
    resolved = []
    for entry in speakers:
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Invalid speaker entry: {entry!r}")
        entry = dict(entry)
        character_ref = entry.pop("characterDefinition", None) or entry.pop("character_file", None)
        if isinstance(character_ref, str):
            character_path = characters_dir / character_ref
            if not character_path.exists():
                raise ConfigurationError(
                    f"Character definition file {character_ref} not found for {entry.get('id')}"
                )
            entry["character"] = _read_json(character_path)
        resolved.append(entry)

    data = {**data, speakers_key: resolved}

    try:
        config = ConversationConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e

    logger.info(
        f"Loaded {len(config.speakers)} speakers: {', '.join(config.speaker_ids)}"
    )
    return config
