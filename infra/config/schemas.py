"""
Configuration schemas for folio.

Defines the structure of the library configuration file.
All config is stored in ~/Documents/folio/ (or FOLIO_STORAGE_ROOT).
"""

from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator
import os
import re


ENGINES = ("livetext", "tesseract", "openai", "local-vision")

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "local-vision": "qwen2.5vl:7b",
}


class BackendConfig(BaseModel):
    """Configuration handed to a recognition backend's constructor."""
    engine: str = Field("tesseract", description="Backend engine: livetext, tesseract, openai, local-vision")
    lang: str = Field("eng", description="Language hint (tesseract codes, e.g. eng, deu+eng)")
    api_key: Optional[str] = Field(None, description="API key for hosted backends (can use ${ENV_VAR} syntax)")
    model: Optional[str] = Field(None, description="Model identifier (hosted and local models)")
    temperature: float = Field(0.0, ge=0.0, le=2.0, description="Sampling temperature for model backends")
    timeout: float = Field(120.0, gt=0, description="Per-request timeout in seconds")
    refusal_retries: int = Field(2, ge=0, description="Extra attempts when a model refuses to transcribe")
    host: str = Field("http://localhost:11434", description="Local model server base URL")
    device: Optional[str] = Field(None, description="Device hint for local models: auto, cuda, mps, cpu")
    keep_alive: str = Field("5m", description="How long the local server keeps the model loaded")
    max_image_dim: int = Field(2048, ge=256, description="Longest image side sent to model backends")

    @field_validator("engine")
    @classmethod
    def check_engine(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ENGINES:
            raise ValueError(f"Unknown OCR engine '{value}' (expected one of: {', '.join(ENGINES)})")
        return value

    @model_validator(mode="after")
    def fill_model(self):
        if self.model is None and self.engine in DEFAULT_MODELS:
            self.model = DEFAULT_MODELS[self.engine]
        return self

    def resolved_api_key(self) -> Optional[str]:
        if not self.api_key:
            return None
        return resolve_env_vars(self.api_key) or None


class ResilienceConfig(BaseModel):
    """Retry and circuit-breaker settings."""
    max_retries: int = Field(3, ge=0, description="Retries after the first attempt")
    base_delay: float = Field(1.0, ge=0.0, description="Backoff base; retry n waits base_delay * 2**n seconds")
    failure_threshold: int = Field(5, ge=1, description="Consecutive failures that open the circuit")
    reset_timeout: float = Field(60.0, ge=0.0, description="Seconds the circuit stays open before a probe")


class BatchConfig(BaseModel):
    concurrency: int = Field(4, ge=1, description="Parallel recognition workers")
    continue_on_error: bool = Field(True, description="Record failures and keep going")
    max_retries: Optional[int] = Field(None, ge=0, description="Override ResilienceConfig.max_retries for batches")
    silent: bool = Field(False, description="Suppress the progress display")


class PlacementConfig(BaseModel):
    """Tuning constants for the invisible text layer."""
    font_name: str = Field("Helvetica", description="Standard PDF font used for the text layer")
    word_height_ratio: float = Field(0.85, gt=0.0, le=2.0)
    min_word_font: float = Field(6.0, gt=0.0)
    max_word_font: float = Field(72.0, gt=0.0)
    margin: float = Field(10.0, ge=0.0)
    target_chars_per_line: int = Field(80, ge=1)
    char_width_factor: float = Field(0.5, gt=0.0)
    line_height_factor: float = Field(1.2, gt=0.0)
    min_block_font: float = Field(4.0, gt=0.0)
    max_block_font: float = Field(14.0, gt=0.0)
    unicode_font_path: Optional[str] = Field(
        None, description="TTF used when page text falls outside WinAnsi; overrides cid_font"
    )
    cid_font: str = Field("HeiseiMin-W3", description="reportlab UnicodeCIDFont used for non-Latin text")

    @model_validator(mode="after")
    def check_ranges(self):
        if self.min_word_font > self.max_word_font:
            raise ValueError("min_word_font must not exceed max_word_font")
        if self.min_block_font > self.max_block_font:
            raise ValueError("min_block_font must not exceed max_block_font")
        return self


class FolioConfig(BaseModel):
    """
    Library-level configuration.

    Stored at: {storage_root}/config.yaml
    """
    backend: BackendConfig = Field(default_factory=BackendConfig)
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    placement: PlacementConfig = Field(default_factory=PlacementConfig)
    log_level: str = Field("INFO", description="Pipeline log level")

    @classmethod
    def with_defaults(cls) -> "FolioConfig":
        """Create a config with sensible defaults."""
        return cls(backend=BackendConfig(api_key="${OPENAI_API_KEY}"))


def resolve_env_vars(value: str) -> str:
    """
    Resolve ${ENV_VAR} references in a string.

    Examples:
        "${OPENAI_API_KEY}" -> actual value from environment
        "literal-value" -> "literal-value"
        "${MISSING_VAR}" -> "" (empty string if not set)
    """
    if not isinstance(value, str):
        return value

    pattern = r'\$\{([^}]+)\}'

    def replace(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")

    return re.sub(pattern, replace, value)
