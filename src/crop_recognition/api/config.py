"""Service settings using pydantic-settings.

Environment variable management for the HTTP service. Pipeline parameters
(thresholds, input size, NMS mode) live in pipeline.yaml; these settings only
say where things are and how the process serves.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        MODEL_PATH: ONNX model file loaded at startup
        LABELS_PATH: Newline separated class labels, one per class id
        PIPELINE_CONFIG: Optional path to pipeline.yaml
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
        HOST: Bind address for uvicorn
        PORT: FastAPI server port
        MAX_CONCURRENT_INFERENCES: Forward passes allowed to overlap
        MAX_UPLOAD_BYTES: Largest accepted request image
        WARMUP: Run one forward pass before accepting requests
    """

    MODEL_PATH: str = "./models/crop_classifier.onnx"
    LABELS_PATH: str = "./models/labels.txt"
    PIPELINE_CONFIG: Optional[str] = None
    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    MAX_CONCURRENT_INFERENCES: int = 4
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    WARMUP: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance.

    Returns:
        Settings instance loaded from environment
    """
    return Settings()
