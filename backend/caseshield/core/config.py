from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "CaseShield"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Compression
    MAX_COMPRESSION_RATIO: int = 50
    DEFAULT_COMPRESSION_RATIO: int = 10

    # Threshold committee
    DEFAULT_THRESHOLD: int = 3
    DEFAULT_COMMITTEE_SIZE: int = 5
    SESSION_TIMEOUT_HOURS: int = 24
    MIN_JUSTIFICATION_LENGTH: int = 50
    SWEEP_INTERVAL_SECONDS: float = 60.0
    VALIDATOR_IDS: List[str] = []

    # External backends (empty = degraded mode)
    PROVER_MODULE: str = ""
    CIRCUIT_ARTIFACT_DIR: str = "circuits"
    COMPRESSION_MODULE: str = ""

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_prefix="CASESHIELD_",
        env_file=".env",
    )

settings = Settings()
