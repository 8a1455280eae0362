from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env.local", env_file_encoding="utf-8", extra="ignore")

    # Firebase
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None
    FIREBASE_CREDENTIALS_JSON_STRING: Optional[str] = None

    # Persistence backend: memory (default, single process) | firestore
    STORE_BACKEND: str = "memory"

    # LLM (semantic judge)
    LLM_PROVIDER: str = "openai"  # openai | echo
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL_NAME: str = "gpt-4o-mini"
    SEMANTIC_JUDGE_TIMEOUT_S: float = 15.0
    SEMANTIC_JUDGE_WORKERS: int = 32

    # Embeddings
    EMBEDDING_PROVIDER: str = "model"  # model (sentence-transformers) | hash
    EMBEDDING_TEXT_MODEL: str = "all-MiniLM-L6-v2"
    EMBEDDING_IMAGE_MODEL: str = "clip-vit-b32"
    EMBEDDING_DEVICE: Optional[str] = None  # cpu, cuda, mps
    EMBEDDING_DIM_TEXT: int = 384
    EMBEDDING_DIM_IMAGE: int = 512
    EMBEDDING_TIMEOUT_S: float = 20.0

    # Scoring policy: semantic (default) | attribute
    SCORING_POLICY: str = "semantic"
    AUTO_MATCH_THRESHOLD: float = 75.0
    POTENTIAL_MATCH_THRESHOLD: float = 10.0
    POTENTIAL_MATCH_LIMIT: int = 20
    PRE_LOST_WINDOW_HOURS: float = 12.0

    # Duplicate submission guard
    DUPLICATE_WINDOW_HOURS: float = 24.0
    DUPLICATE_SIMILARITY_THRESHOLD: float = 0.95

    # Candidate scoring pool
    MATCH_WORKERS: int = 8

    # Logging
    LOG_JSON: bool = False


settings = Settings()
