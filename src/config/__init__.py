"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MIN_WORKER_CONCURRENCY = 1
MAX_WORKER_CONCURRENCY = 32


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-kb", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Queue (Redis) ==========
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the job queue"
    )
    queue_prefix: str = Field(default="helpdesk", description="Key prefix for queue structures")
    queue_name: str = Field(default="kb-indexing", description="Indexing queue name")
    queue_attempts: int = Field(
        default=1,
        description="Delivery attempts per message before it is parked as failed",
        ge=1
    )
    queue_backoff_seconds: float = Field(
        default=2.0,
        description="Base delay for exponential redelivery backoff",
        ge=0
    )
    queue_keep_completed: int = Field(default=200, description="Completed job ids retained", ge=0)
    queue_keep_failed: int = Field(default=500, description="Failed job ids retained", ge=0)
    queue_poll_timeout_seconds: float = Field(
        default=5.0,
        description="Blocking reserve timeout per poll",
        gt=0
    )
    queue_reclaim_on_start: bool = Field(
        default=False,
        description="Return stranded processing messages to pending at worker start (single-worker deployments only)"
    )

    # ========== Worker ==========
    worker_concurrency: int = Field(
        default=4,
        description="Concurrent indexing jobs per worker process (clamped to 1..32)"
    )

    # ========== Model Service (Ollama-compatible) ==========
    model_host: str = Field(
        default="http://127.0.0.1:11434",
        description="Primary model service host"
    )
    model_fallback_hosts: List[str] = Field(
        default=["http://localhost:11434", "http://127.0.0.1:11434"],
        description="Hosts tried after the primary, in order"
    )
    model_timeout_seconds: float = Field(
        default=60.0,
        description="Per-call timeout for model requests",
        gt=0
    )
    embed_model: str = Field(default="nomic-embed-text:latest", description="Embedding model")
    embed_retries: int = Field(default=3, description="Embedding attempts per host", ge=1)
    chat_model: str = Field(default="llama3.1:latest", description="Chat/generation model")
    chat_retries: int = Field(default=1, description="Chat attempts per host", ge=1)
    embedding_dimension: int = Field(
        default=768,
        description="Embedding vector dimension",
        ge=8
    )

    # ========== Milvus Vector Index ==========
    milvus_uri: str = Field(
        default="http://localhost:19530",
        description="Milvus server URI (or a local Milvus Lite file path)"
    )
    milvus_token: str = Field(default="", description="Milvus token / API key")
    milvus_collection_name: str = Field(
        default="kb_chunks",
        description="Milvus collection holding chunk embeddings"
    )

    # ========== Knowledge Base ==========
    kb_storage_dir: Path = Field(
        default=Path("storage/kb"),
        description="Root directory for stored source files"
    )
    kb_chunk_size: int = Field(default=1200, description="Target characters per chunk", ge=1)
    kb_chunk_overlap: int = Field(default=200, description="Characters of overlap", ge=0)
    kb_min_text_length: int = Field(
        default=5,
        description="Extracted text shorter than this is treated as empty",
        ge=0
    )
    kb_top_k_default: int = Field(default=5, description="Default retrieval depth", ge=1, le=20)
    kb_top_k_max: int = Field(default=20, description="Maximum retrieval depth", ge=1)
    kb_max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Maximum upload size in bytes",
        ge=1
    )

    # ========== Entitlement Defaults ==========
    default_max_kb_sources: int = Field(default=50, description="Default KB source quota", ge=0)
    default_max_ai_msgs_per_month: int = Field(
        default=500,
        description="Default monthly AI assist quota",
        ge=0
    )

    # ========== Assist ==========
    ai_system_user_id: Optional[str] = Field(
        default=None,
        description="User id used as author of AI-generated ticket comments"
    )
    assist_dedupe_window_seconds: float = Field(
        default=60.0,
        description="Window in which identical assist requests are served from cache",
        gt=0
    )
    assist_preview_cache_max_items: int = Field(
        default=500,
        description="Maximum entries in the dry-run preview cache",
        ge=1
    )
    assist_similarity_threshold: float = Field(
        default=0.6,
        description="Similarity at or above which a hit counts as strong",
        ge=-1.0,
        le=1.0
    )
    assist_max_comment_length: int = Field(
        default=4800,
        description="Maximum length of a rendered AI comment",
        ge=200
    )
    assist_max_comments_for_prompt: int = Field(default=3, description="Recent comments in prompt", ge=0)
    assist_max_comment_chars: int = Field(default=800, description="Per-comment prompt limit", ge=1)
    assist_max_source_chars: int = Field(default=1200, description="Per-source prompt limit", ge=1)
    assist_rules_path: Path = Field(
        default=Path("assist_rules.yaml"),
        description="Optional YAML file overriding relevance keywords"
    )

    # ========== Reconciliation ==========
    reconcile_stale_after_seconds: Optional[int] = Field(
        default=None,
        description="Mark RUNNING jobs untouched for this long as FAILED (disabled when unset)",
        ge=60
    )
    reconcile_interval_seconds: int = Field(
        default=300,
        description="Seconds between reconciliation sweeps",
        ge=10
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=("settings_",),
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("worker_concurrency")
    @classmethod
    def clamp_worker_concurrency(cls, v: int) -> int:
        """Clamp concurrency into the supported range instead of rejecting it."""
        return max(MIN_WORKER_CONCURRENCY, min(MAX_WORKER_CONCURRENCY, v))

    @field_validator("model_host")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def model_hosts(self) -> List[str]:
        """Primary host followed by fallbacks, de-duplicated in order."""
        hosts: List[str] = []
        for host in [self.model_host, *self.model_fallback_hosts]:
            host = host.rstrip("/")
            if host and host not in hosts:
                hosts.append(host)
        return hosts


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class KnowledgeSourceStatus(str, Enum):
    """Lifecycle of an ingested document."""
    QUEUED = "QUEUED"
    INDEXING = "INDEXING"
    READY = "READY"
    FAILED = "FAILED"


class JobStatus(str, Enum):
    """Lifecycle of one indexing attempt."""
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class JobType(str, Enum):
    """Kinds of background jobs."""
    INDEX_KB_SOURCE = "INDEX_KB_SOURCE"


class UsageEventType(str, Enum):
    """Metered usage event types."""
    AI_ASSIST_CALL = "AI_ASSIST_CALL"
    KB_EMBEDDING = "KB_EMBEDDING"


class AssistTone(str, Enum):
    """Tone of the suggested customer reply."""
    FRIENDLY = "friendly"
    NEUTRAL = "neutral"
    FORMAL = "formal"


class CacheTier(str, Enum):
    """Where a deduplicated assist result was served from."""
    COMMENT = "comment"
    DRYRUN = "dryrun"


class Role(str, Enum):
    """Tenant membership roles."""
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    AGENT = "AGENT"
    VIEWER = "VIEWER"


# ========== Lists for validation ==========

TERMINAL_JOB_STATUSES = [JobStatus.SUCCEEDED, JobStatus.FAILED]
ADMIN_ROLES = [Role.OWNER, Role.ADMIN]
