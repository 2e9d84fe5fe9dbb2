"""Configuration models for the compliance agent."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from compliance_agent.types import DocumentMetadata


class ChunkingConfig(BaseModel):
    """Configures greedy line-accumulation chunking."""

    max_chars: int = Field(default=1200, ge=50)


class RetrievalConfig(BaseModel):
    """Configures the retrieval strategy and ranking cut-off."""

    strategy: Literal["local", "managed"] = "local"
    top_k: int = Field(default=6, ge=1, le=50)
    index_name: str = Field(default="compliance-chile", min_length=1)
    score_threshold: float = Field(default=0.0, ge=-1.0, le=1.0)


class AgentConfig(BaseModel):
    """Configures stage models and execution bounds."""

    chat_model: str = "gpt-4o-mini"
    obligation_model: str = "gpt-4o-mini"
    stage_timeout_seconds: float = Field(default=120.0, gt=0.0)


class Settings(BaseSettings):
    """Deployment settings loaded from the environment or a `.env` file."""

    model_config = SettingsConfigDict(
        env_prefix="COMPLIANCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    store_path: str = ""
    retrieval_strategy: Literal["local", "managed"] = "local"
    index_name: str = "compliance-chile"
    search_endpoint: str = ""
    search_api_key: str = ""
    stage_timeout_seconds: float = 120.0
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"


DEFAULT_DOCUMENTS: tuple[DocumentMetadata, ...] = (
    DocumentMetadata(
        id="ley-19886",
        title="Ley 19.886 (Compras Públicas)",
        url="https://pub-0e0e9ca0d502436bbf25ba03d6046c82.r2.dev/Ley-19886.pdf",
        language="es",
        topics=["compras públicas", "contratación estatal"],
    ),
    DocumentMetadata(
        id="ley-19496",
        title="Ley 19.496 (Protección de los consumidores)",
        url="https://pub-0e0e9ca0d502436bbf25ba03d6046c82.r2.dev/Ley-19496.pdf",
        language="es",
        topics=["consumidores", "protección de datos", "publicidad"],
    ),
    DocumentMetadata(
        id="ley-20393",
        title="Ley 20.393 (Responsabilidad penal de personas jurídicas)",
        url="https://pub-0e0e9ca0d502436bbf25ba03d6046c82.r2.dev/Ley-20393.pdf",
        language="es",
        topics=["compliance penal", "responsabilidad corporativa"],
    ),
    DocumentMetadata(
        id="ley-19913",
        title="Ley 19.913 (UAF; sujetos obligados y reportes)",
        url="https://pub-0e0e9ca0d502436bbf25ba03d6046c82.r2.dev/Ley-19913.pdf",
        language="es",
        topics=["lavado de activos", "reportes", "uaf"],
    ),
    DocumentMetadata(
        id="ley-21521",
        title="Ley 21.521 (Fintec)",
        url="https://pub-0e0e9ca0d502436bbf25ba03d6046c82.r2.dev/Ley-21521.pdf",
        language="es",
        topics=["fintec", "cmf", "innovación financiera"],
    ),
)
