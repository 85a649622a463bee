"""Configuration and environment for the snapshot collector."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class ExtraCommand(BaseModel):
    """A caller-supplied command whose output lands in the custom subtree."""

    name: str = Field(
        ...,
        pattern=r"^[A-Za-z0-9][A-Za-z0-9._-]*$",
        description="Artifact name; written to custom/<task>/<name>.txt",
    )
    command: list[str] = Field(..., min_length=1, description="argv, first element is the tool")
    timeout: float | None = Field(default=None, gt=0, description="Override for the query timeout")


class Settings(BaseSettings):
    """Collector settings loaded from environment and .env."""

    model_config = SettingsConfigDict(
        env_prefix="KUBE_SNAPSHOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Kubernetes
    kubeconfig: Path | None = Field(
        default=None,
        description="Path to kubeconfig; uses KUBECONFIG env or default location if unset",
    )
    context: str | None = Field(default=None, description="Kubernetes context to collect from")
    namespaces: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["default"],
        description="Namespaces to fan out over",
    )
    kubectl_binary: str = Field(default="kubectl", description="kubectl executable")
    helm_binary: str = Field(default="helm", description="helm executable")

    # Output
    output_dir: Path = Field(default=Path("."), description="Directory the run root is created in")
    compress: bool = Field(default=True, description="Create <run>.tar.gz after collection")
    keep_directory: bool = Field(
        default=False,
        description="Keep the uncompressed directory after the archive is written",
    )

    # Collection behavior
    query_timeout: float = Field(default=60.0, gt=0, description="Seconds per cluster query")
    log_timeout: float = Field(default=120.0, gt=0, description="Seconds per log capture")
    workers: int = Field(
        default=1,
        ge=1,
        le=32,
        description="Concurrent queries; 1 runs strictly sequentially",
    )
    collect_host_info: bool = Field(
        default=True,
        description="Capture local tool versions, user and disk usage into the custom subtree",
    )
    extra_commands: list[ExtraCommand] = Field(
        default_factory=list,
        description="Additional commands appended after the built-in tasks",
    )

    @field_validator("namespaces", mode="before")
    @classmethod
    def _split_namespaces(cls, value: object) -> object:
        # KUBE_SNAPSHOT_NAMESPACES accepts "default kube-system" as well as a JSON list
        if isinstance(value, str):
            if value.lstrip().startswith("["):
                return json.loads(value)
            return value.split()
        return value


def get_settings() -> Settings:
    """Return validated settings instance."""
    return Settings()
