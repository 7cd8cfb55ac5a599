"""Configuration schema using Pydantic.

Persisted to ~/.capslap/config.json; any field can be overridden from the
environment with the CAPSLAP_ prefix (nested with "__", e.g.
CAPSLAP_SIDECAR__BINARY_PATH).
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SidecarConfig(BaseModel):
    """How to find, launch and talk to the core worker."""
    binary_path: str = ""  # Explicit worker executable; skips the search below
    binary_name: str = ""  # Defaults to core / core.exe
    install_dir: str = ""  # Root searched for bin/ and rust/target/{release,debug}/
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)  # Extra env vars for the worker
    cwd: str = ""
    stderr: Literal["log", "inherit"] = "log"
    progress_routing: Literal["request", "latest"] = "request"
    read_limit_bytes: int = 16 * 1024 * 1024  # Stream buffer size; longer stdout lines are read in chunks
    shutdown_timeout: float = 2.0

    @property
    def install_path(self) -> Path | None:
        return Path(self.install_dir).expanduser() if self.install_dir else None


class LoggingConfig(BaseModel):
    """Log sinks for CLI runs."""
    level: str = "INFO"
    file: bool = False  # Also write ~/.capslap/logs/<command>.log


class Config(BaseSettings):
    """Root configuration for capslap."""
    sidecar: SidecarConfig = Field(default_factory=SidecarConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="CAPSLAP_",
        env_nested_delimiter="__"
    )
