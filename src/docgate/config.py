"""Configuration for docgate, stored as YAML."""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel

from docgate.models import FileType

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "docgate"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "docgate"
DEFAULT_LOG_DIR = DEFAULT_DATA_DIR / "logs"
DEFAULT_RUN_DIR = Path("/run/docgate") if os.geteuid() == 0 else Path.home() / ".local" / "run" / "docgate"


class DocGateConfig(BaseModel):
    """Configuration for the docgate daemon and services."""
    otp_validity_minutes: int = 15
    otp_max_attempts: int = 3
    session_timeout_minutes: int = 60
    frontend_url: str = "http://localhost:3000"
    storage_dir: Path = DEFAULT_DATA_DIR / "documents"
    state_dir: Path = DEFAULT_DATA_DIR / "state"
    audit_log_path: Path = DEFAULT_LOG_DIR / "download_audit.jsonl"
    socket_path: Path = DEFAULT_RUN_DIR / "gateway.sock"
    max_file_size_mb: int = 100
    allowed_file_types: list[FileType] = [FileType.PDF, FileType.XLSX, FileType.DOCX]
    # Identity used by owner-side CLI commands
    owner_id: str | None = None
    owner_email: str | None = None
    owner_name: str | None = None

    @property
    def grants_path(self) -> Path:
        return self.state_dir / "grants.json"

    @property
    def documents_path(self) -> Path:
        return self.state_dir / "documents.json"


def get_config_path() -> Path:
    return DEFAULT_CONFIG_DIR / "config.yaml"


def load_config(path: Path | None = None) -> DocGateConfig:
    """Load config from file; missing file means defaults."""
    config_path = path or get_config_path()
    data = {}
    if config_path.exists():
        data = yaml.safe_load(config_path.read_text()) or {}
    if os.environ.get("DOCGATE_FRONTEND_URL"):
        data["frontend_url"] = os.environ["DOCGATE_FRONTEND_URL"]
    return DocGateConfig.model_validate(data)


def save_config(config: DocGateConfig, path: Path | None = None) -> Path:
    """Save config to file."""
    config_path = path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(yaml.dump(config.model_dump(mode="json"), default_flow_style=False))
    return config_path
