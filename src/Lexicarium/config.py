"""Settings loader for Lexicarium."""

from pathlib import Path
from typing import Any, Literal

import tomllib
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _toml_settings_source() -> dict[str, Any]:
    """Load settings from config.toml with keys mapped to Settings fields.

    This source has LOWER priority than env/.env so those can override TOML.
    """
    cfg_path = Path("config.toml")
    if not cfg_path.exists():
        return {}
    with cfg_path.open("rb") as f:
        t = tomllib.load(f)
    out: dict[str, Any] = {
        "env": t.get("app", {}).get("env", "dev"),
        "logging_enabled": t.get("logging", {}).get("enabled", True),
        "logging_level": t.get("logging", {}).get("level", "INFO"),
        # Per-handler levels: strings INFO|DEBUG|WARNING|ERROR|CRITICAL|NONE
        # Backward-compatible: if console/to_file are bools, map True->level, False->NONE
        "logging_console": None,
        "logging_file": None,
        "logging_file_path": t.get("logging", {}).get("file_path", "logs/lexicarium.jsonl"),
        "logging_max_bytes": t.get("logging", {}).get("max_bytes", 5_000_000),
        "logging_backup_count": t.get("logging", {}).get("backup_count", 5),
    }

    db_cfg = t.get("database", {}) or {}
    if db_cfg.get("url"):
        out["database_url"] = db_cfg["url"]

    log_cfg = t.get("logging", {}) or {}
    console_val = log_cfg.get("console", None)
    file_val = log_cfg.get("to_file", None)
    overall = out["logging_level"]

    def _norm_level(v, default):
        if isinstance(v, str):
            return v.upper()
        if isinstance(v, bool):
            return default if v else "NONE"
        return default

    out["logging_console"] = _norm_level(console_val, overall)
    out["logging_file"] = _norm_level(file_val, overall)

    # Example TOML:
    # [transfer]
    # owner_fields = ["userId"]
    # on_scope_mismatch = "warn"
    # repair_references = "remapped"
    transfer_cfg = t.get("transfer", {}) or {}
    if transfer_cfg:
        out["transfer"] = {
            "owner_fields": list(transfer_cfg.get("owner_fields", ["userId"])),
            "on_scope_mismatch": transfer_cfg.get("on_scope_mismatch", "reject"),
            "repair_references": transfer_cfg.get("repair_references", "remapped"),
            "notify_on_import": bool(transfer_cfg.get("notify_on_import", True)),
        }

    return out


class TransferConfig(BaseModel):
    # Field names treated as tenant identifiers at any nesting depth
    owner_fields: list[str] = Field(default_factory=lambda: ["userId"])
    on_scope_mismatch: Literal["reject", "warn"] = "reject"
    # "remapped": repair word references only for records whose id was remapped
    repair_references: Literal["remapped", "always"] = "remapped"
    notify_on_import: bool = True

    @field_validator("owner_fields")
    @classmethod
    def validate_owner_fields(cls, v: list[str]):
        cleaned = [name for name in v if name]
        if not cleaned:
            raise ValueError("owner_fields must name at least one field")
        return cleaned


class Settings(BaseSettings):
    env: str = Field(default="dev")
    database_url: str = Field(default="sqlite+aiosqlite:///./lexicarium.sqlite3")

    # --- Import / export ---
    transfer: TransferConfig = TransferConfig()

    # --- Logging ---
    logging_enabled: bool = True
    logging_level: str = "INFO"
    logging_console: str = "INFO"
    logging_file: str = "INFO"
    logging_to_console: bool = True
    logging_to_file: bool = True
    logging_file_path: str = "logs/lexicarium.jsonl"
    logging_max_bytes: int = 5_000_000
    logging_backup_count: int = 5

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",  # Safely ignore any extra env vars
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Precedence (highest to lowest):
        # 1) init_settings (explicit overrides in code/tests)
        # 2) dotenv (.env in cwd): developer-local overrides
        # 3) env_settings (OS env)
        # 4) TOML (repo config.toml): project defaults
        # 5) file_secret_settings
        return (
            init_settings,
            dotenv_settings,
            env_settings,
            _toml_settings_source,
            file_secret_settings,
        )


def load_settings() -> Settings:
    return Settings()
