"""Settings loader for Creationport."""

from pathlib import Path
from typing import Any, Literal

import tomllib
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

TransferMode = Literal["move", "copy"]


def _toml_settings_source() -> dict[str, Any]:
    """Load settings from config.toml with keys mapped to Settings fields.

    This source has LOWER priority than env/.env so those can override TOML.
    """
    cfg_path = Path("config.toml")
    if not cfg_path.exists():
        return {}
    with cfg_path.open("rb") as f:
        t = tomllib.load(f)

    importer_cfg = t.get("importer", {}) or {}
    out: dict[str, Any] = {
        "env": t.get("app", {}).get("env", "dev"),
        "catalog_file_name": importer_cfg.get("catalog_file_name", "ContentCatalog.txt"),
        "staging_id_prefix": importer_cfg.get("staging_id_prefix", "bethesdanet"),
        "transfer_mode": importer_cfg.get("transfer_mode", "move"),
        "create_archives": importer_cfg.get("create_archives", True),
        # Example:
        # [importer.product_dirs]
        # fallout76 = "Fallout76"
        "product_dirs": dict(importer_cfg.get("product_dirs", {}) or {}),
        # Logging config
        "logging_level": t.get("logging", {}).get("level", "INFO"),
        # Per-handler levels: strings INFO|DEBUG|WARNING|ERROR|CRITICAL|NONE
        # Backward-compatible: if console/to_file are bools, map True->level, False->NONE
        "logging_console": None,
        "logging_file": None,
        "logging_file_path": t.get("logging", {}).get("file_path", "logs/creationport.jsonl"),
        "logging_max_bytes": t.get("logging", {}).get("max_bytes", 5_000_000),
        "logging_backup_count": t.get("logging", {}).get("backup_count", 5),
    }

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
    # File logging stays off unless to_file is set
    out["logging_file"] = _norm_level(file_val, overall) if file_val is not None else "NONE"
    return out


class Settings(BaseSettings):
    env: str = Field(default="dev")

    # --- Importer ---
    catalog_file_name: str = "ContentCatalog.txt"
    staging_id_prefix: str = "bethesdanet"
    transfer_mode: TransferMode = "move"
    create_archives: bool = True
    # Extra product key -> data folder mappings on top of the built-in ones
    product_dirs: dict[str, str] = Field(default_factory=dict)

    # --- Logging ---
    logging_level: str = "INFO"
    logging_console: str = "INFO"
    logging_file: str = "NONE"
    logging_file_path: str = "logs/creationport.jsonl"
    logging_max_bytes: int = 5_000_000
    logging_backup_count: int = 5

    model_config = SettingsConfigDict(
        env_prefix="CREATIONPORT_",
        case_sensitive=False,
        env_file=".env",
        extra="ignore",
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
        # 2) dotenv (.env in cwd)
        # 3) env_settings (OS env)
        # 4) TOML (config.toml in cwd)
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
