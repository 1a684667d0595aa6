from __future__ import annotations

from collections.abc import MutableMapping
from enum import StrEnum, auto
import os
from pathlib import Path
import tomllib
from typing import Annotated, Any

from dotenv import dotenv_values
from pydantic import BaseModel, Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_core import to_jsonable_python
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    NoDecode,
    SettingsConfigDict,
)
import tomli_w

from lsplint.core.paths.global_paths import CONFIG_DIR, CONFIG_FILE, GLOBAL_ENV_FILE


def load_dotenv_values(
    env_path: Path | None = None,
    environ: MutableMapping[str, str] = os.environ,
) -> None:
    """Copy the non-empty entries of ~/.lsplint/.env into `environ`."""
    env_path = env_path or GLOBAL_ENV_FILE.path
    # Env managers may expose the file as a named pipe
    if env_path.is_file() or env_path.is_fifo():
        environ.update({k: v for k, v in dotenv_values(env_path).items() if v})


def read_toml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise RuntimeError(f"Invalid TOML in {path}: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise RuntimeError(f"Cannot read {path}: {e}") from e


def deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class TomlFileSettingsSource(PydanticBaseSettingsSource):
    """Settings read from CONFIG_FILE (project `.lsplint/config.toml` or home)."""

    def __init__(
        self, settings_cls: type[BaseSettings], toml_file: Path | None = None
    ) -> None:
        super().__init__(settings_cls)
        self.toml_file = toml_file or CONFIG_FILE.path
        self.toml_data = read_toml(self.toml_file)

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        return self.toml_data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return self.toml_data


class ReportFormat(StrEnum):
    GITHUB = auto()
    TEXT = auto()
    YAML = auto()


class AnnotationLevel(StrEnum):
    ERROR = auto()
    WARNING = auto()
    NOTICE = auto()


class LSPServerConfig(BaseModel):
    name: str = "json"
    command: list[str] = Field(
        default_factory=list,
        description=(
            "Command used to launch the language server. When empty, "
            "vscode-json-languageserver is looked up on PATH or installed with npm."
        ),
    )
    env: dict[str, str] | None = None
    cwd: str | None = None
    language_id: str = "json"
    file_patterns: list[str] = Field(default_factory=lambda: ["*.json"])
    initialization_options: dict[str, Any] = Field(default_factory=dict)
    settings: dict[str, Any] = Field(
        default_factory=dict,
        description="Sent with workspace/didChangeConfiguration after initialization.",
    )
    auto_install: bool = False


class SessionConfig(BaseModel):
    request_timeout: float = Field(default=30.0, gt=0)
    diagnostics_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds to wait for publishDiagnostics after opening a document.",
    )
    shutdown_timeout: float = Field(default=5.0, gt=0)
    grace_period: float = Field(
        default=2.0,
        gt=0,
        description="Seconds to wait for the server to exit before terminating it.",
    )
    max_open_documents: int = Field(
        default=1,
        ge=1,
        description="How many documents may be open on the server at the same time.",
    )


class LintConfig(BaseSettings):
    files: Annotated[list[str], NoDecode] = Field(default_factory=list)
    report_format: ReportFormat = ReportFormat.GITHUB
    annotation_level: AnnotationLevel = AnnotationLevel.ERROR
    annotation_title: str = "lsplint"

    server: LSPServerConfig = Field(default_factory=LSPServerConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    model_config = SettingsConfigDict(
        env_prefix="LSPLINT_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("files", mode="before")
    @classmethod
    def split_files(cls, v: Any) -> Any:
        # Accepts the comma-separated form used by CI inputs
        if isinstance(v, str):
            return [f.strip() for f in v.split(",") if f.strip()]
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Keyword overrides, then LSPLINT_* variables, then the TOML file.

        The .env file is not a source of its own: load_dotenv_values copies it
        into os.environ before the config is loaded.
        """
        return (
            init_settings,
            env_settings,
            TomlFileSettingsSource(settings_cls),
            file_secret_settings,
        )

    @classmethod
    def save_updates(cls, updates: dict[str, Any]) -> None:
        CONFIG_DIR.path.mkdir(parents=True, exist_ok=True)
        merged = deep_merge(read_toml(CONFIG_FILE.path), updates)
        cls.dump_config(to_jsonable_python(merged, exclude_none=True, fallback=str))

    @classmethod
    def dump_config(cls, config: dict[str, Any]) -> None:
        CONFIG_FILE.path.write_text(tomli_w.dumps(config), encoding="utf-8")

    @classmethod
    def load(cls, **overrides: Any) -> LintConfig:
        return cls(**overrides)

    @classmethod
    def create_default(cls) -> dict[str, Any]:
        return cls.model_construct().model_dump(mode="json", exclude_none=True)
