from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


class RegistrySettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    variant: Literal["multi", "single"] = "multi"
    admin: str = "0x0000000000000000000000000000000000000001"
    open_minting: bool = False  # create_post only; update stays gated
    caller_env: str = "ETCH_CALLER"

    @field_validator("admin")
    @classmethod
    def _admin_must_be_non_empty(cls, v: str) -> str:
        s = (v or "").strip()
        if not s:
            raise ValueError("must be a non-empty principal")
        return s

    @field_validator("caller_env")
    @classmethod
    def _caller_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)


class StorageSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str = ":memory:"

    @field_validator("path")
    @classmethod
    def _path_must_be_non_empty(cls, v: str) -> str:
        s = (v or "").strip()
        if not s:
            raise ValueError("must be a file path or ':memory:'")
        return s

    @property
    def in_memory(self) -> bool:
        return self.path == ":memory:"


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str | None = None
    overwrite: bool = False

    @model_validator(mode="after")
    def _blank_path_disables(self) -> "LoggingSettings":
        if self.path is not None and not self.path.strip():
            raise ValueError("path must be omitted or non-empty")
        return self


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
