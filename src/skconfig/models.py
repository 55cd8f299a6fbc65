"""
SKConfig data models -- settings, bundle entries, and sync outcomes.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from . import DEFAULT_CONFIG_URL, SECRETS_DIR, SOTA_DIR

ENV_OVERRIDES = {
    "SOTA_DIR": "sota_dir",
    "SECRETS_DIR": "secrets_dir",
    "CONFIG_URL": "config_url",
}


class SyncOutcome(str, Enum):
    """Result of one successful check-in cycle."""

    UPDATED = "updated"
    NOT_MODIFIED = "not-modified"


class ConfigEntry(BaseModel):
    """One named secret from the decrypted bundle.

    Accepts both the versioned field names (``value``, ``on_changed``)
    and the server's legacy ones (``Value``, ``OnChanged``).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    value: bytes = Field(alias="Value")
    on_changed: list[str] = Field(default_factory=list, alias="OnChanged")

    @field_validator("value", mode="before")
    @classmethod
    def _encode_text(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.encode("utf-8")
        return v

    @field_validator("on_changed", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class AgentSettings(BaseModel):
    """Where the agent keeps its credentials and secrets, and whom it calls.

    Attributes:
        sota_dir: Directory holding client.pem, pkey.pem, root.crt and
            the persisted encrypted bundle.
        secrets_dir: Directory the secret files are written to.
        config_url: Endpoint serving the encrypted bundle.
        timeout: Per-request timeout in seconds.
    """

    sota_dir: Path = Path(SOTA_DIR)
    secrets_dir: Path = Path(SECRETS_DIR)
    config_url: str = DEFAULT_CONFIG_URL
    timeout: float = 30.0

    @classmethod
    def load(
        cls,
        config_file: Optional[Path] = None,
        **overrides: Any,
    ) -> "AgentSettings":
        """Resolve settings from a YAML file, the environment, and overrides.

        Later sources win: YAML file, then ``SOTA_DIR`` / ``SECRETS_DIR`` /
        ``CONFIG_URL`` environment variables, then non-None *overrides*.

        Args:
            config_file: Optional YAML file with any of the setting keys.
            **overrides: Explicit values, typically from CLI options.

        Returns:
            AgentSettings: The merged settings.
        """
        data: dict[str, Any] = {}
        if config_file is not None:
            loaded = yaml.safe_load(Path(config_file).read_text(encoding="utf-8"))
            if loaded and not isinstance(loaded, dict):
                raise ValueError(f"{config_file}: expected a mapping of settings")
            if loaded:
                data.update(loaded)

        for env_var, key in ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value:
                data[key] = value

        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**data)
