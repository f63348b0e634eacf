"""Immutable deployment configuration."""

import os
import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "DEPLOYER_"
ENV_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _has_control_chars(value: str) -> bool:
    return any(ord(c) < 32 or ord(c) == 127 for c in value)


class DeployConfig(BaseModel):
    """Everything a run needs to know besides host state.

    Defaults describe the goniter deployment; tests and other hosts build
    their own instance instead of patching globals.
    """

    model_config = ConfigDict(frozen=True)

    service_name: str = Field("goniter", description="systemd unit name (without .service)")
    binary_name: str = Field("goniter", description="File name of the installed binary")
    install_dir: Path = Field(
        Path("/home/vm/goniter-bin"), description="Directory holding the binary"
    )
    service_user: str = Field("vm", description="Owner of the binary and unit User=")
    service_group: str = Field("vm", description="Group of the binary and unit Group=")
    download_url: str = Field(
        "https://raw.githubusercontent.com/mintair-xyz/goniter-bin/main/goniter",
        pattern=r"^https?://.+",
        description="Artifact source location",
    )
    description: str = Field(
        "Goniter - Docker monitoring service", description="Unit Description="
    )
    unit_dir: Path = Field(
        Path("/etc/systemd/system"), description="Where unit files are installed"
    )
    runtime_dependencies: list[str] = Field(
        default_factory=lambda: ["docker.service"],
        description="Units ordered before and wanted by the service",
    )
    restart_sec: int = Field(10, ge=0, description="RestartSec= backoff delay")
    environment: dict[str, str] = Field(
        default_factory=lambda: {"PORT": "40000"},
        description="Environment= assignments",
    )
    placeholder_environment: dict[str, str] = Field(
        default_factory=lambda: {"API_TOKEN": "your_token_here"},
        description="Secret-shaped assignments rendered commented out",
    )
    elevate_command: list[str] = Field(
        default_factory=lambda: ["sudo"],
        description="Prefix for systemctl and file placement commands (empty for none)",
    )
    fetch_timeout: float = Field(30.0, gt=0, description="Artifact fetch timeout (s)")
    command_timeout: float = Field(30.0, gt=0, description="Per systemctl or file command timeout (s)")
    start_timeout: float = Field(30.0, gt=0, description="Wait for active after start (s)")
    stop_timeout: float = Field(30.0, gt=0, description="Wait for inactive after stop (s)")
    health_settle_seconds: float = Field(
        2.0, ge=0, description="Delay before the post-start status check"
    )
    artifact_sha256: Optional[str] = Field(
        None,
        pattern=r"^[a-f0-9]{64}$",
        description="Expected digest of the artifact; unchecked when unset",
    )
    lock_path: Optional[Path] = Field(None, description="Deployment lock file")
    log_file: Optional[Path] = Field(None, description="Rotating log file (console only if unset)")
    log_level: str = Field("info", description="debug, info, warning, error")

    @field_validator("service_name", "binary_name", "service_user", "service_group")
    @classmethod
    def plain_name(cls, v: str) -> str:
        """Names end up in paths and unit fields."""
        if not v or "/" in v or v.strip() != v:
            raise ValueError(f"Invalid name: {v!r}")
        return v

    @field_validator("install_dir", "unit_dir")
    @classmethod
    def absolute_dir(cls, v: Path) -> Path:
        if not v.is_absolute():
            raise ValueError(f"Directory must be absolute: {v}")
        return v

    @field_validator("description")
    @classmethod
    def single_line(cls, v: str) -> str:
        """Rendered verbatim into the unit; a newline would start a new directive."""
        if _has_control_chars(v):
            raise ValueError("Description must not contain control characters")
        return v

    @field_validator("runtime_dependencies")
    @classmethod
    def unit_names(cls, v: list[str]) -> list[str]:
        for unit in v:
            if not unit or _has_control_chars(unit) or any(c.isspace() for c in unit):
                raise ValueError(f"Invalid unit name: {unit!r}")
        return v

    @field_validator("environment", "placeholder_environment")
    @classmethod
    def unit_safe_environment(cls, v: dict[str, str]) -> dict[str, str]:
        for key, value in v.items():
            if not ENV_KEY_PATTERN.match(key):
                raise ValueError(f"Invalid environment variable name: {key!r}")
            if _has_control_chars(value):
                raise ValueError(f"Value of {key} must not contain control characters")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        v_lower = v.lower()
        if v_lower == "warn":
            return "warning"
        if v_lower not in {"debug", "info", "warning", "error", "critical"}:
            raise ValueError(f"Invalid log level: {v}")
        return v_lower

    @property
    def binary_path(self) -> Path:
        return self.install_dir / self.binary_name

    @property
    def backup_path(self) -> Path:
        return self.install_dir / f"{self.binary_name}.backup"

    @property
    def unit_path(self) -> Path:
        return self.unit_dir / f"{self.service_name}.service"

    @property
    def resolved_lock_path(self) -> Path:
        """Explicit lock_path, else the per-user runtime dir, else /tmp."""
        if self.lock_path is not None:
            return self.lock_path
        runtime_dir = os.environ.get("XDG_RUNTIME_DIR") or "/tmp"
        return Path(runtime_dir) / f"{self.service_name}.deploy.lock"

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "DeployConfig":
        """Build a config from defaults plus DEPLOYER_* overrides.

        Lists are comma separated, mappings are ``KEY=VALUE`` pairs separated
        by commas, an empty string clears a list or mapping.
        """
        environ = os.environ if environ is None else environ
        overrides: dict[str, object] = {}

        for name, field in cls.model_fields.items():
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None:
                continue
            if field.annotation == list[str]:
                overrides[name] = [item.strip() for item in raw.split(",") if item.strip()]
            elif field.annotation == dict[str, str]:
                pairs = [item for item in raw.split(",") if item.strip()]
                mapping = {}
                for pair in pairs:
                    key, sep, value = pair.partition("=")
                    if not sep:
                        raise ValueError(f"Expected KEY=VALUE in {ENV_PREFIX}{name.upper()}: {pair!r}")
                    mapping[key.strip()] = value.strip()
                overrides[name] = mapping
            else:
                overrides[name] = raw

        return cls(**overrides)
