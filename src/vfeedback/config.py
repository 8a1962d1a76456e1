"""Configuration loading from environment variables and vfeedback.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_DATA_DIR = Path.home() / ".visual-feedback"
_CONFIG_FILENAME = "vfeedback.toml"

STRATEGIES = ("subprocess", "tool_call")


@dataclass
class ServerConfig:
    """Socket and HTTP listener configuration."""

    host: str = "127.0.0.1"
    ws_port: int = 3847
    http_port: int = 3848


@dataclass
class AgentConfig:
    """How the external coding agent is invoked."""

    binary: str = "claude"
    model: str | None = None
    skip_permissions: bool = True
    api_key_env: str = "ANTHROPIC_API_KEY"
    extra_path: list[str] = field(
        default_factory=lambda: [
            "/usr/local/bin",
            "/usr/bin",
            "/bin",
            "/opt/homebrew/bin",
            str(Path.home() / ".local" / "bin"),
        ]
    )


@dataclass
class DeliveryConfig:
    """Which delivery strategy is active and how prompts are rendered."""

    strategy: str = "tool_call"
    prompt_template: Path | None = None
    max_client_retries: int = 3


@dataclass
class FeedbackConfig:
    """Top-level configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    data_dir: Path = _DEFAULT_DATA_DIR
    max_tasks: int = 50
    stdio: bool = True
    log_level: str = "INFO"

    @property
    def queue_file(self) -> Path:
        return self.data_dir / "change-queue.json"

    @property
    def registry_file(self) -> Path:
        return self.data_dir / "servers.json"

    @property
    def token_file(self) -> Path:
        return self.data_dir / "token"

    @property
    def beads_dir(self) -> Path:
        return self.data_dir / "beads"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(config_path: Path | None = None) -> FeedbackConfig:
    """Load configuration from environment variables and optional vfeedback.toml.

    Priority: environment variables > vfeedback.toml > defaults.
    """
    data_dir = Path(os.getenv("VF_DATA_DIR", str(_DEFAULT_DATA_DIR)))

    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and the data dir
        for candidate in [Path.cwd() / _CONFIG_FILENAME, data_dir / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    server_data = file_data.get("server", {})
    agent_data = file_data.get("agent", {})
    delivery_data = file_data.get("delivery", {})

    template = os.getenv("VF_PROMPT_TEMPLATE", delivery_data.get("prompt_template"))
    strategy = os.getenv("VF_STRATEGY", delivery_data.get("strategy", "tool_call"))
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown delivery strategy: {strategy} (expected one of {STRATEGIES})")

    agent_defaults = AgentConfig()
    config = FeedbackConfig(
        server=ServerConfig(
            host=os.getenv("VF_HOST", server_data.get("host", "127.0.0.1")),
            ws_port=int(os.getenv("VF_WS_PORT", server_data.get("ws_port", 3847))),
            http_port=int(os.getenv("VF_HTTP_PORT", server_data.get("http_port", 3848))),
        ),
        agent=AgentConfig(
            binary=os.getenv("VF_AGENT_BIN", agent_data.get("binary", "claude")),
            model=os.getenv("VF_MODEL", agent_data.get("model")),
            skip_permissions=_env_bool(
                "VF_SKIP_PERMISSIONS", agent_data.get("skip_permissions", True)
            ),
            api_key_env=agent_data.get("api_key_env", "ANTHROPIC_API_KEY"),
            extra_path=agent_data.get("extra_path", agent_defaults.extra_path),
        ),
        delivery=DeliveryConfig(
            strategy=strategy,
            prompt_template=Path(template).expanduser() if template else None,
            max_client_retries=int(
                os.getenv("VF_MAX_RETRIES", delivery_data.get("max_client_retries", 3))
            ),
        ),
        data_dir=Path(os.getenv("VF_DATA_DIR", file_data.get("data_dir", str(data_dir)))),
        max_tasks=int(os.getenv("VF_MAX_TASKS", file_data.get("max_tasks", 50))),
        stdio=not _env_bool("VF_SSE_ONLY", not file_data.get("stdio", True)),
        log_level=os.getenv("VF_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
