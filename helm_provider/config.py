"""Configuration objects for helm-provider."""

from dataclasses import dataclass, field
import os
from pathlib import Path

from .command import DEFAULT_TIMEOUT
from .model import DEFAULT_CALLBACK_DELAY_SECONDS

ENV_PREFIX = "HELM_PROVIDER_"


@dataclass
class ProviderConfig:
    """Configuration for the HelmProvider."""

    work_dir: Path = field(default_factory=lambda: Path("/tmp"))
    """Scratch directory for the kubeconfig, values documents and helm state."""

    command_timeout: float = DEFAULT_TIMEOUT
    """Seconds to wait for a single helm command."""

    fetch_timeout: float | None = None
    """Seconds to wait for an HTTP download, or None to wait indefinitely."""

    callback_delay_seconds: int = DEFAULT_CALLBACK_DELAY_SECONDS
    """Delay suggested to the invoker between polls."""

    @property
    def kubeconfig_path(self) -> Path:
        return self.work_dir / "kubeConfig"

    @property
    def helm_dir(self) -> Path:
        return self.work_dir / "helm"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "ProviderConfig":
        """Build a config from HELM_PROVIDER_* environment variables."""
        env = os.environ if environ is None else environ
        config = cls()
        if work_dir := env.get(f"{ENV_PREFIX}WORK_DIR"):
            config.work_dir = Path(work_dir)
        if command_timeout := env.get(f"{ENV_PREFIX}COMMAND_TIMEOUT"):
            config.command_timeout = float(command_timeout)
        if fetch_timeout := env.get(f"{ENV_PREFIX}FETCH_TIMEOUT"):
            config.fetch_timeout = float(fetch_timeout)
        if delay := env.get(f"{ENV_PREFIX}CALLBACK_DELAY"):
            config.callback_delay_seconds = int(delay)
        return config
