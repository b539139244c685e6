"""Library for running `helm` commands against a cluster.

The provider never waits on helm. An install or upgrade is submitted and the
release status is polled on later invocations:

```python
from helm_provider.chart import resolve_chart
from helm_provider.helm import Helm

helm = Helm(Path("/tmp/helm"), kubeconfig=Path("/tmp/kubeconfig"))
chart = resolve_chart("bitnami/nginx", repository="https://charts.bitnami.com/bitnami")
await helm.prepare(chart)
await helm.upgrade_install("web", "default", chart, {"replicaCount": 2})
status = await helm.status("web", "default")
```
"""

from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Any

import aiofiles
import yaml

from . import command
from .chart import ChartDescriptor, ChartType
from .exceptions import HelmException

__all__ = [
    "Helm",
    "ReleaseStatus",
]

_LOGGER = logging.getLogger(__name__)


HELM_BIN = "helm"

STATUS_DEPLOYED = "deployed"
STATUS_FAILED = "failed"
PENDING_STATUSES = {
    "pending-install",
    "pending-upgrade",
    "pending-rollback",
    "uninstalling",
}

_NOT_FOUND = "not found"


@dataclass(frozen=True)
class ReleaseStatus:
    """Status of a helm release as reported by `helm status`."""

    name: str
    namespace: str
    status: str
    revision: int = 0
    description: str = ""

    @property
    def is_pending(self) -> bool:
        """An operation on the release has not finished yet."""
        return self.status in PENDING_STATUSES

    @property
    def is_deployed(self) -> bool:
        return self.status == STATUS_DEPLOYED

    @property
    def is_failed(self) -> bool:
        return self.status == STATUS_FAILED

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ReleaseStatus":
        """Parse the output of `helm status --output json`."""
        info = doc.get("info") or {}
        return cls(
            name=doc.get("name", ""),
            namespace=doc.get("namespace", ""),
            status=info.get("status", ""),
            revision=int(doc.get("version", 0)),
            description=info.get("description", ""),
        )


class Helm:
    """Runs helm commands with a private repository config and kubeconfig."""

    def __init__(
        self,
        tmp_dir: Path,
        kubeconfig: Path | None = None,
        timeout: float = command.DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize Helm."""
        self._tmp_dir = tmp_dir
        self._flags = [
            "--repository-cache",
            str(tmp_dir / "cache"),
            "--repository-config",
            str(tmp_dir / "repositories.yaml"),
        ]
        if kubeconfig:
            self._flags.extend(["--kubeconfig", str(kubeconfig)])
        self._timeout = timeout

    def _command(self, args: list[str]) -> command.Command:
        return command.Command(
            [HELM_BIN, *args, *self._flags], exc=HelmException, timeout=self._timeout
        )

    async def add_repo(self, name: str, url: str) -> None:
        """Add a chart repository under the alias name."""
        _LOGGER.info("Adding chart repository %s (%s)", name, url)
        await command.run(self._command(["repo", "add", name, url, "--force-update"]))

    async def update(self) -> None:
        """Update the index of every configured repository."""
        await command.run(self._command(["repo", "update"]))

    async def prepare(self, chart: ChartDescriptor) -> None:
        """Make a remote chart resolvable by adding and updating its repository."""
        if chart.chart_type != ChartType.REMOTE or not chart.chart_repo:
            return
        await self.add_repo(chart.chart_repo, chart.chart_repo_url)
        await self.update()

    async def upgrade_install(
        self,
        release: str,
        namespace: str,
        chart: ChartDescriptor,
        values: dict[str, Any],
    ) -> None:
        """Install the chart as release, or upgrade it if it already exists.

        This returns once the release has been submitted and does not wait for
        the cluster resources to become ready.
        """
        args = [
            "upgrade",
            release,
            chart.chart,
            "--install",
            "--namespace",
            namespace,
            "--create-namespace",
        ]
        if chart.chart_version and chart.chart_type == ChartType.REMOTE:
            args.extend(["--version", chart.chart_version])
        if values:
            self._tmp_dir.mkdir(parents=True, exist_ok=True)
            values_path = self._tmp_dir / f"{release}-values.yaml"
            async with aiofiles.open(values_path, mode="w") as values_file:
                await values_file.write(yaml.dump(values, sort_keys=False))
            args.extend(["--values", str(values_path)])
        _LOGGER.info("Submitting release %s/%s (%s)", namespace, release, chart.chart)
        await command.run(self._command(args))

    async def uninstall(self, release: str, namespace: str) -> bool:
        """Uninstall the release, returning False if it did not exist."""
        _LOGGER.info("Uninstalling release %s/%s", namespace, release)
        try:
            await command.run(
                self._command(["uninstall", release, "--namespace", namespace])
            )
        except HelmException as err:
            if _NOT_FOUND in str(err):
                _LOGGER.info("Release %s/%s not found", namespace, release)
                return False
            raise
        return True

    async def status(self, release: str, namespace: str) -> ReleaseStatus | None:
        """Return the status of the release, or None if it does not exist."""
        try:
            out = await command.run(
                self._command(
                    ["status", release, "--namespace", namespace, "--output", "json"]
                )
            )
        except HelmException as err:
            if _NOT_FOUND in str(err):
                return None
            raise
        try:
            doc = json.loads(out)
        except ValueError as err:
            raise HelmException(
                f"Unable to parse status of release {namespace}/{release}: {err}"
            ) from err
        status = ReleaseStatus.parse_doc(doc)
        _LOGGER.debug("Release %s/%s is %s", namespace, release, status.status)
        return status
