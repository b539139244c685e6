"""Library for resolving a chart reference into the inputs of the chart engine.

A chart reference is one of:
- A URL (`https://host/charts/app-1.2.0.tgz` or `s3://bucket/app.tgz`), which
  is downloaded to a local archive before it is installed.
- A `repo/chart` name, resolved from a chart repository that is added to the
  engine under the alias `repo`.
- A bare `chart` name, resolved from the `stable` repository.

Resolution is a pure function of its inputs so that every poll of the same
operation derives the same descriptor.
"""

from dataclasses import dataclass
from enum import StrEnum
import logging
import re
from urllib.parse import urlsplit

from .exceptions import ValidationError

__all__ = [
    "ChartType",
    "ChartDescriptor",
    "resolve_chart",
]

_LOGGER = logging.getLogger(__name__)

CHART_LOCAL_PATH = "/tmp/chart.tgz"
STABLE_REPO_NAME = "stable"
STABLE_REPO_URL = "https://charts.helm.sh/stable"

_CHART_NAME_RE = re.compile(r"[A-Za-z]+")


class ChartType(StrEnum):
    """Where the chart engine loads the chart from."""

    LOCAL = "Local"
    REMOTE = "Remote"


@dataclass(frozen=True)
class ChartDescriptor:
    """A chart reference resolved for the chart engine."""

    chart: str
    """Chart argument passed to the engine: a local path or `repo/name`."""

    chart_name: str
    """Short name of the chart."""

    chart_type: ChartType
    """Whether the chart is downloaded locally or resolved from a repository."""

    chart_repo_url: str
    """URL of the chart repository."""

    chart_path: str | None = None
    """Source URL of a chart archive that is downloaded to `chart`."""

    chart_repo: str | None = None
    """Alias of the chart repository for remote charts."""

    chart_version: str | None = None
    """Chart version, or None for the latest version."""


def _local_chart_name(url: str) -> str:
    """Return the leading alphabetic run of the archive name in the URL.

    Any version suffix is dropped e.g. `MyChart-1.2.tgz` is `MyChart`.
    """
    parts = urlsplit(url)
    segments = parts.path.split("/")
    if len(segments) > 1:
        name = segments[-1]
    else:
        request_uri = parts.path or "/"
        if parts.query:
            request_uri += f"?{parts.query}"
        name = request_uri.lstrip("/")
    if not (match := _CHART_NAME_RE.search(name)):
        raise ValidationError(f"Unable to determine chart name from '{url}'")
    return match.group(0)


def resolve_chart(
    chart: str | None,
    version: str | None = None,
    repository: str | None = None,
) -> ChartDescriptor:
    """Classify a chart reference and derive its name, repository and version."""
    if not chart:
        raise ValidationError("Chart is required")
    try:
        parts = urlsplit(chart)
    except ValueError as err:
        raise ValidationError(f"Unable to parse chart '{chart}': {err}") from err

    chart_repo_url = repository if repository is not None else STABLE_REPO_URL
    if parts.netloc:
        descriptor = ChartDescriptor(
            chart=CHART_LOCAL_PATH,
            chart_name=_local_chart_name(chart),
            chart_type=ChartType.LOCAL,
            chart_path=chart,
            chart_version=version,
            chart_repo_url=chart_repo_url,
        )
    else:
        segments = chart.split("/")
        if len(segments) > 1:
            repo, name = segments[0], segments[1]
        else:
            repo, name = STABLE_REPO_NAME, chart
        descriptor = ChartDescriptor(
            chart=f"{repo}/{name}",
            chart_name=name,
            chart_type=ChartType.REMOTE,
            chart_repo=repo,
            chart_version=version,
            chart_repo_url=chart_repo_url,
        )
    _LOGGER.debug("Resolved chart %s to %s", chart, descriptor)
    return descriptor
