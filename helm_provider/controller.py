"""Helm release provider implementation.

The invoker calls `create`, `update`, `delete` or `read` with the desired
`ResourceModel` and the callback context returned by the previous poll. Each
call runs a single step of the operation's state machine and returns a
`ProgressEvent`:

    Init -> Pending -> InProgress -> Complete
                                  -> Failed

Key Concepts:
    - Init: First poll. The identifier is minted, the chart and values are
      resolved and the release is submitted to the chart engine.
    - Pending: Another operation holds the release. The submit is retried on
      the next poll once it has finished.
    - InProgress: The release was submitted and its status is polled until it
      is deployed (or removed, for a delete).

Nothing is kept in memory between polls. The chart and values are derived
again from the model on every poll that needs them, and the start time of the
operation is read back from the callback context to enforce the timeout.
"""

from collections.abc import Awaitable, Callable
from dataclasses import replace
import datetime
import logging
from pathlib import Path
from typing import Any, Protocol

from .aws import AwsClients
from .chart import ChartDescriptor, ChartType, resolve_chart
from .config import ProviderConfig
from .exceptions import (
    HelmException,
    HelmProviderException,
    NotFoundError,
    ValidationError,
    classify_error,
)
from .fetch import SourceFetcher
from .helm import Helm, ReleaseStatus
from .identifier import ResourceId, decode_id, encode_id
from .kubeconfig import KubeConfigProvider
from .model import ProgressEvent, ResourceModel
from .stage import Stage, StageContext
from .values import process_values

__all__ = [
    "HelmProvider",
    "ChartEngine",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"


class ChartEngine(Protocol):
    """Installs, upgrades and removes releases on one cluster."""

    async def prepare(self, chart: ChartDescriptor) -> None:
        """Make the chart resolvable."""

    async def upgrade_install(
        self,
        release: str,
        namespace: str,
        chart: ChartDescriptor,
        values: dict[str, Any],
    ) -> None:
        """Submit an install or upgrade of the release."""

    async def uninstall(self, release: str, namespace: str) -> bool:
        """Submit removal of the release, returning False if it did not exist."""

    async def status(self, release: str, namespace: str) -> ReleaseStatus | None:
        """Return the status of the release, or None if it does not exist."""


class CredentialProvider(Protocol):
    """Writes a kubeconfig for a cluster target."""

    async def write_kubeconfig(
        self,
        cluster_id: str | None = None,
        kube_config: str | None = None,
        region: str | None = None,
        role_arn: str | None = None,
    ) -> Path:
        """Write the kubeconfig and return its path."""


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def release_name(model: ResourceModel, chart_name: str, now: datetime.datetime) -> str:
    """Return the release name, generating one from the chart name if unset."""
    if model.name:
        return model.name
    return f"{chart_name}-{int(now.timestamp())}".lower()


class HelmProvider:
    """Runs one poll of a create, update, delete or read operation."""

    def __init__(
        self,
        config: ProviderConfig | None = None,
        aws: AwsClients | None = None,
        region: str | None = None,
        fetcher: SourceFetcher | None = None,
        credentials: CredentialProvider | None = None,
        engine_factory: Callable[[Path], ChartEngine] | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        """Initialize HelmProvider.

        Args:
            config: Paths and timeouts used by the provider
            aws: Clients for S3, EKS and Secrets Manager
            region: Region recorded in new identifiers, defaults to the AWS region
            fetcher: Downloads charts and values documents
            credentials: Writes the kubeconfig for the target cluster
            engine_factory: Creates a chart engine for a kubeconfig path
            clock: Returns the current time
        """
        self._config = config or ProviderConfig()
        self._aws = aws or AwsClients()
        self._region = region or self._aws.region
        self._fetcher = fetcher or SourceFetcher(
            self._aws, timeout=self._config.fetch_timeout
        )
        self._credentials = credentials or KubeConfigProvider(
            self._aws, self._config.kubeconfig_path
        )
        self._engine_factory = engine_factory or self._helm
        self._clock = clock

    def _helm(self, kubeconfig: Path) -> ChartEngine:
        return Helm(
            self._config.helm_dir,
            kubeconfig=kubeconfig,
            timeout=self._config.command_timeout,
        )

    async def create(
        self, model: ResourceModel, context: dict[str, Any] | None = None
    ) -> ProgressEvent:
        """Run one poll of a create operation."""
        return await self._run("Create", self._create_or_update, model, context)

    async def update(
        self, model: ResourceModel, context: dict[str, Any] | None = None
    ) -> ProgressEvent:
        """Run one poll of an update operation."""
        return await self._run("Update", self._create_or_update, model, context)

    async def delete(
        self, model: ResourceModel, context: dict[str, Any] | None = None
    ) -> ProgressEvent:
        """Run one poll of a delete operation."""
        return await self._run("Delete", self._delete, model, context)

    async def read(self, model: ResourceModel) -> ProgressEvent:
        """Report the current state of the release."""
        return await self._run("Read", self._read, model, None)

    async def _run(
        self,
        operation: str,
        step: Callable[[str, ResourceModel, StageContext], Awaitable[ProgressEvent]],
        model: ResourceModel,
        context: dict[str, Any] | None,
    ) -> ProgressEvent:
        """Run a step, converting any error into a failed progress event."""
        try:
            stage_context = StageContext.from_dict(context)
            _LOGGER.info("%s: stage %s", operation, stage_context.stage)
            result = await step(operation, model, stage_context)
        except HelmProviderException as err:
            _LOGGER.error("%s failed: %s", operation, err)
            return ProgressEvent.failed(model, err)
        except Exception as err:  # pylint: disable=broad-except
            _LOGGER.exception("%s failed with unexpected error", operation)
            return ProgressEvent.failed(model, classify_error(operation, err))
        _LOGGER.info("%s: %s (%s)", operation, result.status, result.stage)
        return result

    def _in_progress(
        self, model: ResourceModel, context: StageContext
    ) -> ProgressEvent:
        return ProgressEvent.in_progress(
            model,
            context.stage,
            context.to_dict(),
            delay=self._config.callback_delay_seconds,
        )

    def _identify(
        self, operation: str, model: ResourceModel, name: str
    ) -> tuple[str, ResourceId]:
        """Return the opaque identifier and its fields for the model."""
        if operation == "Create" and not model.id:
            opaque = encode_id(
                cluster_id=model.cluster_id,
                kube_config=model.kube_config,
                name=name,
                namespace=model.namespace or DEFAULT_NAMESPACE,
                region=self._region or "",
            )
            return opaque, decode_id(opaque)
        if not model.id:
            raise ValidationError(f"{operation} requires the resource identifier")
        resource_id = decode_id(model.id)
        if operation == "Update":
            _check_updatable(model, resource_id)
        return model.id, resource_id

    async def _connect(
        self, resource_id: ResourceId, role_arn: str | None
    ) -> ChartEngine:
        try:
            kubeconfig = await self._credentials.write_kubeconfig(
                cluster_id=resource_id.cluster_id,
                kube_config=resource_id.kube_config,
                region=resource_id.region,
                role_arn=role_arn,
            )
        except Exception as err:
            raise classify_error("Cluster credentials", err) from err
        return self._engine_factory(kubeconfig)

    async def _submit(
        self,
        engine: ChartEngine,
        model: ResourceModel,
        chart: ChartDescriptor,
        resource_id: ResourceId,
    ) -> None:
        """Derive the chart and values again and submit the release."""
        if chart.chart_type == ChartType.LOCAL and chart.chart_path:
            await self._fetcher.fetch(chart.chart_path, Path(chart.chart))
        values = await process_values(
            model.values,
            model.value_yaml,
            model.value_override_url,
            self._fetcher,
            self._config.work_dir,
        )
        await engine.prepare(chart)
        await engine.upgrade_install(
            resource_id.release_name, resource_id.release_namespace, chart, values
        )

    async def _create_or_update(
        self, operation: str, model: ResourceModel, context: StageContext
    ) -> ProgressEvent:
        now = self._clock()
        if context.stage.terminal:
            raise ValidationError(f"{operation} already finished ({context.stage})")
        if context.stage != Stage.INIT:
            context.check_timeout(model.time_out, now)

        chart = resolve_chart(model.chart, model.version, model.repository)
        name = context.name or release_name(model, chart.chart_name, now)
        opaque, resource_id = self._identify(operation, model, name)
        release, namespace = resource_id.release_name, resource_id.release_namespace
        context = replace(context, name=release)
        model = replace(model, id=opaque, name=release, namespace=namespace)

        engine = await self._connect(resource_id, model.role_arn)
        status = await engine.status(release, namespace)

        if context.stage in (Stage.INIT, Stage.PENDING):
            if status is not None and status.is_pending:
                _LOGGER.info("Release %s is %s, waiting to submit", release, status.status)
                return self._in_progress(model, context.advance(Stage.PENDING, now))
            await self._submit(engine, model, chart, resource_id)
            return self._in_progress(model, context.advance(Stage.IN_PROGRESS, now))

        if status is None:
            raise NotFoundError(f"Release {namespace}/{release} not found")
        if status.is_failed:
            raise HelmException(
                f"Release {namespace}/{release} failed: {status.description}"
            )
        if status.is_deployed:
            return ProgressEvent.success(model)
        return self._in_progress(model, context)

    async def _delete(
        self, operation: str, model: ResourceModel, context: StageContext
    ) -> ProgressEvent:
        now = self._clock()
        if context.stage.terminal:
            raise ValidationError(f"{operation} already finished ({context.stage})")
        if context.stage != Stage.INIT:
            context.check_timeout(model.time_out, now)
        _, resource_id = self._identify(operation, model, model.name or "")
        release, namespace = resource_id.release_name, resource_id.release_namespace
        engine = await self._connect(resource_id, model.role_arn)

        if context.stage == Stage.INIT:
            if not await engine.uninstall(release, namespace):
                return ProgressEvent.success(None)
            context = replace(context, name=release)
            return self._in_progress(model, context.advance(Stage.IN_PROGRESS, now))

        status = await engine.status(release, namespace)
        if status is None:
            return ProgressEvent.success(None)
        if not status.is_pending:
            # Uninstall was interrupted, submit it again
            await engine.uninstall(release, namespace)
        return self._in_progress(model, context)

    async def _read(
        self, operation: str, model: ResourceModel, context: StageContext
    ) -> ProgressEvent:
        _, resource_id = self._identify(operation, model, model.name or "")
        release, namespace = resource_id.release_name, resource_id.release_namespace
        engine = await self._connect(resource_id, model.role_arn)
        if await engine.status(release, namespace) is None:
            raise NotFoundError(f"Release {namespace}/{release} not found")
        return ProgressEvent.success(
            replace(
                model,
                name=release,
                namespace=namespace,
                cluster_id=resource_id.cluster_id,
                kube_config=resource_id.kube_config,
            )
        )


def _check_updatable(model: ResourceModel, resource_id: ResourceId) -> None:
    """Reject updates that would move the release to a new target."""
    changed = [
        field
        for field, desired, current in (
            ("ClusterID", model.cluster_id, resource_id.cluster_id),
            ("KubeConfig", model.kube_config, resource_id.kube_config),
            ("Name", model.name, resource_id.release_name),
            ("Namespace", model.namespace, resource_id.release_namespace),
        )
        if desired is not None and desired != current
    ]
    if changed:
        raise ValidationError(f"Properties can not be updated: {', '.join(changed)}")
