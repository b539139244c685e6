"""Tests for the helm release provider."""

import datetime
from pathlib import Path
from typing import Any

import pytest

from helm_provider.chart import ChartDescriptor
from helm_provider.config import ProviderConfig
from helm_provider.controller import HelmProvider, release_name
from helm_provider.helm import ReleaseStatus
from helm_provider.identifier import decode_id, encode_id
from helm_provider.model import OperationStatus, ResourceModel
from helm_provider.stage import Stage

NOW = datetime.datetime(2024, 3, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)
START_TIME = "2024-03-01T12:00:00Z"
REGION = "us-east-1"


class FakeEngine:
    """Chart engine that records calls and reports a configured status."""

    def __init__(self) -> None:
        self.release_status: str | None = None
        self.calls: list[tuple[Any, ...]] = []
        self.values: dict[str, Any] | None = None

    async def prepare(self, chart: ChartDescriptor) -> None:
        self.calls.append(("prepare", chart.chart))

    async def upgrade_install(
        self,
        release: str,
        namespace: str,
        chart: ChartDescriptor,
        values: dict[str, Any],
    ) -> None:
        self.calls.append(("upgrade_install", release, namespace, chart.chart))
        self.values = values

    async def uninstall(self, release: str, namespace: str) -> bool:
        self.calls.append(("uninstall", release, namespace))
        return self.release_status is not None

    async def status(self, release: str, namespace: str) -> ReleaseStatus | None:
        if self.release_status is None:
            return None
        return ReleaseStatus(
            name=release,
            namespace=namespace,
            status=self.release_status,
            description="Upgrade complete",
        )


class FakeCredentials:
    """Writes nothing and records the cluster target."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.targets: list[tuple[str | None, str | None, str | None]] = []

    async def write_kubeconfig(
        self,
        cluster_id: str | None = None,
        kube_config: str | None = None,
        region: str | None = None,
        role_arn: str | None = None,
    ) -> Path:
        self.targets.append((cluster_id, kube_config, region))
        return self.path


class FakeFetcher:
    """Serves documents from a dict keyed by URL."""

    def __init__(self, documents: dict[str, str]) -> None:
        self.documents = documents
        self.urls: list[str] = []

    async def fetch(self, url: str, dest: Path) -> Path:
        self.urls.append(url)
        dest.write_text(self.documents[url])
        return dest


class Clock:
    def __init__(self) -> None:
        self.now = NOW

    def __call__(self) -> datetime.datetime:
        return self.now


@pytest.fixture(name="engine")
def engine_fixture() -> FakeEngine:
    return FakeEngine()


@pytest.fixture(name="credentials")
def credentials_fixture(tmp_path: Path) -> FakeCredentials:
    return FakeCredentials(tmp_path / "kubeConfig")


@pytest.fixture(name="fetcher")
def fetcher_fixture() -> FakeFetcher:
    return FakeFetcher({"https://example.com/values.yaml": "service:\n  port: 8080\n"})


@pytest.fixture(name="clock")
def clock_fixture() -> Clock:
    return Clock()


@pytest.fixture(name="provider")
def provider_fixture(
    tmp_path: Path,
    engine: FakeEngine,
    credentials: FakeCredentials,
    fetcher: FakeFetcher,
    clock: Clock,
) -> HelmProvider:
    return HelmProvider(
        ProviderConfig(work_dir=tmp_path),
        aws=object(),  # type: ignore[arg-type]
        region=REGION,
        fetcher=fetcher,  # type: ignore[arg-type]
        credentials=credentials,
        engine_factory=lambda kubeconfig: engine,
        clock=clock,
    )


def _model(**kwargs: Any) -> ResourceModel:
    fields: dict[str, Any] = {
        "cluster_id": "eks-cluster",
        "chart": "bitnami/nginx",
        "repository": "https://charts.bitnami.com/bitnami",
        "name": "web",
    }
    fields.update(kwargs)
    return ResourceModel(**fields)


def _identifier(**kwargs: Any) -> str:
    fields: dict[str, Any] = {
        "cluster_id": "eks-cluster",
        "name": "web",
        "namespace": "default",
        "region": REGION,
    }
    fields.update(kwargs)
    return encode_id(**fields)


def test_release_name() -> None:
    """Test a release name is generated from the chart when not set."""
    assert release_name(ResourceModel(name="web"), "nginx", NOW) == "web"
    assert release_name(ResourceModel(), "Nginx", NOW) == "nginx-1709294400"


async def test_create_submits_release(
    provider: HelmProvider,
    engine: FakeEngine,
    credentials: FakeCredentials,
    fetcher: FakeFetcher,
) -> None:
    """Test the first poll of a create submits the release."""
    model = _model(
        values=["replicaCount=2"],
        value_override_url="https://example.com/values.yaml",
    )
    event = await provider.create(model)
    assert event.status == OperationStatus.IN_PROGRESS
    assert event.stage == Stage.IN_PROGRESS
    assert event.context == {
        "Stage": "InProgress",
        "StartTime": START_TIME,
        "Name": "web",
    }
    assert event.callback_delay_seconds == 30
    assert event.model is not None
    assert event.model.id == _identifier()
    assert event.model.namespace == "default"
    assert credentials.targets == [("eks-cluster", None, REGION)]
    assert engine.calls == [
        ("prepare", "bitnami/nginx"),
        ("upgrade_install", "web", "default", "bitnami/nginx"),
    ]
    assert engine.values == {"replicaCount": 2, "service": {"port": 8080}}
    assert fetcher.urls == ["https://example.com/values.yaml"]


async def test_create_generates_name(
    provider: HelmProvider, engine: FakeEngine
) -> None:
    """Test the generated release name is kept in the context."""
    event = await provider.create(_model(name=None, namespace="apps"))
    assert event.context is not None
    assert event.context["Name"] == "nginx-1709294400"
    assert event.model is not None
    resource_id = decode_id(event.model.id or "")
    assert resource_id.name == "nginx-1709294400"
    assert resource_id.namespace == "apps"


async def test_create_local_chart(
    provider: HelmProvider, engine: FakeEngine, fetcher: FakeFetcher
) -> None:
    """Test a chart archive is downloaded before it is installed."""
    fetcher.documents["https://example.com/charts/app-1.0.tgz"] = "archive"
    event = await provider.create(_model(chart="https://example.com/charts/app-1.0.tgz"))
    assert event.status == OperationStatus.IN_PROGRESS
    assert fetcher.urls == ["https://example.com/charts/app-1.0.tgz"]
    assert ("upgrade_install", "web", "default", "/tmp/chart.tgz") in engine.calls


async def test_create_pending_release(
    provider: HelmProvider, engine: FakeEngine
) -> None:
    """Test a release held by another operation is not submitted."""
    engine.release_status = "pending-upgrade"
    event = await provider.create(_model())
    assert event.status == OperationStatus.IN_PROGRESS
    assert event.stage == Stage.PENDING
    assert event.context is not None
    assert event.context["Stage"] == "Pending"
    assert engine.calls == []


async def test_pending_submits_once_released(
    provider: HelmProvider, engine: FakeEngine, clock: Clock
) -> None:
    """Test the release is submitted once the other operation finished."""
    engine.release_status = "deployed"
    clock.now = NOW + datetime.timedelta(minutes=5)
    context = {"Stage": "Pending", "StartTime": START_TIME, "Name": "web"}
    event = await provider.update(_model(id=_identifier()), context)
    assert event.stage == Stage.IN_PROGRESS
    assert event.context is not None
    assert event.context["StartTime"] == START_TIME
    assert ("upgrade_install", "web", "default", "bitnami/nginx") in engine.calls


@pytest.mark.parametrize(
    ("status", "expected_status", "expected_stage"),
    [
        ("deployed", OperationStatus.SUCCESS, Stage.COMPLETE),
        ("pending-install", OperationStatus.IN_PROGRESS, Stage.IN_PROGRESS),
        ("failed", OperationStatus.FAILED, Stage.FAILED),
    ],
)
async def test_create_in_progress(
    provider: HelmProvider,
    engine: FakeEngine,
    clock: Clock,
    status: str,
    expected_status: OperationStatus,
    expected_stage: Stage,
) -> None:
    """Test polling a submitted release."""
    engine.release_status = status
    clock.now = NOW + datetime.timedelta(minutes=10)
    context = {"Stage": "InProgress", "StartTime": START_TIME, "Name": "web"}
    event = await provider.create(_model(id=_identifier()), context)
    assert event.status == expected_status
    assert event.stage == expected_stage
    assert ("upgrade_install", "web", "default", "bitnami/nginx") not in engine.calls
    if expected_status == OperationStatus.IN_PROGRESS:
        assert event.context == context


async def test_create_missing_release(
    provider: HelmProvider, engine: FakeEngine
) -> None:
    """Test a submitted release that disappeared."""
    context = {"Stage": "InProgress", "StartTime": START_TIME, "Name": "web"}
    event = await provider.create(_model(id=_identifier()), context)
    assert event.status == OperationStatus.FAILED
    assert event.error_code == "NotFound"


async def test_create_timeout(
    provider: HelmProvider, engine: FakeEngine, clock: Clock
) -> None:
    """Test the operation fails once it has run past its timeout."""
    engine.release_status = "pending-install"
    clock.now = NOW + datetime.timedelta(minutes=61)
    context = {"Stage": "InProgress", "StartTime": START_TIME, "Name": "web"}
    event = await provider.create(_model(id=_identifier()), context)
    assert event.status == OperationStatus.FAILED
    assert event.error_code == "NotStabilized"
    assert event.retryable is False


async def test_create_custom_timeout(
    provider: HelmProvider, engine: FakeEngine, clock: Clock
) -> None:
    engine.release_status = "pending-install"
    clock.now = NOW + datetime.timedelta(minutes=10)
    context = {"Stage": "InProgress", "StartTime": START_TIME, "Name": "web"}
    event = await provider.create(_model(id=_identifier(), time_out=5), context)
    assert event.error_code == "NotStabilized"


async def test_unknown_stage(provider: HelmProvider) -> None:
    event = await provider.create(_model(), {"Stage": "Rollback"})
    assert event.status == OperationStatus.FAILED
    assert event.error_code == "InvalidRequest"


async def test_both_cluster_targets(provider: HelmProvider) -> None:
    """Test a model naming two cluster targets is rejected."""
    event = await provider.create(_model(kube_config="arn:aws:secretsmanager:x"))
    assert event.status == OperationStatus.FAILED
    assert event.error_code == "InvalidRequest"
    assert event.message is not None
    assert "can not be specified" in event.message


async def test_missing_chart(provider: HelmProvider) -> None:
    event = await provider.create(_model(chart=None))
    assert event.status == OperationStatus.FAILED
    assert event.message == "Chart is required"


async def test_missing_region(
    tmp_path: Path, engine: FakeEngine, credentials: FakeCredentials
) -> None:
    """Test an identifier can not be minted without a region."""

    class NoRegion:
        region = None

    provider = HelmProvider(
        ProviderConfig(work_dir=tmp_path),
        aws=NoRegion(),  # type: ignore[arg-type]
        fetcher=FakeFetcher({}),  # type: ignore[arg-type]
        credentials=credentials,
        engine_factory=lambda kubeconfig: engine,
        clock=Clock(),
    )
    event = await provider.create(_model())
    assert event.status == OperationStatus.FAILED
    assert event.error_code == "InvalidRequest"


async def test_update_requires_identifier(provider: HelmProvider) -> None:
    event = await provider.update(_model())
    assert event.status == OperationStatus.FAILED
    assert event.error_code == "InvalidRequest"


async def test_update_immutable_properties(provider: HelmProvider) -> None:
    """Test an update can not move the release."""
    event = await provider.update(_model(id=_identifier(), namespace="other"))
    assert event.status == OperationStatus.FAILED
    assert event.message == "Properties can not be updated: Namespace"


async def test_update_invalid_identifier(provider: HelmProvider) -> None:
    event = await provider.update(_model(id="not-an-identifier"))
    assert event.status == OperationStatus.FAILED
    assert event.error_code == "InvalidRequest"


async def test_credentials_error(
    provider: HelmProvider, credentials: FakeCredentials
) -> None:
    """Test unexpected errors writing the kubeconfig are normalized."""

    async def fail(**kwargs: Any) -> Path:
        raise RuntimeError("connection reset")

    credentials.write_kubeconfig = fail  # type: ignore[method-assign]
    event = await provider.create(_model())
    assert event.status == OperationStatus.FAILED
    assert event.message == "Error: At Cluster credentials - connection reset"


async def test_delete(provider: HelmProvider, engine: FakeEngine, clock: Clock) -> None:
    """Test deleting a release through to completion."""
    engine.release_status = "deployed"
    event = await provider.delete(_model(id=_identifier()))
    assert event.status == OperationStatus.IN_PROGRESS
    assert engine.calls == [("uninstall", "web", "default")]
    assert event.context == {
        "Stage": "InProgress",
        "StartTime": START_TIME,
        "Name": "web",
    }

    engine.release_status = "uninstalling"
    clock.now = NOW + datetime.timedelta(minutes=1)
    event = await provider.delete(_model(id=_identifier()), event.context)
    assert event.status == OperationStatus.IN_PROGRESS
    assert len(engine.calls) == 1

    engine.release_status = None
    event = await provider.delete(_model(id=_identifier()), event.context)
    assert event.status == OperationStatus.SUCCESS
    assert event.model is None


async def test_delete_missing_release(
    provider: HelmProvider, engine: FakeEngine
) -> None:
    """Test deleting a release that does not exist succeeds."""
    event = await provider.delete(_model(id=_identifier()))
    assert event.status == OperationStatus.SUCCESS


async def test_delete_interrupted(
    provider: HelmProvider, engine: FakeEngine, clock: Clock
) -> None:
    """Test an uninstall that stopped is submitted again."""
    engine.release_status = "deployed"
    clock.now = NOW + datetime.timedelta(minutes=1)
    context = {"Stage": "InProgress", "StartTime": START_TIME, "Name": "web"}
    event = await provider.delete(_model(id=_identifier()), context)
    assert event.status == OperationStatus.IN_PROGRESS
    assert engine.calls == [("uninstall", "web", "default")]


async def test_read(provider: HelmProvider, engine: FakeEngine) -> None:
    """Test reading fills in the properties from the identifier."""
    engine.release_status = "deployed"
    event = await provider.read(ResourceModel(id=_identifier(namespace="apps")))
    assert event.status == OperationStatus.SUCCESS
    assert event.model is not None
    assert event.model.name == "web"
    assert event.model.namespace == "apps"
    assert event.model.cluster_id == "eks-cluster"


async def test_read_not_found(provider: HelmProvider) -> None:
    event = await provider.read(ResourceModel(id=_identifier()))
    assert event.status == OperationStatus.FAILED
    assert event.error_code == "NotFound"


async def test_finished_operation(provider: HelmProvider) -> None:
    """Test a poll after the operation already completed is rejected."""
    event = await provider.create(_model(id=_identifier()), {"Stage": "Complete"})
    assert event.status == OperationStatus.FAILED
    assert event.error_code == "InvalidRequest"


async def test_in_progress_without_start_time(
    provider: HelmProvider, engine: FakeEngine, clock: Clock
) -> None:
    """Test a context that lost its start time fails instead of polling forever."""
    engine.release_status = "pending-install"
    clock.now = NOW + datetime.timedelta(days=30)
    event = await provider.create(
        _model(id=_identifier()), {"Stage": "InProgress", "Name": "web"}
    )
    assert event.status == OperationStatus.FAILED
    assert event.error_code == "InvalidRequest"
    assert event.message == "Missing StartTime for stage 'InProgress'"
