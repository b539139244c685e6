"""Representation of the requests and responses exchanged with the invoker.

Requests carry a `ResourceModel` describing the desired release. Every poll
returns a `ProgressEvent` telling the invoker whether to call again.
"""

from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.codecs.yaml import yaml_decode
from mashumaro.config import BaseConfig
from mashumaro.exceptions import MissingField, InvalidFieldValue

from .exceptions import HelmProviderException, ValidationError
from .stage import Stage

__all__ = [
    "ResourceModel",
    "OperationStatus",
    "ProgressEvent",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_CALLBACK_DELAY_SECONDS = 30


@dataclass
class ResourceModel(DataClassDictMixin):
    """Desired state of a helm release."""

    id: str | None = field(default=None, metadata=field_options(alias="ID"))
    """Opaque identifier, set once the release has been created."""

    cluster_id: str | None = field(
        default=None, metadata=field_options(alias="ClusterID")
    )
    """Name of the EKS cluster to install into."""

    kube_config: str | None = field(
        default=None, metadata=field_options(alias="KubeConfig")
    )
    """Secrets Manager ARN of a kubeconfig, used instead of ClusterID."""

    role_arn: str | None = field(default=None, metadata=field_options(alias="RoleArn"))
    """Role assumed to access the cluster."""

    namespace: str | None = field(
        default=None, metadata=field_options(alias="Namespace")
    )
    chart: str | None = field(default=None, metadata=field_options(alias="Chart"))
    repository: str | None = field(
        default=None, metadata=field_options(alias="Repository")
    )
    version: str | None = field(default=None, metadata=field_options(alias="Version"))
    values: list[str] | None = field(
        default=None, metadata=field_options(alias="Values")
    )
    """Inline `key=value` assignments."""

    value_yaml: str | None = field(
        default=None, metadata=field_options(alias="ValueYaml")
    )
    """Inline YAML values document."""

    value_override_url: str | None = field(
        default=None, metadata=field_options(alias="ValueOverrideURL")
    )
    """URL of a YAML values document."""

    name: str | None = field(default=None, metadata=field_options(alias="Name"))
    """Release name, generated from the chart name if not set."""

    time_out: int | None = field(default=None, metadata=field_options(alias="TimeOut"))
    """Operation timeout in minutes."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True

    @classmethod
    def parse_yaml(cls, content: str) -> "ResourceModel":
        """Parse a serialized request, in YAML or JSON."""
        try:
            return yaml_decode(content, cls)
        except (MissingField, InvalidFieldValue) as err:
            raise ValidationError(f"Invalid resource model: {err}") from err


class OperationStatus(StrEnum):
    """Status reported to the invoker for a poll."""

    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class ProgressEvent(DataClassDictMixin):
    """Outcome of one poll of an operation."""

    status: OperationStatus
    stage: Stage
    model: ResourceModel | None = None
    context: dict[str, Any] | None = None
    """Callback context to send back on the next poll."""

    message: str | None = None
    error_code: str | None = None
    retryable: bool | None = None
    callback_delay_seconds: int | None = None

    class Config(BaseConfig):
        omit_none = True

    @classmethod
    def in_progress(
        cls,
        model: ResourceModel,
        stage: Stage,
        context: dict[str, Any],
        delay: int = DEFAULT_CALLBACK_DELAY_SECONDS,
    ) -> "ProgressEvent":
        return cls(
            status=OperationStatus.IN_PROGRESS,
            stage=stage,
            model=model,
            context=context,
            callback_delay_seconds=delay,
        )

    @classmethod
    def success(cls, model: ResourceModel | None) -> "ProgressEvent":
        return cls(status=OperationStatus.SUCCESS, stage=Stage.COMPLETE, model=model)

    @classmethod
    def failed(
        cls, model: ResourceModel | None, err: HelmProviderException
    ) -> "ProgressEvent":
        """Report a terminal failure for this poll."""
        return cls(
            status=OperationStatus.FAILED,
            stage=Stage.FAILED,
            model=model,
            message=str(err),
            error_code=err.error_code,
            retryable=err.retryable,
        )
