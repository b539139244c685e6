"""Library for the opaque physical identifier of a helm release resource.

The identifier binds a logical resource to the cluster it was installed on and
the release name and namespace. It is handed back to the invoker once and
returned unchanged on every later poll, so everything needed to find the
release again must be inside it:

```python
from helm_provider.identifier import encode_id, decode_id

opaque = encode_id(cluster_id="eks-cluster", name="web", namespace="default", region="us-east-1")
resource_id = decode_id(opaque)
assert resource_id.name == "web"
```

The payload is compact JSON with empty fields omitted, encoded as URL-safe
base64 without padding.
"""

import base64
import binascii
from dataclasses import dataclass, field
import json
import logging
import re
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import MissingField, InvalidFieldValue

from .exceptions import DecodeError, ValidationError

__all__ = [
    "ResourceId",
    "encode_id",
    "decode_id",
]

_LOGGER = logging.getLogger(__name__)

_URLSAFE_RE = re.compile(r"[A-Za-z0-9_-]+")


@dataclass(frozen=True)
class ResourceId(DataClassDictMixin):
    """Fields recovered from an opaque identifier."""

    cluster_id: str | None = field(
        default=None, metadata=field_options(alias="ClusterID")
    )
    """Name of the EKS cluster the release is installed on."""

    kube_config: str | None = field(
        default=None, metadata=field_options(alias="KubeConfig")
    )
    """Reference to a stored kubeconfig, used instead of a cluster name."""

    region: str | None = field(default=None, metadata=field_options(alias="Region"))
    """Region of the cluster or the kubeconfig secret."""

    name: str | None = field(default=None, metadata=field_options(alias="Name"))
    """Name of the helm release."""

    namespace: str | None = field(
        default=None, metadata=field_options(alias="Namespace")
    )
    """Kubernetes namespace of the helm release."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True

    def validate(self) -> None:
        """Check that exactly one cluster target and all other fields are set."""
        if self.cluster_id and self.kube_config:
            raise ValidationError("Both ClusterID or KubeConfig can not be specified")
        if not self.cluster_id and not self.kube_config:
            raise ValidationError("Either ClusterID or KubeConfig must be specified")
        if not self.name or not self.namespace or not self.region:
            raise ValidationError(
                "Incorrect values for variable name, namespace, region"
            )

    @property
    def release_name(self) -> str:
        """Name of the release, empty only for an unvalidated identifier."""
        return self.name or ""

    @property
    def release_namespace(self) -> str:
        return self.namespace or ""

    def encode(self) -> str:
        """Return the opaque string form of this identifier."""
        self.validate()
        payload = json.dumps(self.to_dict(), separators=(",", ":"))
        return base64.urlsafe_b64encode(payload.encode("utf-8")).decode().rstrip("=")


def encode_id(
    *,
    name: str,
    namespace: str,
    region: str,
    cluster_id: str | None = None,
    kube_config: str | None = None,
) -> str:
    """Build the opaque identifier for a release on a cluster target."""
    return ResourceId(
        cluster_id=cluster_id or None,
        kube_config=kube_config or None,
        region=region,
        name=name,
        namespace=namespace,
    ).encode()


def _decode_payload(opaque: str) -> Any:
    if "=" in opaque:
        raise DecodeError(f"Identifier '{opaque}' must not be padded")
    if not _URLSAFE_RE.fullmatch(opaque):
        raise DecodeError(f"Identifier '{opaque}' is not URL-safe base64")
    padded = opaque + "=" * (-len(opaque) % 4)
    try:
        raw = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
    except (binascii.Error, UnicodeEncodeError) as err:
        raise DecodeError(f"Unable to decode identifier '{opaque}': {err}") from err
    try:
        return json.loads(raw)
    except ValueError as err:
        raise DecodeError(f"Identifier '{opaque}' is not valid JSON: {err}") from err


def decode_id(opaque: str) -> ResourceId:
    """Recover the fields of an identifier created with `encode_id`."""
    if not opaque:
        raise DecodeError("Identifier is empty")
    doc = _decode_payload(opaque)
    if not isinstance(doc, dict):
        raise DecodeError(f"Identifier '{opaque}' does not contain an object")
    if any(not isinstance(value, str) for value in doc.values()):
        raise DecodeError(f"Identifier '{opaque}' contains non-string fields")
    try:
        resource_id = ResourceId.from_dict(doc)
    except (MissingField, InvalidFieldValue) as err:
        raise DecodeError(f"Identifier '{opaque}' is malformed: {err}") from err
    try:
        resource_id.validate()
    except ValidationError as err:
        raise DecodeError(f"Identifier '{opaque}' is incomplete: {err}") from err
    _LOGGER.debug("Decoded identifier %s", resource_id)
    return resource_id
