"""Library for obtaining a kubeconfig for the target cluster.

The cluster is either an EKS cluster, addressed by name, or any cluster whose
kubeconfig is stored as a Secrets Manager secret, addressed by the secret ARN.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

import aiofiles
import yaml

from .aws import AwsClients
from .exceptions import ValidationError

__all__ = [
    "KubeConfigProvider",
    "eks_kubeconfig",
]

_LOGGER = logging.getLogger(__name__)

EXEC_API_VERSION = "client.authentication.k8s.io/v1beta1"


def eks_kubeconfig(
    cluster: dict[str, Any], region: str, role_arn: str | None = None
) -> dict[str, Any]:
    """Return a kubeconfig for an EKS cluster description.

    Credentials are issued by `aws eks get-token` each time the kubeconfig is used.
    """
    name = cluster["name"]
    args = ["eks", "get-token", "--cluster-name", name, "--region", region]
    if role_arn:
        args.extend(["--role-arn", role_arn])
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {
                "name": name,
                "cluster": {
                    "server": cluster["endpoint"],
                    "certificate-authority-data": cluster["certificateAuthority"][
                        "data"
                    ],
                },
            }
        ],
        "contexts": [{"name": name, "context": {"cluster": name, "user": name}}],
        "current-context": name,
        "users": [
            {
                "name": name,
                "user": {
                    "exec": {
                        "apiVersion": EXEC_API_VERSION,
                        "command": "aws",
                        "args": args,
                    }
                },
            }
        ],
    }


def _secret_region(arn: str) -> str | None:
    parts = arn.split(":")
    if len(parts) < 7 or parts[0] != "arn" or parts[2] != "secretsmanager":
        raise ValidationError(f"KubeConfig must be a Secrets Manager ARN: {arn}")
    return parts[3] or None


class KubeConfigProvider:
    """Writes a kubeconfig for a cluster target to a local file."""

    def __init__(self, aws: AwsClients, path: Path) -> None:
        """Initialize KubeConfigProvider."""
        self._aws = aws
        self._path = path

    async def write_kubeconfig(
        self,
        cluster_id: str | None = None,
        kube_config: str | None = None,
        region: str | None = None,
        role_arn: str | None = None,
    ) -> Path:
        """Write the kubeconfig for the cluster target and return its path."""
        if cluster_id and kube_config:
            raise ValidationError("Both ClusterID or KubeConfig can not be specified")
        if cluster_id:
            _LOGGER.info("Creating kubeconfig for EKS cluster %s", cluster_id)
            cluster = await asyncio.to_thread(
                self._aws.describe_cluster, cluster_id, region, role_arn
            )
            content = yaml.dump(
                eks_kubeconfig(cluster, region or self._aws.region or "", role_arn),
                sort_keys=False,
            )
        elif kube_config:
            _LOGGER.info("Reading kubeconfig from secret %s", kube_config)
            content = await asyncio.to_thread(
                self._aws.get_secret, kube_config, _secret_region(kube_config)
            )
        else:
            raise ValidationError("Either ClusterID or KubeConfig must be specified")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self._path, mode="w") as config_file:
            await config_file.write(content)
        return self._path
