"""Clients for the AWS services used by the provider.

All calls here are blocking boto3 calls. Async callers run them in a worker
thread with `asyncio.to_thread`.
"""

import logging
from pathlib import Path
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import classify_error

__all__ = [
    "AwsClients",
]

_LOGGER = logging.getLogger(__name__)

# Buckets created in us-east-1 report no location constraint
DEFAULT_BUCKET_REGION = "us-east-1"
_LEGACY_LOCATIONS = {"EU": "eu-west-1"}

ROLE_SESSION_NAME = "helm-provider"


class AwsClients:
    """Creates and caches boto3 clients per service, region and role."""

    def __init__(self, session: boto3.Session | None = None) -> None:
        """Initialize AwsClients."""
        self._session = session or boto3.Session()
        self._clients: dict[tuple[str, str | None, str | None], Any] = {}

    @property
    def region(self) -> str | None:
        """Region of the underlying session."""
        return self._session.region_name

    def _assume_role(self, role_arn: str) -> dict[str, str]:
        sts = self.client("sts")
        try:
            assumed = sts.assume_role(
                RoleArn=role_arn, RoleSessionName=ROLE_SESSION_NAME
            )
        except (ClientError, BotoCoreError) as err:
            raise classify_error("Assume role", err) from err
        creds = assumed["Credentials"]
        return {
            "aws_access_key_id": creds["AccessKeyId"],
            "aws_secret_access_key": creds["SecretAccessKey"],
            "aws_session_token": creds["SessionToken"],
        }

    def client(
        self, service: str, region: str | None = None, role_arn: str | None = None
    ) -> Any:
        """Return a client for the service, assuming role_arn if specified."""
        key = (service, region, role_arn)
        if (existing := self._clients.get(key)) is not None:
            return existing
        credentials = self._assume_role(role_arn) if role_arn else {}
        client = self._session.client(service, region_name=region, **credentials)
        self._clients[key] = client
        return client

    def get_bucket_region(self, bucket: str) -> str:
        """Return the region a bucket lives in."""
        try:
            response = self.client("s3").get_bucket_location(Bucket=bucket)
        except (ClientError, BotoCoreError) as err:
            raise classify_error(f"Bucket region s3://{bucket}", err) from err
        location = response.get("LocationConstraint")
        if not location:
            return DEFAULT_BUCKET_REGION
        return _LEGACY_LOCATIONS.get(location, location)

    def download_s3(self, region: str, bucket: str, key: str, dest: Path) -> None:
        """Download an object from a bucket in region to a local file."""
        _LOGGER.info("Downloading s3://%s/%s (%s)", bucket, key, region)
        try:
            self.client("s3", region=region).download_file(bucket, key, str(dest))
        except (ClientError, BotoCoreError) as err:
            raise classify_error(f"s3://{bucket}/{key}", err) from err

    def get_secret(self, secret_id: str, region: str | None = None) -> str:
        """Return the string value of a Secrets Manager secret."""
        try:
            response = self.client("secretsmanager", region=region).get_secret_value(
                SecretId=secret_id
            )
        except (ClientError, BotoCoreError) as err:
            raise classify_error("Secrets Manager", err) from err
        return response["SecretString"]

    def describe_cluster(
        self, name: str, region: str | None = None, role_arn: str | None = None
    ) -> dict[str, Any]:
        """Return the EKS description of a cluster."""
        try:
            response = self.client("eks", region=region, role_arn=role_arn).describe_cluster(
                name=name
            )
        except (ClientError, BotoCoreError) as err:
            raise classify_error("Describe cluster", err) from err
        return response["cluster"]
