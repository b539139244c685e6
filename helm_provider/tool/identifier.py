"""Helm-provider identifier actions."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
from typing import cast

import yaml

from helm_provider.identifier import decode_id, encode_id


class EncodeIdAction:
    """Print the opaque identifier for a release."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "encode-id",
                help="Encode a resource identifier",
            ),
        )
        target = args.add_mutually_exclusive_group(required=True)
        target.add_argument("--cluster-id", type=str, help="Name of the EKS cluster")
        target.add_argument(
            "--kube-config", type=str, help="Secrets Manager ARN of a kubeconfig"
        )
        args.add_argument("--name", type=str, required=True, help="Release name")
        args.add_argument(
            "--namespace", type=str, default="default", help="Release namespace"
        )
        args.add_argument("--region", type=str, required=True, help="Cluster region")
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        cluster_id: str | None,
        kube_config: str | None,
        name: str,
        namespace: str,
        region: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        print(
            encode_id(
                cluster_id=cluster_id,
                kube_config=kube_config,
                name=name,
                namespace=namespace,
                region=region,
            )
        )


class DecodeIdAction:
    """Print the fields of an opaque identifier."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "decode-id",
                help="Decode a resource identifier",
            ),
        )
        args.add_argument("id", type=str, help="Opaque resource identifier")
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        id: str,  # pylint: disable=redefined-builtin
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        print(yaml.dump(decode_id(id).to_dict(), sort_keys=False), end="")
