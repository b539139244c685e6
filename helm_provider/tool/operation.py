"""Helm-provider create, update, delete and read actions."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
import sys
from typing import Any, cast

import yaml

from helm_provider.config import ProviderConfig
from helm_provider.controller import HelmProvider
from helm_provider.exceptions import ValidationError
from helm_provider.model import ResourceModel

_LOGGER = logging.getLogger(__name__)


def _read_context(path: pathlib.Path | None) -> dict[str, Any] | None:
    """Read the callback context returned by a previous poll."""
    if path is None:
        return None
    try:
        context = yaml.load(path.read_text(), Loader=yaml.SafeLoader)
    except (OSError, yaml.YAMLError) as err:
        raise ValidationError(f"Unable to read context {path}: {err}") from err
    if context is not None and not isinstance(context, dict):
        raise ValidationError(f"Expected context {path} to be a mapping")
    return context


def _read_model(path: pathlib.Path) -> ResourceModel:
    try:
        content = path.read_text()
    except OSError as err:
        raise ValidationError(f"Unable to read model {path}: {err}") from err
    return ResourceModel.parse_yaml(content)


class OperationAction:
    """Runs one poll of a lifecycle operation and prints the progress event."""

    OPERATIONS = ("create", "update", "delete", "read")

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> list[ArgumentParser]:
        """Register the subparser commands."""
        parsers = []
        for operation in cls.OPERATIONS:
            args = cast(
                ArgumentParser,
                subparsers.add_parser(
                    operation,
                    help=f"Run one poll of a {operation} operation",
                    description=f"""Run one step of a {operation} of a helm
                        release and print the resulting progress event. Pass the
                        context of the event to the next invocation to continue
                        the operation.""",
                ),
            )
            args.add_argument(
                "--model",
                type=pathlib.Path,
                required=True,
                help="YAML or JSON file with the desired resource model",
            )
            if operation != "read":
                args.add_argument(
                    "--context",
                    type=pathlib.Path,
                    default=None,
                    help="YAML or JSON file with the context of the previous poll",
                )
            args.add_argument(
                "--region",
                type=str,
                default=None,
                help="Region recorded in new resource identifiers",
            )
            args.set_defaults(cls=cls, operation=operation)
            parsers.append(args)
        return parsers

    async def run(  # type: ignore[no-untyped-def]
        self,
        operation: str,
        model: pathlib.Path,
        region: str | None,
        context: pathlib.Path | None = None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        resource_model = _read_model(model)
        provider = HelmProvider(ProviderConfig.from_env(), region=region)
        if operation == "read":
            event = await provider.read(resource_model)
        else:
            method = getattr(provider, operation)
            event = await method(resource_model, _read_context(context))
        print(yaml.dump(event.to_dict(), sort_keys=False), end="", file=sys.stdout)
