"""Test helpers for helm-provider tools."""

from helm_provider.command import Command, run

HELM_PROVIDER_BIN = "helm-provider"


async def run_command(args: list[str], env: dict[str, str] | None = None) -> str:
    return await run(Command([HELM_PROVIDER_BIN] + args, env=env))
