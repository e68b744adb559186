from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, NoReturn, Optional

import typer

from .commands import sync_commands
from .config import BotConfig, load_bot_config
from .errors import ConfigError, UnicordError
from .logging_utils import setup_rotating_logger
from .rest import RestClient

app = typer.Typer(add_completion=False, help="Discord bot runtime utilities.")

DEFAULT_CONFIG_PATH = Path("unicord.yml")


def _raise_exit(message: str, *, cause: Optional[BaseException] = None) -> NoReturn:
    typer.echo(message, err=True)
    if cause is not None:
        raise typer.Exit(code=1) from cause
    raise typer.Exit(code=1)


def _load_config(path: Path) -> BotConfig:
    try:
        return load_bot_config(path)
    except ConfigError as exc:
        _raise_exit(str(exc), cause=exc)


def _logger_for(config: BotConfig) -> logging.Logger:
    return setup_rotating_logger("unicord", config.log_file)


async def _sync_configured_commands(
    config: BotConfig,
    *,
    logger: logging.Logger,
    rest_client_factory: Callable[..., Any] = RestClient,
    sync_func: Callable[..., Awaitable[None]] = sync_commands,
) -> None:
    token = config.require_token()
    if not config.application_id:
        raise ConfigError(f"missing application id env '{config.app_id_env}'")

    async with rest_client_factory(
        bot_token=token, base_url=config.api_base_url
    ) as rest:
        await sync_func(
            rest,
            application_id=config.application_id,
            commands=[dict(command) for command in config.commands],
            scope=config.command_registration.scope,
            guild_ids=config.command_registration.guild_ids,
            logger=logger,
        )


async def _fetch_gateway_info(
    config: BotConfig,
    *,
    rest_client_factory: Callable[..., Any] = RestClient,
) -> dict[str, Any]:
    token = config.require_token()
    async with rest_client_factory(
        bot_token=token, base_url=config.api_base_url
    ) as rest:
        return await rest.get_gateway_bot()


@app.command("check-config")
def check_config(
    config_path: Path = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", help="Path to the YAML config file"
    ),
) -> None:
    config = _load_config(config_path)
    typer.echo(f"prefix: {config.prefix or '-'}")
    typer.echo(f"intents: {config.intents}")
    typer.echo(f"shard_count: {config.shard_count}")
    typer.echo(f"command scope: {config.command_registration.scope}")
    typer.echo(f"token: {'set' if config.bot_token else 'missing'}")
    typer.echo("Config OK.")


@app.command("register-commands")
def register_commands(
    config_path: Path = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", help="Path to the YAML config file"
    ),
) -> None:
    config = _load_config(config_path)
    if not config.commands:
        _raise_exit("no commands declared under 'commands'")
    try:
        asyncio.run(_sync_configured_commands(config, logger=_logger_for(config)))
    except (UnicordError, ValueError) as exc:
        _raise_exit(str(exc), cause=exc)

    typer.echo("Application commands synchronized.")


@app.command("gateway-info")
def gateway_info(
    config_path: Path = typer.Option(
        DEFAULT_CONFIG_PATH, "--config", help="Path to the YAML config file"
    ),
) -> None:
    config = _load_config(config_path)
    try:
        info = asyncio.run(_fetch_gateway_info(config))
    except UnicordError as exc:
        _raise_exit(str(exc), cause=exc)
    typer.echo(json.dumps(info, indent=2, sort_keys=True))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
