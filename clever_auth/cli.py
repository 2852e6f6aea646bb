"""CLI entry point for clever-auth."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, NoReturn

import click
import httpx

from . import __version__
from .client import ApiClient, ApiError
from .config import Config, ConfigError, load_config
from .oauth import (
    ApiRequest,
    Authenticator,
    BrowserLauncher,
    ConnectionState,
    EncryptedCredentialStore,
    ManualLauncher,
    SigningError,
    WebBrowserLauncher,
)
from .output import OutputHandler

# Logger for CLI
logger = logging.getLogger("clever-auth")


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Path to clever-auth.json")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, json_mode: bool, config_path: str | None, env_path: str | None, verbose: bool) -> None:
    """clever-auth - Sign Clever Cloud API requests and log in with a CLI token."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["output"] = OutputHandler(json_mode)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_config(ctx: click.Context) -> Config | NoReturn:
    """Get config from context, handling errors."""
    output: OutputHandler = ctx.obj["output"]
    try:
        return load_config(ctx.obj["config_path"], ctx.obj["env_path"])
    except ConfigError as e:
        output.error(e, help_text="Check clever-auth.json and the CLEVER_* environment variables.")
        raise SystemExit(1)  # Never reached due to sys.exit in output.error
    except json.JSONDecodeError as e:
        output.error(
            e,
            error_type="ConfigParseError",
            help_text="The config file contains invalid JSON. Check for syntax errors.",
        )
        raise SystemExit(1)  # Never reached due to sys.exit in output.error


def get_authenticator(
    config: Config,
    launcher: BrowserLauncher | None = None,
    on_status: Any = None,
) -> Authenticator:
    """Build an Authenticator backed by the encrypted credential store."""
    store = EncryptedCredentialStore(store_dir=config.store_dir)
    return Authenticator(config, store, launcher=launcher, on_status=on_status)


def _parse_params(values: tuple[str, ...]) -> dict[str, str]:
    """Parse repeated key=value options."""
    params: dict[str, str] = {}
    for item in values:
        if "=" not in item:
            raise click.BadParameter(f"Expected key=value, got {item!r}", param_hint="--param")
        key, value = item.split("=", 1)
        params[key] = value
    return params


async def _run_login(authenticator: Authenticator) -> ConnectionState:
    await authenticator.authenticate()
    return await authenticator.wait()


@main.group()
@click.pass_context
def auth(ctx: click.Context) -> None:
    """Log in, log out and inspect stored credentials."""
    pass


@auth.command("login")
@click.option("--no-browser", is_flag=True, help="Print the console URL instead of opening a browser")
@click.option("--force", "-f", is_flag=True, help="Log in again even if credentials are stored")
@click.pass_context
def auth_login(ctx: click.Context, no_browser: bool, force: bool) -> None:
    """Log in through the Clever Cloud console.

    Opens the console in a browser with a one-time CLI token, then waits
    until the login is approved and stores the issued credentials.
    """
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    json_mode = ctx.obj["json_mode"]

    def on_status(message: str) -> None:
        if not json_mode:
            click.echo(message)

    launcher = ManualLauncher() if no_browser else WebBrowserLauncher()
    authenticator = get_authenticator(config, launcher=launcher, on_status=on_status)

    if authenticator.state.is_authenticated and not force:
        output.success(
            {"status": "authenticated", "message": "Already authenticated"},
            human_message="Already authenticated. Use --force to log in again.",
        )
        return

    state = asyncio.run(_run_login(authenticator))

    if state.is_authenticated:
        if json_mode:
            output.success(state.to_dict())
        else:
            click.secho("Logged in.", fg="green")
        return

    if state.is_timeout:
        output.error(
            RuntimeError(state.reason or "Authentication timed out"),
            error_type="AuthenticationTimeout",
            help_text="The login was not approved in time. Run 'clever-auth auth login' to try again.",
        )
    else:
        output.error(
            RuntimeError(state.reason or "Authentication failed"),
            error_type="AuthenticationFailed",
            help_text="Check your network connection and configuration, then try again.",
        )


@auth.command("logout")
@click.pass_context
def auth_logout(ctx: click.Context) -> None:
    """Delete stored credentials."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)

    authenticator = get_authenticator(config, launcher=ManualLauncher())
    deleted = authenticator.logout()
    output.success(
        {"logged_out": deleted},
        human_message="Logged out." if deleted else "No stored credentials.",
    )


@auth.command("reset")
@click.pass_context
def auth_reset(ctx: click.Context) -> None:
    """Delete stored credentials and clear any authentication error."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)

    authenticator = get_authenticator(config, launcher=ManualLauncher())
    deleted = authenticator.reset_authentication()
    output.success({"reset": True, "deleted": deleted}, human_message="Authentication reset.")


@auth.command("status")
@click.pass_context
def auth_status(ctx: click.Context) -> None:
    """Show whether credentials are stored and usable."""
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)

    authenticator = get_authenticator(config, launcher=ManualLauncher())
    info = authenticator.describe()
    info["signing_mode"] = authenticator.build_signer().mode.value
    output.fields(info, title="Authentication Status:")


@main.command()
@click.argument("method")
@click.argument("url")
@click.option("--param", "-p", "params", multiple=True, help="Query parameter as key=value (repeatable)")
@click.pass_context
def sign(ctx: click.Context, method: str, url: str, params: tuple[str, ...]) -> None:
    """Print the Authorization header for a request.

    Example: clever-auth sign GET https://api.clever-cloud.com/v2/self
    """
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    query = _parse_params(params)

    authenticator = get_authenticator(config, launcher=ManualLauncher())
    try:
        signed = authenticator.build_signer().sign(ApiRequest(method.upper(), url, params=query))
    except SigningError as e:
        output.error(e, help_text="Run 'clever-auth auth login' or check the request URL.")
        return

    output.success(
        {"method": signed.method, "url": signed.full_url(), "authorization": signed.authorization},
        human_message=f"Authorization: {signed.authorization}",
    )


@main.command()
@click.argument("method")
@click.argument("path")
@click.option("--param", "-p", "params", multiple=True, help="Query parameter as key=value (repeatable)")
@click.option("--api", "api_version", type=click.Choice(["v2", "v4"]), default="v2", help="API version")
@click.pass_context
def request(ctx: click.Context, method: str, path: str, params: tuple[str, ...], api_version: str) -> None:
    """Send a signed request and print the response.

    Example: clever-auth request GET /self
    """
    output: OutputHandler = ctx.obj["output"]
    config = get_config(ctx)
    query = _parse_params(params)

    authenticator = get_authenticator(config, launcher=ManualLauncher())
    signer = authenticator.build_signer()

    async def send() -> httpx.Response:
        async with ApiClient(signer, config.api_host, timeout=config.request_timeout) as client:
            return await client.request(method, path, params=query, api_version=api_version)

    try:
        response = asyncio.run(send())
    except SigningError as e:
        logger.debug(f"Signing failed for {method.upper()} {path}: {e}")
        output.error(e, help_text="Run 'clever-auth auth login' first.")
        return
    except ApiError as e:
        logger.debug(f"API error {e.status_code} for {method.upper()} {path}")
        help_text = "Credentials may be invalid or revoked. Try 'clever-auth auth login --force'." if e.status_code == 401 else None
        output.error(e, help_text=help_text)
        return
    except httpx.RequestError as e:
        logger.debug(f"Request to {config.api_host} failed: {type(e).__name__}: {e}")
        output.error(e, error_type="NetworkError", help_text="Check your network connection.")
        return

    try:
        data: Any = response.json()
    except ValueError:
        data = response.text
    output.success({"status_code": response.status_code, "body": data})
