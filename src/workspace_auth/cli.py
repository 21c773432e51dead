"""CLI for workspace-auth: run the callback server and manage accounts."""

from __future__ import annotations

import asyncio
import sys

import click

from workspace_auth import __version__
from workspace_auth.accounts.models import Account
from workspace_auth.config import WorkspaceAuthConfig
from workspace_auth.core.logging import configure_logging
from workspace_auth.errors import ConfigError, WorkspaceAuthError
from workspace_auth.runtime import WorkspaceAuthRuntime


def _load_config() -> WorkspaceAuthConfig:
    try:
        config = WorkspaceAuthConfig.from_env()
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc.message}", err=True)
        click.echo(exc.resolution, err=True)
        sys.exit(1)
    configure_logging(config.log_level, config.log_format)
    return config


def _format_account(account: Account) -> str:
    status = account.auth_status
    if status is None:
        return f"{account.email:<32} {'?':<15} {account.category}"
    line = f"{account.email:<32} {status.status.value:<15} {account.category}"
    if not status.valid and status.reason:
        line += f"  ({status.reason})"
    return line


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except WorkspaceAuthError as exc:
        click.echo(f"Error [{exc.code}]: {exc.message}", err=True)
        click.echo(exc.resolution, err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """workspace-auth: multi-account Google OAuth credential manager."""


@cli.command()
def serve() -> None:
    """Run the OAuth callback server until interrupted."""
    config = _load_config()
    if config.uses_external_callback:
        click.echo(f"External callback configured ({config.callback_url}); nothing to serve.")
        sys.exit(1)
    click.echo(f"Serving OAuth callback on {config.callback_url}")
    _run(_serve(config))


async def _serve(config: WorkspaceAuthConfig) -> None:
    async with WorkspaceAuthRuntime(config) as runtime:
        assert runtime.callback_server is not None
        await runtime.callback_server.serve_forever()


@cli.command()
@click.argument("email")
@click.option("--category", default=None, help="Category for a new account (e.g. work)")
@click.option("--description", default=None, help="Description for a new account")
def authorize(email: str, category: str | None, description: str | None) -> None:
    """Authorize EMAIL through the browser consent flow."""
    config = _load_config()
    _run(_authorize(config, email, category, description))


async def _authorize(
    config: WorkspaceAuthConfig,
    email: str,
    category: str | None,
    description: str | None,
) -> None:
    async with WorkspaceAuthRuntime(config) as runtime:
        account = await runtime.accounts.validate_account(email, category, description)
        if account.auth_status is not None and account.auth_status.valid:
            click.echo(f"{email} is already authorized ({account.auth_status.status.value}).")
            return
        request = runtime.accounts.authorize(email)
        click.echo("Open this URL in a browser to grant access:")
        click.echo(request.url)
        await runtime.accounts.complete_authorization(email, request)
        click.echo(f"Authentication completed successfully for {email}")


@cli.command()
@click.argument("email")
def status(email: str) -> None:
    """Show the authentication status of EMAIL."""
    config = _load_config()
    _run(_status(config, email))


async def _status(config: WorkspaceAuthConfig, email: str) -> None:
    runtime = WorkspaceAuthRuntime(config)
    try:
        await runtime.start(serve_callback=False)
        account = await runtime.accounts.validate_account(email)
    finally:
        await runtime.stop()
    click.echo(_format_account(account))
    if account.auth_status is not None and not account.auth_status.valid:
        click.echo(f"Run: workspace-auth authorize {email}")


@cli.group()
def accounts() -> None:
    """Manage registered accounts."""


@accounts.command("list")
def list_cmd() -> None:
    """List registered accounts with their authentication status."""
    config = _load_config()
    _run(_list_accounts(config))


async def _list_accounts(config: WorkspaceAuthConfig) -> None:
    runtime = WorkspaceAuthRuntime(config)
    try:
        await runtime.start(serve_callback=False)
        listed = await runtime.accounts.list_accounts()
    finally:
        await runtime.stop()
    if not listed:
        click.echo(f"No accounts registered in {config.accounts_path}")
        return
    click.echo(f"{'Email':<32} {'Status':<15} Category")
    click.echo("-" * 72)
    for account in listed:
        click.echo(_format_account(account))


@accounts.command("add")
@click.argument("email")
@click.option("--category", required=True, help="Account category (e.g. work, personal)")
@click.option("--description", required=True, help="Free-form description")
def add_cmd(email: str, category: str, description: str) -> None:
    """Register EMAIL without authorizing it."""
    config = _load_config()
    _run(_add_account(config, email, category, description))


async def _add_account(
    config: WorkspaceAuthConfig, email: str, category: str, description: str
) -> None:
    runtime = WorkspaceAuthRuntime(config)
    try:
        await runtime.start(serve_callback=False)
        await runtime.registry.add(email, category, description)
    finally:
        await runtime.stop()
    click.echo(f"Added {email}")


@accounts.command("remove")
@click.argument("email")
def remove_cmd(email: str) -> None:
    """Remove EMAIL, revoking and deleting its stored token."""
    config = _load_config()
    _run(_remove_account(config, email))


async def _remove_account(config: WorkspaceAuthConfig, email: str) -> None:
    runtime = WorkspaceAuthRuntime(config)
    try:
        await runtime.start(serve_callback=False)
        await runtime.accounts.remove_account(email)
    finally:
        await runtime.stop()
    click.echo(f"Removed {email}")
