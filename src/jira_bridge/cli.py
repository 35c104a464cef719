"""
jira-bridge Command Line Interface

Main entry point for the jira-bridge CLI.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from jira_bridge.config import ConfigLoader
from jira_bridge.exceptions import BridgeError, get_error_code
from jira_bridge.logging_config import mask_secrets, setup_logging

console = Console()


def _loader(ctx: click.Context) -> ConfigLoader:
    try:
        return ConfigLoader(home=ctx.obj.get("home"))
    except BridgeError as e:
        _fail(e)


def _fail(error: BridgeError) -> None:
    console.print(f"[red]Error:[/red] {error.message}")
    if error.remediation:
        console.print(f"[dim]To fix: {error.remediation}[/dim]")
    sys.exit(get_error_code(error))


def _open_store(ctx: click.Context):
    from jira_bridge.identity import IdentityStore

    return IdentityStore(_loader(ctx).database_path())


@click.group()
@click.version_option(package_name="jira-bridge")
@click.option("--home", type=click.Path(file_okay=False, path_type=Path),
              help="Directory holding config.yaml and .env (default: $JIRA_BRIDGE_HOME)")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def main(ctx: click.Context, home: Optional[Path], verbose: bool):
    """jira-bridge: work Jira issues from Slack"""
    ctx.ensure_object(dict)
    ctx.obj["home"] = home
    ctx.obj["verbose"] = verbose


@main.command()
@click.option("--log-file", type=click.Path(dir_okay=False, path_type=Path), help="Also log to this file")
@click.pass_context
def run(ctx: click.Context, log_file: Optional[Path]):
    """Connect to Slack over Socket Mode and serve interactions."""
    from jira_bridge.dispatcher import InteractionDispatcher
    from jira_bridge.identity import IdentityResolver, IdentityStore
    from jira_bridge.jira_client import JiraClient
    from jira_bridge.transport import SlackTransport

    level = logging.DEBUG if ctx.obj["verbose"] else None
    logger = setup_logging(level=level, log_file=log_file)

    try:
        config = _loader(ctx).build()
    except BridgeError as e:
        _fail(e)

    store = IdentityStore(config.store.database_path)
    dispatcher = InteractionDispatcher(
        JiraClient(config.jira),
        IdentityResolver(store),
        config.interaction,
    )
    transport = SlackTransport(config.slack, dispatcher)

    console.print("[bold blue]jira-bridge[/bold blue] ⚡️ connecting to Slack...")
    logger.info("Jira site: %s", config.jira.url)

    async def serve():
        try:
            await transport.start()
        finally:
            await transport.stop()

    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")
        sys.exit(130)
    except BridgeError as e:
        _fail(e)
    finally:
        store.close()


@main.command()
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def doctor(ctx: click.Context, json_output: bool):
    """Check credentials, Slack tokens and the identity store."""
    from jira_bridge.health import run_checks

    setup_logging(quiet=True)
    results = {"checks": {}}

    try:
        config = _loader(ctx).build()
    except BridgeError as e:
        if json_output:
            results["checks"]["Configuration"] = {"passed": False, "message": e.message}
            results["all_passed"] = False
            print(json.dumps(results, indent=2))
            sys.exit(get_error_code(e))
        _fail(e)

    if not json_output:
        console.print("[bold blue]jira-bridge Doctor[/bold blue]")
        console.print()

    all_passed = True
    for name, (passed, message) in run_checks(config):
        results["checks"][name] = {"passed": passed, "message": message}
        if not passed:
            all_passed = False
        if not json_output:
            icon = "[green]✓[/green]" if passed else "[red]✗[/red]"
            console.print(f"  {icon} {name}: {message}")

    if json_output:
        results["all_passed"] = all_passed
        print(json.dumps(results, indent=2))
    else:
        console.print()
        if all_passed:
            console.print("[green]All checks passed! jira-bridge is ready.[/green]")
        else:
            console.print("[yellow]Some checks failed.[/yellow]")

    sys.exit(0 if all_passed else 1)


@main.command()
@click.argument("slack_id")
@click.argument("email")
@click.pass_context
def link(ctx: click.Context, slack_id: str, email: str):
    """Link a Slack user to the Jira account with EMAIL."""
    from jira_bridge.identity import IdentityResolver, IdentityStore
    from jira_bridge.jira_client import JiraClient

    setup_logging(quiet=True)
    try:
        config = _loader(ctx).build()
    except BridgeError as e:
        _fail(e)

    store = IdentityStore(config.store.database_path)
    resolver = IdentityResolver(store)

    async def do_link():
        user = await JiraClient(config.jira).find_user(email)
        if user is None:
            return None
        await resolver.link(slack_id, user.account_id, email)
        return user

    try:
        user = asyncio.run(do_link())
    except BridgeError as e:
        _fail(e)
    finally:
        store.close()

    if user is None:
        console.print(f"[red]No Jira user matches {email}[/red]")
        sys.exit(1)
    console.print(f"[green]✓[/green] Linked {slack_id} to {user.display_name} ({user.account_id})")


@main.command()
@click.argument("slack_id")
@click.pass_context
def unlink(ctx: click.Context, slack_id: str):
    """Remove the Jira link of a Slack user."""
    store = _open_store(ctx)
    try:
        removed = store.delete(slack_id)
    finally:
        store.close()

    if removed:
        console.print(f"[green]✓[/green] Unlinked {slack_id}")
    else:
        console.print(f"[yellow]{slack_id} was not linked[/yellow]")


@main.command()
@click.argument("slack_id", required=False)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def whois(ctx: click.Context, slack_id: Optional[str], json_output: bool):
    """Show the Jira account linked to SLACK_ID, or every link."""
    store = _open_store(ctx)
    try:
        if slack_id:
            mapping = store.get(slack_id)
            mappings = [mapping] if mapping else []
        else:
            mappings = store.all()
    finally:
        store.close()

    if json_output:
        print(json.dumps([
            {"slack_id": m.chat_user_id, "jira_account_id": m.tracker_account_id,
             "jira_email": m.tracker_email}
            for m in mappings
        ], indent=2))
        return

    if not mappings:
        console.print(f"[yellow]{slack_id} is not linked[/yellow]" if slack_id
                      else "[dim]No linked users.[/dim]")
        if slack_id:
            sys.exit(1)
        return

    table = Table(title="Linked users")
    table.add_column("Slack ID")
    table.add_column("Jira account")
    table.add_column("Email", style="dim")
    for m in mappings:
        table.add_row(m.chat_user_id, m.tracker_account_id, m.tracker_email or "")
    console.print(table)


@main.group()
def config():
    """Configuration commands."""
    pass


@config.command()
@click.pass_context
def show(ctx: click.Context):
    """Show the resolved configuration with secrets masked."""
    loader = _loader(ctx)
    try:
        bridge = loader.build()
    except BridgeError as e:
        _fail(e)

    def secret(value: str) -> str:
        if not value:
            return "[dim]Not set[/dim]"
        return mask_secrets(value) if mask_secrets(value) != value else value[:5] + "********"

    console.print("[bold blue]jira-bridge Configuration[/bold blue]")
    console.print(f"[dim]Home: {loader.home}[/dim]")
    console.print()

    console.print("[bold]Jira:[/bold]")
    console.print(f"  URL: {bridge.jira.url}")
    console.print(f"  Username: {bridge.jira.username}")
    console.print(f"  API token: {secret(bridge.jira.api_token)}")
    console.print(f"  Timeout: {bridge.jira.timeout}s")
    console.print()

    console.print("[bold]Slack:[/bold]")
    console.print(f"  Bot token: {secret(bridge.slack.bot_token)}")
    console.print(f"  App token: {secret(bridge.slack.app_token)}")
    console.print()

    console.print("[bold]Store:[/bold]")
    console.print(f"  Database: {bridge.store.database_path}")
    console.print()

    console.print("[bold]Interactions:[/bold]")
    console.print(f"  Serialize mutations per issue: {bridge.interaction.serialize_mutations}")
    console.print(f"  Search max results: {bridge.interaction.search_max_results}")


if __name__ == "__main__":
    main()
