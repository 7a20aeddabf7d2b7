"""agentorch command-line interface."""

import asyncio
import json
from collections.abc import Coroutine
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
from rich import print as rprint
from rich.markup import escape
from rich.table import Table

from agentorch import use_cases
from agentorch.errors import GitProviderError
from agentorch.logging import setup_logging
from agentorch.models import MARKETPLACE_TAG, GitFileEntry, GitPROptions, GitSnippet, GitSnippetFile, ProviderType
from agentorch.registry import ProviderRegistry
from agentorch.settings import get_settings
from agentorch.storage import KeyringSecureStorage

app = typer.Typer(help="agentorch: GitHub, GitLab and Bitbucket integration for agent configs", no_args_is_help=True)

T = TypeVar("T")

ProviderArg = Annotated[ProviderType, typer.Argument(help="github, gitlab or bitbucket")]


@app.callback()
def main(
    verbose: Annotated[int, typer.Option("--verbose", "-v", count=True, help="-v for INFO, -vv for DEBUG")] = 0,
) -> None:
    setup_logging(verbose)


# ---------------------------------------------------------------------------
# Registry factory
# ---------------------------------------------------------------------------


def get_registry() -> ProviderRegistry:
    settings = get_settings()
    return ProviderRegistry(
        KeyringSecureStorage(),
        settings.data_dir,
        timeout=settings.http_timeout,
        gitlab_base_url=settings.gitlab_base_url,
    )


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run one core call; provider errors become a one-line message and exit code 1."""
    try:
        return asyncio.run(coro)
    except GitProviderError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(1) from exc


def _label(provider_type: ProviderType) -> str:
    return ProviderRegistry.get_provider_info(provider_type).label


def _print_snippet(snippet: GitSnippet, show_content: bool = False) -> None:
    # Descriptions carry the literal "[agent-orchestrator]" tag, which rich would read as markup
    table = Table(title=escape(f"{snippet.id}: {snippet.description or '(no description)'}"))
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Provider", _label(snippet.provider))
    table.add_row("Owner", snippet.owner_login)
    table.add_row("Public", "yes" if snippet.public else "no")
    table.add_row("Updated", snippet.updated_at or "—")
    table.add_row("URL", snippet.html_url or "—")
    table.add_row("Files", ", ".join(snippet.files) or "none")
    rprint(table)

    if show_content:
        for name, f in snippet.files.items():
            rprint(f"\n[bold]── {escape(name)}[/bold]")
            rprint(escape(f.content) if f.content is not None else "[dim](content not available)[/dim]")


# ---------------------------------------------------------------------------
# Providers & settings
# ---------------------------------------------------------------------------


@app.command("providers")
def providers_cmd() -> None:
    """Show supported providers and how to create their OAuth apps."""
    table = Table(title="Providers")
    table.add_column("Type", style="cyan")
    table.add_column("Label")
    table.add_column("Device Flow")
    table.add_column("OAuth app / App Password", style="dim")

    for provider_type in ProviderType:
        info = ProviderRegistry.get_provider_info(provider_type)
        table.add_row(info.type.value, info.label, "yes" if info.supports_device_flow else "no", info.oauth_app_url)

    rprint(table)


@app.command("settings-show")
def settings_show() -> None:
    """Show app settings and per-provider OAuth settings (no secrets)."""
    settings = get_settings()
    registry = get_registry()
    provider_settings = registry.load_settings()

    table = Table(title="agentorch Configuration")
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("data_dir", str(settings.data_dir))
    table.add_row("http_timeout", str(settings.http_timeout))
    for provider_type in ProviderType:
        entry = provider_settings.entry(provider_type)
        table.add_row(f"{provider_type.value}.clientId", (entry and entry.client_id) or "[dim](not set)[/dim]")
    gitlab = provider_settings.gitlab
    table.add_row("gitlab.baseUrl", (gitlab and gitlab.base_url) or settings.gitlab_base_url)

    rprint(table)


@app.command("set-client-id")
def set_client_id(provider: ProviderArg, client_id: Annotated[str, typer.Argument(help="OAuth App client ID")]) -> None:
    """Store the OAuth App client ID used for Device Flow login."""
    get_registry().set_client_id(provider, client_id)
    rprint(f"[green]✓[/green] {_label(provider)} client ID saved")


@app.command("set-base-url")
def set_base_url(
    base_url: Annotated[str, typer.Argument(help="e.g. https://gitlab.example.com")],
    provider: Annotated[ProviderType, typer.Option("--provider", "-p")] = ProviderType.GITLAB,
) -> None:
    """Point GitLab at a self-hosted instance."""
    try:
        get_registry().set_base_url(provider, base_url)
    except GitProviderError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(1) from exc
    rprint(f"[green]✓[/green] {_label(provider)} base URL set to {base_url}")


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@app.command("accounts")
def accounts() -> None:
    """List providers with a live session."""
    connected = _run(get_registry().get_connected_accounts())
    if not connected:
        rprint("[dim]No connected accounts. Run 'agentorch login' or 'agentorch connect'.[/dim]")
        return

    table = Table(title="Connected Accounts")
    table.add_column("Provider", style="cyan")
    table.add_column("Login")
    table.add_column("Name")
    for account in connected:
        table.add_row(_label(account.type), account.user.login, account.user.name or "—")
    rprint(table)


@app.command("login")
def login(provider: ProviderArg) -> None:
    """Sign in with OAuth Device Flow (GitHub, GitLab)."""
    if not ProviderRegistry.get_provider_info(provider).supports_device_flow:
        typer.echo(
            f"error: {_label(provider)} does not support Device Flow. Use: agentorch connect {provider.value}",
            err=True,
        )
        raise typer.Exit(1)

    registry = get_registry()

    async def flow():
        init = await use_cases.start_device_flow(registry, provider)
        rprint(f"Open [bold]{init.verification_url}[/bold] and enter code [bold cyan]{init.user_code}[/bold cyan]")
        rprint(f"[dim]Waiting for authorization (expires in {int(init.expires_in)}s)...[/dim]")
        return await use_cases.complete_device_flow(registry, provider, init)

    user = _run(flow())
    rprint(f"[green]✓[/green] Connected to {_label(provider)} as [bold]{user.login}[/bold]")


@app.command("connect")
def connect(
    provider: ProviderArg,
    username: Annotated[
        str | None,
        typer.Option("--username", "-u", help="Account username (required for Bitbucket App Passwords)"),
    ] = None,
) -> None:
    """Sign in with a personal access token or Bitbucket App Password."""
    prompt = "App Password" if provider is ProviderType.BITBUCKET else "Personal access token"
    token = typer.prompt(prompt, hide_input=True).strip()
    extra = {"username": username} if username else None
    user = _run(use_cases.connect_with_token(get_registry(), provider, token, extra))
    rprint(f"[green]✓[/green] Connected to {_label(provider)} as [bold]{user.login}[/bold]")


@app.command("logout")
def logout(provider: ProviderArg) -> None:
    """Forget the stored credential for a provider."""
    _run(use_cases.disconnect(get_registry(), provider))
    rprint(f"[green]✓[/green] Disconnected from {_label(provider)}")


# ---------------------------------------------------------------------------
# Repositories, branches, pull requests
# ---------------------------------------------------------------------------


@app.command("repos")
def repos(provider: ProviderArg) -> None:
    """List repositories you are a member of, most recently active first."""
    result = _run(get_registry().get(provider).list_repositories())

    table = Table(title=f"{_label(provider)} Repositories")
    table.add_column("Name", style="cyan")
    table.add_column("Visibility")
    table.add_column("Default branch")
    table.add_column("URL", style="dim")
    for repo in result:
        table.add_row(repo.full_name, "private" if repo.private else "public", repo.default_branch, repo.html_url)
    rprint(table)


@app.command("push")
def push(
    provider: ProviderArg,
    owner: Annotated[str, typer.Argument(help="Owner, group or workspace")],
    repo: Annotated[str, typer.Argument(help="Repository name")],
    files: Annotated[list[Path], typer.Argument(help="Local files to commit", exists=True, dir_okay=False)],
    branch: Annotated[str, typer.Option("--branch", "-b", help="Branch to create or update")],
    base: Annotated[str, typer.Option("--base", help="Branch to start from")] = "main",
    message: Annotated[str, typer.Option("--message", "-m")] = "Add agent configuration",
    dest: Annotated[str, typer.Option("--dest", help="Directory inside the repository")] = "",
) -> None:
    """Commit local files to a branch in one commit, without a local clone."""
    prefix = dest.strip("/")
    entries = [
        GitFileEntry(path=f"{prefix}/{f.name}" if prefix else f.name, content=f.read_text(encoding="utf-8"))
        for f in files
    ]
    _run(get_registry().get(provider).push_files_to_branch(owner, repo, base, branch, entries, message))
    rprint(f"[green]✓[/green] Pushed {len(entries)} file(s) to {owner}/{repo}@{branch}")


@app.command("pr")
def pr(
    provider: ProviderArg,
    owner: Annotated[str, typer.Argument(help="Owner, group or workspace")],
    repo: Annotated[str, typer.Argument(help="Repository name")],
    title: Annotated[str, typer.Option("--title", "-t")],
    head: Annotated[str, typer.Option("--head", help="Source branch")],
    base: Annotated[str, typer.Option("--base", help="Target branch")] = "main",
    body: Annotated[str, typer.Option("--body")] = "",
) -> None:
    """Open a pull request (merge request on GitLab)."""
    options = GitPROptions(owner=owner, repo=repo, title=title, body=body, head=head, base=base)
    result = _run(get_registry().get(provider).create_pull_request(options))
    rprint(f"[green]✓[/green] [bold]#{result.number}[/bold] {result.title}")
    rprint(f"  {result.url}")


# ---------------------------------------------------------------------------
# Marketplace
# ---------------------------------------------------------------------------


@app.command("marketplace")
def marketplace(provider: ProviderArg) -> None:
    """List public snippets tagged for the agent marketplace."""
    snippets = _run(get_registry().get(provider).list_marketplace_snippets())

    table = Table(title=f"{_label(provider)} Marketplace")
    table.add_column("ID", style="cyan")
    table.add_column("Description")
    table.add_column("Owner")
    table.add_column("Files", style="dim")
    for s in snippets:
        table.add_row(s.id, escape(s.description), s.owner_login, ", ".join(s.files))
    rprint(table)


@app.command("snippet")
def snippet(
    provider: ProviderArg,
    snippet_id: Annotated[str, typer.Argument(help="Gist/snippet ID")],
    as_json: Annotated[bool, typer.Option("--json", help="Print the normalized snippet as JSON")] = False,
) -> None:
    """Show one snippet including file contents."""
    result = _run(get_registry().get(provider).get_snippet(snippet_id))
    if as_json:
        typer.echo(json.dumps(result.model_dump(mode="json"), indent=2))
        return
    _print_snippet(result, show_content=True)


@app.command("publish")
def publish(
    provider: ProviderArg,
    description: Annotated[str, typer.Argument(help="Snippet description")],
    files: Annotated[list[Path], typer.Argument(help="Local files to publish", exists=True, dir_okay=False)],
    private: Annotated[bool, typer.Option("--private", help="Publish as a private snippet")] = False,
) -> None:
    """Publish files as a marketplace snippet (tag is added to the description)."""
    if MARKETPLACE_TAG not in description:
        description = f"{description} {MARKETPLACE_TAG}"
    snippet_files = [GitSnippetFile(filename=f.name, content=f.read_text(encoding="utf-8")) for f in files]
    result = _run(get_registry().get(provider).publish_snippet(description, snippet_files, not private))
    rprint(f"[green]✓[/green] Published {result.id}")
    _print_snippet(result)
