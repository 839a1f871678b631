"""Agentbox CLI - run and inspect coding-agent tasks from the terminal."""

import logging
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from agentbox.core.config import settings
from agentbox.core.database import create_tables
from agentbox.core.errors import NotFoundError, RecordAlreadyExistsError, ValidationError
from agentbox.models.task import AGENT_TYPES
from agentbox.services.agent_execution import AgentExecutionService
from agentbox.services.connector import ConnectorService
from agentbox.services.git import GitError, GitService
from agentbox.services.sandbox_registry import sandbox_registry
from agentbox.services.task import TaskService

app = typer.Typer(help="Agentbox CLI")
task_app = typer.Typer(help="Task management commands")
connector_app = typer.Typer(help="MCP connector commands")
sandbox_app = typer.Typer(help="Sandbox commands")
app.add_typer(task_app, name="task")
app.add_typer(connector_app, name="connector")
app.add_typer(sandbox_app, name="sandbox")

console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
):
    """Configure operator logging."""
    logging.basicConfig(
        level="DEBUG" if verbose else settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def fail(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")
    raise typer.Exit(1)


def parse_id(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        fail(f"Invalid ID: {value}")


def resolve_repo(repo: str | None) -> str:
    """Use --repo when given, otherwise the current directory's origin."""
    if repo is not None:
        return GitService.normalize_repo_url(repo)
    try:
        repo_url, _ = GitService.get_current_repo()
    except GitError as e:
        console.print(f"[red]✗[/red] {e}")
        console.print("  Either run from a git repo or specify --repo explicitly")
        raise typer.Exit(1) from None
    return repo_url


def print_result(result: dict) -> None:
    status = result.get("status")
    if status == "completed":
        console.print("[green]✓[/green] Task completed")
        if result.get("branch_name"):
            console.print(f"  Branch: [cyan]{result['branch_name']}[/cyan]")
        if result.get("push_failed"):
            console.print("  [yellow]⚠[/yellow] Changes were committed but not pushed")
    elif status == "stopped":
        console.print("[yellow]■[/yellow] Task stopped")
    else:
        console.print(f"[red]✗[/red] Task {status}")
        if result.get("error"):
            console.print(f"  {result['error']}")


@app.command("init-db")
def init_db():
    """Create database tables."""
    create_tables()
    console.print("[green]✓[/green] Database tables created")


def _create(
    prompt: str,
    repo: str | None,
    agent: str,
    model: str | None,
    install_deps: bool,
    keep_alive: bool,
    max_duration: int | None,
    enqueue: bool,
):
    try:
        return TaskService.create_task(
            prompt=prompt,
            repo_url=resolve_repo(repo),
            selected_agent=agent,
            selected_model=model,
            install_dependencies=install_deps,
            max_duration=max_duration,
            keep_alive=keep_alive,
            enqueue=enqueue,
        )
    except ValidationError as e:
        fail(str(e))


AGENT_HELP = f"Agent backend: {', '.join(AGENT_TYPES)}"


@task_app.command("create")
def create_task(
    prompt: str = typer.Argument(..., help="Natural language prompt for the task"),
    repo: str = typer.Option(None, "--repo", help="Repository (defaults to current git repo)"),
    agent: str = typer.Option("claude", "--agent", "-a", help=AGENT_HELP),
    model: str = typer.Option(None, "--model", "-m", help="Model identifier"),
    install_deps: bool = typer.Option(False, "--install-deps", help="Install dependencies"),
    keep_alive: bool = typer.Option(False, "--keep-alive", help="Keep the sandbox running"),
    max_duration: int = typer.Option(None, "--max-duration", help="Budget in minutes"),
):
    """Create a task and queue it on the worker."""
    task = _create(prompt, repo, agent, model, install_deps, keep_alive, max_duration, True)

    console.print(f"[green]✓[/green] Task created: [bold]{task.id}[/bold]")
    console.print(f"  Status: {task.status}")
    console.print(f"  Repository: {task.repo_url}")
    console.print(f"  Agent: {task.selected_agent}")


@task_app.command("run")
def run_task(
    prompt: str = typer.Argument(..., help="Natural language prompt for the task"),
    repo: str = typer.Option(None, "--repo", help="Repository (defaults to current git repo)"),
    agent: str = typer.Option("claude", "--agent", "-a", help=AGENT_HELP),
    model: str = typer.Option(None, "--model", "-m", help="Model identifier"),
    install_deps: bool = typer.Option(False, "--install-deps", help="Install dependencies"),
    keep_alive: bool = typer.Option(False, "--keep-alive", help="Keep the sandbox running"),
    max_duration: int = typer.Option(None, "--max-duration", help="Budget in minutes"),
):
    """Create a task and execute it in this process."""
    task = _create(prompt, repo, agent, model, install_deps, keep_alive, max_duration, False)
    console.print(f"Running task [bold]{task.id}[/bold] with {task.selected_agent}...")

    print_result(AgentExecutionService.execute_task(task.id))


@task_app.command("list")
def list_tasks(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of tasks to show"),
):
    """List recent tasks."""
    tasks, total = TaskService.list_tasks(limit=limit)

    if not tasks:
        console.print("[yellow]No tasks found[/yellow]")
        return

    table = Table(title=f"Recent Tasks (showing {len(tasks)} of {total})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Status", style="magenta")
    table.add_column("Agent", style="green")
    table.add_column("Prompt", style="white")
    table.add_column("Created", style="dim")

    for task in tasks:
        prompt = task.prompt[:50] + "..." if len(task.prompt) > 50 else task.prompt
        table.add_row(
            str(task.id)[:8],
            task.status,
            task.selected_agent,
            prompt,
            task.created_at.strftime("%Y-%m-%d"),
        )

    console.print(table)


@task_app.command("get")
def get_task(task_id: str = typer.Argument(..., help="Task ID")):
    """Get task details."""
    try:
        task = TaskService.get_task_by_id(parse_id(task_id))
    except NotFoundError as e:
        fail(str(e))

    console.print(f"[bold]Task {task.id}[/bold]")
    console.print(f"  Status: {task.status}")
    console.print(f"  Repository: {task.repo_url}")
    console.print(f"  Agent: {task.selected_agent}")
    if task.selected_model:
        console.print(f"  Model: {task.selected_model}")
    console.print(f"  Created: {task.created_at}")
    if task.completed_at:
        duration = task.completed_at - task.created_at
        console.print(f"  Duration: {duration.total_seconds():.1f}s")

    if task.branch_name:
        console.print(f"  Branch: [cyan]{task.branch_name}[/cyan]")
    if task.sandbox_url:
        console.print(f"  Sandbox: {task.sandbox_url}")
    if task.agent_session_id:
        console.print(f"  Session: {task.agent_session_id}")
    if task.pr_url:
        console.print(f"  PR: {task.pr_url} ({task.pr_status})")

    console.print(f"\n[bold]Prompt:[/bold]\n{task.prompt}")

    if task.error:
        console.print(f"\n[bold red]Error:[/bold red]\n{task.error}")


@task_app.command("messages")
def get_messages(task_id: str = typer.Argument(..., help="Task ID")):
    """Show the conversation of a task."""
    try:
        messages = TaskService.get_task_messages(parse_id(task_id))
    except NotFoundError as e:
        fail(str(e))

    if not messages:
        console.print("[yellow]No messages found[/yellow]")
        return

    for message in messages:
        style = "cyan" if message.role == "user" else "green"
        console.print(f"[bold {style}]{message.role}[/bold {style}]")
        console.print(message.content or "[dim](empty)[/dim]")
        console.print()


@task_app.command("logs")
def get_logs(
    task_id: str = typer.Argument(..., help="Task ID"),
    limit: int = typer.Option(100, "--limit", "-n", help="Number of entries to show"),
):
    """Get task logs."""
    try:
        logs, total = TaskService.get_task_logs(parse_id(task_id), limit=limit)
    except NotFoundError as e:
        fail(str(e))

    if not logs:
        console.print("[yellow]No logs found[/yellow]")
        return

    console.print(f"[bold]Logs for task {task_id}[/bold] ({total} entries)\n")
    styles = {"error": "red", "success": "green", "command": "dim"}
    for entry in logs:
        style = styles.get(entry.level, "white")
        console.print(f"[{style}]{entry.message}[/{style}]", highlight=False)


@task_app.command("stop")
def stop_task(task_id: str = typer.Argument(..., help="Task ID")):
    """Stop a task and its sandbox."""
    try:
        result = AgentExecutionService.stop_task(parse_id(task_id))
    except (NotFoundError, ValidationError) as e:
        fail(str(e))

    console.print("[green]✓[/green] Task stopped")
    console.print(f"  {result.message}")


@task_app.command("continue")
def continue_task(
    task_id: str = typer.Argument(..., help="Task ID"),
    prompt: str = typer.Argument(..., help="Follow-up instruction"),
    wait: bool = typer.Option(False, "--wait", help="Run in this process instead of the worker"),
):
    """Send a follow-up message to a finished task."""
    task_uuid = parse_id(task_id)
    try:
        task = TaskService.get_task_by_id(task_uuid)
    except NotFoundError as e:
        fail(str(e))

    if wait:
        try:
            result = AgentExecutionService.continue_task(task_uuid, prompt)
        except ValidationError as e:
            fail(str(e))
        print_result(result)
        return

    from agentbox.tasks import continue_agent_task

    continue_agent_task.delay(str(task.id), prompt)
    console.print(f"[green]✓[/green] Follow-up queued for task [bold]{task.id}[/bold]")


def parse_env(values: list[str]) -> dict[str, str]:
    env = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            fail(f"Invalid --env value (expected KEY=VALUE): {item}")
        env[key] = value
    return env


@connector_app.command("add")
def add_connector(
    name: str = typer.Argument(..., help="Connector name"),
    type: str = typer.Option("remote", "--type", "-t", help="local or remote"),
    url: str = typer.Option(None, "--url", help="Remote server URL"),
    command: str = typer.Option(None, "--command", "-c", help="Local server command line"),
    env: list[str] = typer.Option([], "--env", "-e", help="KEY=VALUE for local servers"),
    client_id: str = typer.Option(None, "--client-id", help="OAuth client ID"),
    client_secret: str = typer.Option(None, "--client-secret", help="OAuth client secret"),
    description: str = typer.Option(None, "--description", help="What the server does"),
):
    """Register an MCP connector."""
    try:
        connector = ConnectorService.create_connector(
            name=name,
            type=type,
            base_url=url,
            command=command,
            env=parse_env(env),
            oauth_client_id=client_id,
            oauth_client_secret=client_secret,
            description=description,
        )
    except (ValidationError, RecordAlreadyExistsError) as e:
        fail(str(e))

    console.print(f"[green]✓[/green] Connector created: [bold]{connector.id}[/bold]")


@connector_app.command("list")
def list_connectors():
    """List MCP connectors."""
    connectors = ConnectorService.list_connectors()
    if not connectors:
        console.print("[yellow]No connectors found[/yellow]")
        return

    table = Table(title="Connectors")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Type", style="magenta")
    table.add_column("Target", style="dim")
    table.add_column("Status", style="green")

    for connector in connectors:
        target = connector.command if connector.type == "local" else connector.base_url
        table.add_row(
            str(connector.id)[:8], connector.name, connector.type, target or "", connector.status
        )

    console.print(table)


@connector_app.command("disable")
def disable_connector(connector_id: str = typer.Argument(..., help="Connector ID")):
    """Disconnect a connector so agents no longer receive it."""
    try:
        connector = ConnectorService.set_connector_status(parse_id(connector_id), "disconnected")
    except NotFoundError as e:
        fail(str(e))

    console.print(f"[green]✓[/green] Connector {connector.name} disconnected")


@sandbox_app.command("kill")
def kill_sandbox(
    task_id: str = typer.Argument(..., help="Task ID"),
    fallback: bool = typer.Option(
        None, "--fallback/--exact", help="Kill the oldest sandbox when no exact match"
    ),
):
    """Kill the sandbox registered for a task in this process."""
    result = sandbox_registry.kill(task_id, allow_fallback=fallback)
    if not result.success:
        fail(result.message)
    console.print(f"[green]✓[/green] {result.message}")


if __name__ == "__main__":
    app()
