"""
Root Typer application for the node-spine CLI.

    nodespine launch --container-id ... --image centos:7 [--dry-run]
    nodespine signal --pid 4242 --signal TERM ...
"""

from __future__ import annotations

import json

import typer
from rich.console import Console

from nodespine.core.config import get_settings
from nodespine.core.errors import ContainerExecutionError, NodeSpineError
from nodespine.core.logging import configure_logging
from nodespine.execution.runtimes import (
    ENV_DOCKER_CONTAINER_IMAGE,
    ENV_DOCKER_CONTAINER_RUN_OVERRIDE_DISABLE,
    DockerContainerRuntime,
    LaunchContext,
    SignalContext,
)

app = typer.Typer(
    name="nodespine",
    help="Launch and signal containers through container-executor.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)

DRY_RUN_COMMAND_FILE = "<docker-command-file>"


def _version_callback(value: bool) -> None:
    if value:
        from nodespine import __version__

        typer.echo(f"nodespine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """node-spine: container runtimes for a node agent."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_format == "json")


# ── Helpers ──────────────────────────────────────────────────────────────


def _parse_env(pairs: list[str] | None) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {pair!r}", param_hint="--env")
        env[key] = value
    return env


def _printable(text: str) -> str:
    return text.encode("utf-8", errors="surrogateescape").decode("utf-8", errors="replace")


def _fail(exc: NodeSpineError) -> None:
    err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): ", end="")
    err_console.print(exc.message, markup=False, highlight=False, soft_wrap=True)
    if isinstance(exc, ContainerExecutionError) and exc.exit_code is not None:
        err_console.print(f"  exit code: {exc.exit_code}", highlight=False)
        if exc.output:
            err_console.print(f"  stdout: {_printable(exc.output)}", markup=False, highlight=False, soft_wrap=True)
        if exc.error_output:
            err_console.print(f"  stderr: {_printable(exc.error_output)}", markup=False, highlight=False, soft_wrap=True)
    raise typer.Exit(code=1)


def _runtime() -> DockerContainerRuntime:
    runtime = DockerContainerRuntime()
    runtime.initialize(get_settings())
    return runtime


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("launch")
def launch(
    container_id: str = typer.Option(..., "--container-id"),
    app_id: str = typer.Option(..., "--app-id"),
    run_as_user: str = typer.Option(..., "--run-as-user"),
    user: str = typer.Option(..., "--user", help="Requesting (application) user."),
    work_dir: str = typer.Option(..., "--work-dir"),
    script_path: str = typer.Option(..., "--script-path"),
    tokens_path: str = typer.Option(..., "--tokens-path"),
    pid_file: str = typer.Option(..., "--pid-file"),
    local_dir: list[str] | None = typer.Option(None, "--local-dir"),
    log_dir: list[str] | None = typer.Option(None, "--log-dir"),
    resources_options: str = typer.Option("cgroups=none", "--resources-options"),
    tc_command_file: str | None = typer.Option(None, "--tc-command-file"),
    image: str | None = typer.Option(None, "--image", help=f"Shortcut for {ENV_DOCKER_CONTAINER_IMAGE}."),
    no_override: bool = typer.Option(False, "--no-override", help="Keep the image's own entrypoint."),
    env: list[str] | None = typer.Option(None, "--env", "-e", help="Launch env KEY=VALUE."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the commands; launch nothing."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Launch a docker container through container-executor."""
    environment = _parse_env(env)
    if image:
        environment[ENV_DOCKER_CONTAINER_IMAGE] = image
    if no_override:
        environment[ENV_DOCKER_CONTAINER_RUN_OVERRIDE_DISABLE] = "true"

    try:
        ctx = LaunchContext(
            container_id=container_id,
            app_id=app_id,
            run_as_user=run_as_user,
            user=user,
            container_work_dir=work_dir,
            local_dirs=local_dir or [],
            log_dirs=log_dir or [],
            resources_options=resources_options,
            container_script_path=script_path,
            tokens_path=tokens_path,
            pid_file_path=pid_file,
            tc_command_file=tc_command_file,
            environment=environment,
        )
        runtime = _runtime()
        if dry_run:
            command = runtime.build_run_command(ctx)
            invocation = runtime.build_launch_invocation(ctx, DRY_RUN_COMMAND_FILE)
            helper_argv = [get_settings().container_executor_path, *invocation.to_args()]
            if json_out:
                console.print_json(json.dumps({
                    "docker": command.arguments(),
                    "helper": helper_argv,
                }))
            else:
                console.print(f"docker {command.command_line()}", markup=False, highlight=False, soft_wrap=True)
                console.print(f"helper {' '.join(helper_argv)}", markup=False, highlight=False, soft_wrap=True)
            return
        runtime.launch_container(ctx)
    except NodeSpineError as exc:
        _fail(exc)
        return

    console.print(f"[green]Launched[/green] {container_id}")


@app.command("signal")
def signal(
    pid: str = typer.Option(..., "--pid"),
    signal_name: str = typer.Option("TERM", "--signal", "-s", help="Name (TERM, KILL) or number."),
    run_as_user: str = typer.Option(..., "--run-as-user"),
    user: str = typer.Option(..., "--user"),
    container_id: str = typer.Option("unknown", "--container-id"),
) -> None:
    """Deliver a signal to a container process."""
    try:
        ctx = SignalContext(
            container_id=container_id,
            run_as_user=run_as_user,
            user=user,
            pid=pid,
            signal=signal_name,
        )
        _runtime().signal_container(ctx)
    except NodeSpineError as exc:
        _fail(exc)
        return

    console.print(f"[green]Signalled[/green] {pid} with {ctx.signal.name}")


if __name__ == "__main__":
    app()
