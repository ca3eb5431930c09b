"""Command-line entry point for the local sandbox engine.

Creates a sandbox on the local Docker engine, runs commands in it, and
manages the agent images sandboxes are created from.

Usage::

    localsandbox run "echo hello > a.txt" "cat a.txt"
    localsandbox run --agent claude --env API_KEY=xyz "claude --version"
    localsandbox prebuild
    localsandbox setup
    localsandbox config show
    localsandbox config set prefer_registry_images true
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from docker.errors import DockerException
from rich.console import Console
from rich.table import Table

from localsandbox.runtime.config.settings import SETTINGS_ENV_KEYS, cfg
from localsandbox.runtime.errors import InitializationFailure, SandboxError
from localsandbox.runtime.sandbox.models import AGENT_TYPES
from localsandbox.runtime.sandbox.provider import LocalSandboxProvider
from localsandbox.runtime.sandbox.registry import (
    PrebuildReport,
    prebuild_agent_images,
    setup_user_docker_registry,
)
from localsandbox.runtime.state.local_config import LocalConfigStore

logger = logging.getLogger(__name__)
console = Console()
err_console = Console(stderr=True)

_NOISY_LOGGERS = ("urllib3", "docker")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="localsandbox",
        description="Run commands in local Docker-backed agent sandboxes.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=False,
        help="Enable debug logging.",
    )
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Run commands sequentially in a new sandbox.")
    run.add_argument("commands", nargs="+", help="Shell commands to run, in order.")
    run.add_argument(
        "--agent",
        choices=AGENT_TYPES,
        default=None,
        help="Agent type whose image the sandbox is based on.",
    )
    run.add_argument(
        "-e", "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Environment variable for the sandbox (repeatable).",
    )
    run.add_argument(
        "--workdir",
        default=None,
        help="Working directory inside the sandbox (default: from config).",
    )
    run.add_argument(
        "--background",
        action="store_true",
        default=False,
        help="Report commands as started instead of returning their output.",
    )
    run.add_argument(
        "-q", "--quiet",
        action="store_true",
        default=False,
        help="Skip line-by-line streaming; print output when each command ends.",
    )

    sub.add_parser("prebuild", help="Pre-cache images for every agent type.")
    sub.add_parser("setup", help="Pre-cache and publish agent images per config.")

    config = sub.add_parser("config", help="Show or change local sandbox configuration.")
    config_sub = config.add_subparsers(dest="config_command")
    config_sub.add_parser("show", help="Print the current configuration.")
    config_set = config_sub.add_parser("set", help="Set a configuration value.")
    config_set.add_argument("key")
    config_set.add_argument("value")
    return parser


def _parse_env(pairs: list[str]) -> dict[str, str]:
    envs: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            console.print(f"[red]Error:[/red] expected KEY=VALUE, got {pair!r}")
            sys.exit(2)
        envs[key] = value
    return envs


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s  %(name)s  %(levelname)s  %(message)s",
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


# -- run -------------------------------------------------------------------


async def _run_commands(args: argparse.Namespace) -> int:
    envs = _parse_env(args.env)
    options = {"stream_delay_ms": 0, "stream_delay_step_ms": 0} if args.quiet else {}
    provider = LocalSandboxProvider(**options)
    sandbox = await provider.create(envs=envs, agent_type=args.agent, workdir=args.workdir)
    console.print(f"[bold green]localsandbox[/bold green] {sandbox.sandbox_id}\n")

    def on_stdout(line: str) -> None:
        console.print(line, markup=False, highlight=False)

    def on_stderr(line: str) -> None:
        err_console.print(line, markup=False, highlight=False, style="red")

    exit_code = 0
    try:
        for command in args.commands:
            console.print(f"[dim]$ {command}[/dim]", highlight=False)
            result = await sandbox.commands.run(
                command,
                background=args.background,
                on_stdout=None if args.quiet else on_stdout,
                on_stderr=None if args.quiet else on_stderr,
            )
            if args.quiet or args.background or not result.ok:
                if result.stdout:
                    console.print(result.stdout.rstrip("\n"), markup=False, highlight=False)
                if result.stderr:
                    err_console.print(
                        result.stderr.rstrip("\n"), markup=False, highlight=False, style="red",
                    )
            exit_code = result.exit_code
            if not result.ok:
                console.print(f"[yellow]exit code {exit_code}[/yellow]")
    except InitializationFailure as exc:
        logger.error("[cli.run] %s", exc)
        console.print(f"[red]Error:[/red] {exc}")
        exit_code = 1
    finally:
        await sandbox.kill()
    return exit_code


# -- images ----------------------------------------------------------------


def _print_report(report: PrebuildReport) -> None:
    table = Table(title="Agent images")
    table.add_column("Agent")
    table.add_column("Status")
    table.add_column("Source")
    table.add_column("Image / error")
    for r in report.results:
        status = "[green]ready[/green]" if r.success else "[red]failed[/red]"
        table.add_row(r.agent_type, status, r.source or "-", r.image if r.success else r.error)
    console.print(table)


async def _prebuild(args: argparse.Namespace) -> int:
    store = LocalConfigStore()
    report = await asyncio.to_thread(prebuild_agent_images, store.config)
    _print_report(report)
    return 0 if report.success else 1


async def _setup(args: argparse.Namespace) -> int:
    store = LocalConfigStore()
    config = store.config
    if config.auto_install or not config.push_images:
        report = await asyncio.to_thread(prebuild_agent_images, config)
        _print_report(report)
        if not config.push_images:
            console.print(
                "[dim]push_images is off; images were cached locally only.[/dim]"
            )
            return 0 if report.success else 1

    result = await asyncio.to_thread(setup_user_docker_registry, store)
    if not result.success:
        console.print(f"[red]Error:[/red] {result.error}")
        return 1
    console.print(
        f"[green]Published {sum(1 for u in result.uploads if u.success)} image(s) "
        f"for {store.docker_hub_user}.[/green]"
    )
    return 0


# -- config ----------------------------------------------------------------


def _config_show() -> int:
    store = LocalConfigStore()
    table = Table(title=str(store.path))
    table.add_column("Key")
    table.add_column("Value")
    for key, value in store.to_dict().items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in sorted(value.items())) or "-"
        table.add_row(key, str(value))
    table.add_section()
    table.add_row("SANDBOX_FALLBACK_IMAGE", cfg.fallback_image)
    table.add_row("SANDBOX_WORKDIR", cfg.default_workdir)
    table.add_row("SANDBOX_DEFAULT_PUBLISHER", cfg.default_publisher)
    table.add_row("SANDBOX_BUILD_CONTEXT", str(cfg.build_context))
    table.add_row("data dir", str(cfg.data_dir))
    console.print(table)
    return 0


def _config_set(key: str, value: str) -> int:
    if key in SETTINGS_ENV_KEYS:
        cfg.write_env(**{key: value})
        console.print(f"[green]{key}[/green] written to {cfg.env.path}")
        return 0
    store = LocalConfigStore()
    try:
        store.set_value(key, value)
    except KeyError as exc:
        console.print(f"[red]Error:[/red] {exc.args[0]}")
        return 1
    console.print(f"[green]{key}[/green] saved to {store.path}")
    return 0


async def _run(args: argparse.Namespace) -> int:
    cfg.ensure_dirs()
    try:
        if args.command == "run":
            return await _run_commands(args)
        if args.command == "prebuild":
            return await _prebuild(args)
        if args.command == "setup":
            return await _setup(args)
        if args.command == "config":
            if args.config_command == "set":
                return _config_set(args.key, args.value)
            return _config_show()
    except (SandboxError, DockerException) as exc:
        logger.error("[cli] %s", exc, exc_info=True)
        console.print(f"[red]Error:[/red] {exc}")
        return 1
    return 1


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``localsandbox``."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    _configure_logging(args.verbose)
    try:
        code = asyncio.run(_run(args))
    except KeyboardInterrupt:
        code = 130

    sys.exit(code)


if __name__ == "__main__":
    main()
