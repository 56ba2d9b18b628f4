"""
CLI entry point for hostgate.

This module provides the Typer-based command-line interface for hostgate.

Commands:
    policy show     Show allow/block lists
    policy check    Classify a domain or command
    policy allow    Add a domain or command to the allowlist
    policy revoke   Remove a domain or command from the allowlist
    policy reset    Reset lists to defaults
    fetch           Make an HTTP request through the gate
    exec            Run a command through the gate
    serve           Expose a file over HTTP until interrupted
    call            Call any tool with JSON arguments
    doctor          Check system environment and dependencies

Exit codes:
    0 success, 1 error, 2 approval required

Architecture Note:
    The CLI is intentionally thin - it parses arguments and delegates to the
    Gateway. The same Gateway is usable programmatically without the CLI.
"""

import json
import logging
import sys
import threading
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from hostgate import __version__
from hostgate.errors import GatewayError
from hostgate.gateway import Gateway
from hostgate.schema import (
    ApprovalStatus,
    GateResult,
    GateStatus,
    GatewaySettings,
    TargetKind,
    load_settings,
)

EXIT_ERROR = 1
EXIT_NEEDS_APPROVAL = 2

app = typer.Typer(
    name="hostgate",
    help="Policy-gated network, command and file access for sandboxed agents.",
    add_completion=False,
    no_args_is_help=True,
)

policy_app = typer.Typer(
    name="policy",
    help="Inspect and edit the allow/block lists.",
    no_args_is_help=True,
)
app.add_typer(policy_app, name="policy")

# Rich console for formatted output; logs go to stderr
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]hostgate[/bold] version {__version__}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Route library logs through rich on stderr."""
    root = logging.getLogger("hostgate")
    root.handlers.clear()
    root.addHandler(
        RichHandler(console=err_console, show_path=False, rich_tracebacks=verbose)
    )
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.propagate = False


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Log policy decisions and debug output to stderr."),
    ] = False,
    settings_path: Annotated[
        Optional[Path],
        typer.Option(
            "--settings",
            "-s",
            help="Path to a settings YAML file.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ] = None,
) -> None:
    """
    hostgate - a policy gate between a sandboxed agent and the host.

    Outbound fetches and command executions need an allowlist entry or an
    explicit approval; built-in blocklists can never be bypassed.
    """
    configure_logging(verbose)
    ctx.obj = {"settings_path": settings_path}


def _settings(ctx: typer.Context) -> GatewaySettings:
    path = (ctx.obj or {}).get("settings_path")
    if path is None:
        return GatewaySettings()
    try:
        return load_settings(path)
    except (OSError, ValidationError, yaml.YAMLError) as e:
        err_console.print(f"[red]Error loading settings: {e}[/red]")
        raise typer.Exit(code=EXIT_ERROR)


def _gateway(ctx: typer.Context) -> Gateway:
    return Gateway(_settings(ctx), working_dir=Path.cwd())


# =============================================================================
# Result display
# =============================================================================


def _output_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _exit_for(result: GateResult) -> None:
    if result.status == GateStatus.SUCCESS:
        raise typer.Exit(code=0)
    if result.status == GateStatus.NEEDS_APPROVAL:
        raise typer.Exit(code=EXIT_NEEDS_APPROVAL)
    raise typer.Exit(code=EXIT_ERROR)


def _display_problem(result: GateResult) -> None:
    """Display a needs_approval or error result."""
    if result.status == GateStatus.NEEDS_APPROVAL:
        console.print(f"[yellow]?[/yellow] Approval required for [bold]{result.identifier}[/bold]")
        console.print(f"  {result.message}")
        console.print("  [dim]Re-run with --approve once or --approve always.[/dim]")
        return

    console.print(f"[red]✗[/red] [{result.error_type}] {result.message}")
    if result.suggestion:
        console.print(f"  [dim]Suggestion: {result.suggestion}[/dim]")
    if result.retry_after_ms is not None:
        console.print(f"  [dim]Retry after {result.retry_after_ms}ms[/dim]")


def _display_generic(result: GateResult) -> None:
    if not result.ok:
        _display_problem(result)
        return
    console.print(f"[green]✓[/green] {result.tool}")
    console.print_json(json.dumps(result.data, default=str))


# =============================================================================
# Policy commands
# =============================================================================


@policy_app.command("show")
def policy_show(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output in JSON format.")] = False,
) -> None:
    """Show the allow/block lists and where they are stored."""
    gateway = _gateway(ctx)
    config = gateway.policy()

    if json_output:
        _output_json({"path": str(gateway.store.path), **config.to_json_dict()})
        return

    console.print(f"[bold]Policy[/bold] [dim]{gateway.store.path}[/dim]")
    console.print()
    for kind in TargetKind:
        table = Table(title=f"{kind.value.capitalize()}s", show_header=True, header_style="bold")
        table.add_column("Allowed", style="green")
        table.add_column("Blocked", style="red")
        allowed, blocked = config.allowed(kind), config.blocked(kind)
        for i in range(max(len(allowed), len(blocked))):
            table.add_row(
                allowed[i] if i < len(allowed) else "",
                blocked[i] if i < len(blocked) else "",
            )
        console.print(table)
        console.print()


@policy_app.command("check")
def policy_check(
    ctx: typer.Context,
    kind: Annotated[TargetKind, typer.Argument(help="domain or command.")],
    target: Annotated[str, typer.Argument(help="URL, host or command to classify.")],
    json_output: Annotated[bool, typer.Option("--json", help="Output in JSON format.")] = False,
) -> None:
    """
    Classify a target without running anything.

    Example:
        $ hostgate policy check domain https://api.github.com/users
    """
    decision = _gateway(ctx).classify(kind, target)

    if json_output:
        _output_json(decision.model_dump(mode="json"))
        return

    style = {
        ApprovalStatus.ALLOWED: "green",
        ApprovalStatus.BLOCKED: "red",
        ApprovalStatus.NEEDS_APPROVAL: "yellow",
    }[decision.status]
    console.print(
        f"[{style}]{decision.status.value}[/{style}] {kind.value} [bold]{decision.identifier}[/bold]"
    )
    console.print(f"  [dim]{decision.reason}[/dim]")


@policy_app.command("allow")
def policy_allow(
    ctx: typer.Context,
    kind: Annotated[TargetKind, typer.Argument(help="domain or command.")],
    target: Annotated[str, typer.Argument(help="URL, host or command to allow.")],
) -> None:
    """Add a domain or command to the allowlist."""
    try:
        added = _gateway(ctx).allow(kind, target)
    except GatewayError as e:
        console.print(f"[red]✗[/red] {e.message}")
        raise typer.Exit(code=EXIT_ERROR)
    except ValueError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=EXIT_ERROR)

    if added:
        console.print(f"[green]✓[/green] Added {kind.value} to allowlist: {target}")
    else:
        console.print(f"[dim]Already in allowlist: {target}[/dim]")


@policy_app.command("revoke")
def policy_revoke(
    ctx: typer.Context,
    kind: Annotated[TargetKind, typer.Argument(help="domain or command.")],
    target: Annotated[str, typer.Argument(help="URL, host or command to revoke.")],
) -> None:
    """Remove a domain or command from the allowlist."""
    try:
        removed = _gateway(ctx).revoke(kind, target)
    except GatewayError as e:
        console.print(f"[red]✗[/red] {e.message}")
        raise typer.Exit(code=EXIT_ERROR)

    if removed:
        console.print(f"[green]✓[/green] Removed {kind.value} from allowlist: {target}")
    else:
        console.print(f"[yellow]Not in allowlist: {target}[/yellow]")
        raise typer.Exit(code=EXIT_ERROR)


@policy_app.command("reset")
def policy_reset(
    ctx: typer.Context,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip the confirmation prompt.")] = False,
) -> None:
    """Reset the allow/block lists to defaults (clears allowlists)."""
    if not yes:
        typer.confirm("Clear all allowlist entries?", abort=True)
    try:
        _gateway(ctx).reset_policy()
    except GatewayError as e:
        console.print(f"[red]✗[/red] {e.message}")
        raise typer.Exit(code=EXIT_ERROR)
    console.print("[green]✓[/green] Policy reset to defaults")


# =============================================================================
# Capability commands
# =============================================================================

ApproveOption = Annotated[
    Optional[str],
    typer.Option("--approve", "-a", help='Approval token: "once" or "always".'),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Output the raw result as JSON.")]


def _parse_headers(values: list[str] | None) -> dict[str, str]:
    headers: dict[str, str] = {}
    for value in values or []:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Header must be 'Name: value', got {value!r}")
        headers[name.strip()] = content.strip()
    return headers


@app.command()
def fetch(
    ctx: typer.Context,
    url: Annotated[str, typer.Argument(help="URL to fetch.")],
    method: Annotated[str, typer.Option("--method", "-X", help="HTTP method.")] = "GET",
    header: Annotated[
        Optional[list[str]],
        typer.Option("--header", "-H", help="Request header 'Name: value' (repeatable)."),
    ] = None,
    data: Annotated[Optional[str], typer.Option("--data", "-d", help="Request body.")] = None,
    timeout_ms: Annotated[Optional[int], typer.Option("--timeout-ms", help="Timeout in ms.")] = None,
    approve: ApproveOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Make an HTTP request through the gate.

    Example:
        $ hostgate fetch https://api.github.com/users/octocat --approve once
    """
    args: dict[str, Any] = {"url": url, "method": method, "headers": _parse_headers(header)}
    if data is not None:
        args["body"] = data
    if timeout_ms is not None:
        args["timeout_ms"] = timeout_ms
    if approve is not None:
        args["approve"] = approve

    result = _gateway(ctx).call("proxy.fetch", args)

    if json_output:
        _output_json(result.to_dict())
    elif result.ok:
        console.print(f"[green]✓[/green] HTTP {result.data['status_code']} {result.data['url']}")
        if result.data["encoding"] == "base64":
            console.print(f"[dim]<binary body, {len(result.data['body'])} base64 chars>[/dim]")
        else:
            console.print(result.data["body"], markup=False, highlight=False)
    else:
        _display_problem(result)
    _exit_for(result)


@app.command("exec")
def exec_command(
    ctx: typer.Context,
    command: Annotated[str, typer.Argument(help="Command to run.")],
    args: Annotated[
        Optional[list[str]],
        typer.Argument(help="Arguments (use -- before arguments starting with '-')."),
    ] = None,
    cwd: Annotated[Optional[Path], typer.Option("--cwd", help="Working directory.")] = None,
    timeout_ms: Annotated[Optional[int], typer.Option("--timeout-ms", help="Timeout in ms.")] = None,
    approve: ApproveOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Run a command through the gate (never via a shell).

    Example:
        $ hostgate exec yt-dlp -- --version --approve once
    """
    call_args: dict[str, Any] = {"command": command, "args": list(args or [])}
    if cwd is not None:
        call_args["cwd"] = str(cwd)
    if timeout_ms is not None:
        call_args["timeout_ms"] = timeout_ms
    if approve is not None:
        call_args["approve"] = approve

    result = _gateway(ctx).call("net.exec", call_args)

    if json_output:
        _output_json(result.to_dict())
    elif result.ok:
        if result.data["stdout"]:
            console.print(result.data["stdout"], end="", markup=False, highlight=False)
        if result.data["stderr"]:
            err_console.print(result.data["stderr"], end="", markup=False, highlight=False)
        style = "green" if result.data["exit_code"] == 0 else "yellow"
        err_console.print(f"[{style}]exit code {result.data['exit_code']}[/{style}]")
    else:
        _display_problem(result)
    _exit_for(result)


@app.command()
def call(
    ctx: typer.Context,
    tool_name: Annotated[str, typer.Argument(help="Tool name, e.g. file.read.")],
    args_json: Annotated[str, typer.Argument(help="Tool arguments as a JSON object.")] = "{}",
    json_output: JsonOption = False,
) -> None:
    """
    Call any registered tool with JSON arguments.

    Example:
        $ hostgate call file.read '{"path": "/tmp/out.txt"}'
    """
    try:
        args = json.loads(args_json)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON arguments: {e}[/red]")
        raise typer.Exit(code=EXIT_ERROR)
    if not isinstance(args, dict):
        console.print("[red]Arguments must be a JSON object[/red]")
        raise typer.Exit(code=EXIT_ERROR)

    result = _gateway(ctx).call(tool_name, args)

    if json_output:
        _output_json(result.to_dict())
    else:
        _display_generic(result)
    _exit_for(result)


@app.command()
def serve(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="File to expose.", resolve_path=True)],
    filename: Annotated[
        Optional[str], typer.Option("--filename", help="Name shown to downloaders.")
    ] = None,
    expiry_minutes: Annotated[
        Optional[float], typer.Option("--expiry-minutes", help="URL lifetime in minutes.")
    ] = None,
    content_type: Annotated[
        Optional[str], typer.Option("--content-type", help="Override MIME type.")
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """
    Expose a file over HTTP (and a tunnel if available) until Ctrl-C.

    Example:
        $ hostgate serve ./render.mp4 --expiry-minutes 30
    """
    args: dict[str, Any] = {"path": str(path)}
    if filename is not None:
        args["filename"] = filename
    if expiry_minutes is not None:
        args["expiry_minutes"] = expiry_minutes
    if content_type is not None:
        args["content_type"] = content_type

    gateway = _gateway(ctx)
    gateway.start()
    try:
        result = gateway.call("file.serve", args)
        if json_output:
            _output_json(result.to_dict())
        elif result.ok:
            data = result.data
            console.print(f"[green]✓[/green] Serving [bold]{path.name}[/bold]")
            if data.get("url"):
                console.print(f"  Public: [cyan]{data['url']}[/cyan]")
            console.print(f"  Local:  [cyan]{data['local_url']}[/cyan]")
            console.print(f"  [dim]Expires {data['expires_at']}[/dim]")
            if data.get("warning"):
                console.print(f"  [yellow]{data['warning']}[/yellow]")
        else:
            _display_problem(result)

        if not result.ok:
            _exit_for(result)

        if not json_output:
            console.print("[dim]Press Ctrl-C to stop.[/dim]")
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            console.print()
    finally:
        gateway.shutdown()


# =============================================================================
# Doctor
# =============================================================================


@app.command()
def doctor(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output results in JSON format.")] = False,
) -> None:
    """
    Check system environment and dependencies.

    Verifies:
    - Python version (3.11+)
    - Tunnel binary (cloudflared) on PATH
    - Policy file readability and directory writability

    Example:
        $ hostgate doctor
    """
    settings = _settings(ctx)
    gateway = Gateway(settings)
    checks = []
    all_ok = True

    # Check 1: Python version
    py_version = sys.version_info
    py_version_str = f"{py_version.major}.{py_version.minor}.{py_version.micro}"
    py_ok = py_version >= (3, 11)
    checks.append({
        "name": "Python version",
        "ok": py_ok,
        "value": py_version_str,
        "message": "OK" if py_ok else "Requires Python 3.11+",
    })
    all_ok = all_ok and py_ok

    # Check 2: Tunnel binary. Optional: serving falls back to local URLs.
    tunnel = gateway.exposure.tunnel
    tunnel_ok = tunnel.is_installed()
    checks.append({
        "name": "Tunnel",
        "ok": tunnel_ok,
        "value": settings.tunnel.binary,
        "message": "Installed" if tunnel_ok else "Not installed (public URLs unavailable)",
        "required": False,
    })

    # Check 3: Policy file
    policy_path = gateway.store.path
    policy_ok = True
    if policy_path.exists():
        try:
            json.loads(policy_path.read_text(encoding="utf-8"))
            policy_message = "Readable"
        except (OSError, ValueError) as e:
            policy_ok = False
            policy_message = f"Unreadable ({e}); defaults will be used"
    else:
        parent = policy_path.parent
        existing = next((p for p in [parent, *parent.parents] if p.exists()), None)
        if existing is not None and existing.is_dir():
            policy_message = "Not found (will be created on first use)"
        else:
            policy_ok = False
            policy_message = f"Cannot create parent directory: {parent}"
    checks.append({
        "name": "Policy file",
        "ok": policy_ok,
        "value": str(policy_path),
        "message": policy_message,
    })
    all_ok = all_ok and policy_ok

    if json_output:
        _output_json({"ok": all_ok, "version": __version__, "checks": checks})
    else:
        console.print(f"[bold]hostgate doctor[/bold] v{__version__}")
        console.print()
        for check in checks:
            if check["ok"]:
                icon = "[green]✓[/green]"
            elif check.get("required") is False:
                icon = "[yellow]![/yellow]"
            else:
                icon = "[red]✗[/red]"
            console.print(f"{icon} {check['name']}: [dim]{check['value']}[/dim] - {check['message']}")
        console.print()
        if all_ok:
            console.print("[green]All checks passed![/green]")
        else:
            console.print("[yellow]Some checks failed. See above for details.[/yellow]")

    raise typer.Exit(code=0 if all_ok else 1)


if __name__ == "__main__":
    app()
