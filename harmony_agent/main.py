"""Command line entry point for Harmony Agent."""

import asyncio
import json
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from harmony_agent.agent import Agent, AgentRequest
from harmony_agent.config import Config, set_config
from harmony_agent.emitter import (
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_MESSAGE,
    EVENT_REASONING,
    EVENT_TOOL_CALL,
    EVENT_TOOL_RESULT,
)
from harmony_agent.instructions import get_preset, list_presets
from harmony_agent.logging import configure_logging, log
from harmony_agent.tools.mcp import ensure_mcp_initialized, shutdown_mcp

app = typer.Typer(help="Harmony Agent - tool-calling agent loop over MCP servers")
console = Console()


def _load_config(config: str, verbose: bool = False) -> Config:
    if config:
        try:
            cfg = Config.from_yaml(Path(config))
        except Exception as e:
            console.print(f"[red]Failed to load config {config}: {e}[/red]")
            cfg = Config.load()
    else:
        cfg = Config.load()
    if verbose:
        cfg.logging.verbose = True
    set_config(cfg)
    configure_logging(cfg)
    return cfg


@app.command()
def serve(
    host: str = typer.Option("", "--host", help="Bind address"),
    port: int = typer.Option(0, "--port", help="Bind port"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Run the HTTP server."""
    from harmony_agent.web_server import run_web_server

    cfg = _load_config(config, verbose)
    if host:
        cfg.server.host = host
    if port:
        cfg.server.port = port

    try:
        run_web_server(cfg)
    except Exception as e:
        log.error("Fatal error", error=str(e))
        sys.exit(1)


async def _run_chat(cfg: Config, request: AgentRequest, show_reasoning: bool) -> bool:
    manager = await ensure_mcp_initialized(cfg.mcp) if request.enabled_mcp_servers else None
    agent = Agent(cfg, executor=manager)
    ok = True
    last_reasoning: dict[str, str] = {}
    try:
        async for event in agent.stream(request):
            data = event.data
            if event.event == EVENT_MESSAGE:
                console.print(data.get("delta", ""), end="", markup=False, highlight=False)
            elif event.event == EVENT_REASONING:
                if not show_reasoning:
                    continue
                item_id = data.get("item_id", "")
                content = data.get("content", "")
                # Reasoning events carry the cumulative text; print only what is new
                previous = last_reasoning.get(item_id, "")
                new_text = content[len(previous):] if content.startswith(previous) else content
                last_reasoning[item_id] = content
                console.print(new_text, end="", style="dim", markup=False, highlight=False)
            elif event.event == EVENT_TOOL_CALL:
                console.print(
                    Panel(
                        json.dumps(data.get("args", {}), ensure_ascii=False, indent=2),
                        title=f"tool call: {data.get('name')}",
                        border_style="cyan",
                    )
                )
            elif event.event == EVENT_TOOL_RESULT:
                result = data.get("result")
                text = result if isinstance(result, str) else json.dumps(result, ensure_ascii=False, default=str)
                console.print(
                    Panel(text[:2000], title=f"tool result: {data.get('name')}", border_style="green")
                )
            elif event.event == EVENT_ERROR:
                ok = False
                console.print(f"\n[red]Error: {data.get('message')}[/red]")
            elif event.event == EVENT_DONE:
                console.print()
    finally:
        await agent.close()
        if manager is not None:
            await shutdown_mcp()
    return ok


@app.command()
def chat(
    prompt: str = typer.Argument(..., help="User message"),
    developer_prompt: str = typer.Option("", "--developer-prompt", "-d", help="Developer instructions"),
    preset: str = typer.Option("", "--preset", help="Developer prompt preset id"),
    reasoning: str = typer.Option("", "--reasoning", "-r", help="Reasoning level (low, medium, high)"),
    server: list[str] = typer.Option([], "--server", "-s", help="Enable an MCP server (repeatable)"),
    show_reasoning: bool = typer.Option(True, "--show-reasoning/--hide-reasoning", help="Print reasoning"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Run one prompt through the agent and print its events."""
    cfg = _load_config(config, verbose)

    if preset and not developer_prompt:
        found = get_preset(preset)
        if found is None:
            console.print(f"[red]Unknown preset: {preset}[/red]")
            raise typer.Exit(code=2)
        developer_prompt = found.prompt

    request = AgentRequest(
        messages=[{"role": "user", "content": prompt}],
        developer_prompt=developer_prompt or None,
        reasoning_level=reasoning or None,
        enabled_mcp_servers=server or None,
    )
    try:
        ok = asyncio.run(_run_chat(cfg, request, show_reasoning))
    except KeyboardInterrupt:
        sys.exit(130)
    if not ok:
        raise typer.Exit(code=1)


@app.command()
def presets() -> None:
    """List developer prompt presets."""
    table = Table(title="Developer prompt presets")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Description")
    for item in list_presets():
        table.add_row(item.id, item.name, item.category, item.description)
    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    from harmony_agent import __version__
    console.print(f"Harmony Agent v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
