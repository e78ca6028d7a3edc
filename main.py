"""
OneLLM - Main Entry Point

CLI for trying models across providers: blocking and streaming
completions, routing inspection, and the local Ollama demo.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from onellm import LLMRequest, OneLLM, OneLLMError, Provider
from onellm.client import API_KEY_ENV, OneLLMBuilder
from onellm.observability.logging_config import configure_logging

load_dotenv()

app = typer.Typer(
    name="onellm",
    help="OneLLM - one client for many LLM backends",
)
console = Console()
logger = logging.getLogger("onellm.cli")

DEMO_MODEL = "local/gemma3:270m"
DEMO_PROMPT = "write a code in python to add two numbers."


@app.callback()
def setup(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    configure_logging(level=logging.DEBUG if verbose else logging.WARNING)


def _builder(settings: Optional[Path]) -> OneLLMBuilder:
    builder = OneLLM.builder()
    if settings is not None:
        return builder.from_settings(settings)
    return builder.from_env()


def _build(settings: Optional[Path]) -> OneLLM:
    """Build a client, with a friendly error on bad configuration."""
    try:
        return _builder(settings).build()
    except (OneLLMError, FileNotFoundError) as e:
        _fail("Configuration Error", e)


def _fail(title: str, error: Exception):
    console.print(Panel(
        f"[red]{type(error).__name__}:[/] {error}",
        title=f"⚠ {title}",
        border_style="red",
    ))
    raise typer.Exit(code=1)


def _request(
    model: str,
    prompt: str,
    system: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> LLMRequest:
    try:
        return LLMRequest(
            model=model,
            user=prompt,
            system=system,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except ValueError as e:
        _fail("Invalid Request", e)


def _print_usage(response) -> None:
    console.print(
        f"\n[dim]{response.provider.value}/{response.model} · "
        f"{response.usage.input_tokens} in / {response.usage.output_tokens} out · "
        f"{response.latency_ms:.0f} ms · {response.attempts} attempt(s)[/]"
    )


SettingsOption = typer.Option(None, "--settings", "-s", help="YAML settings file")


@app.command()
def providers(settings: Optional[Path] = SettingsOption):
    """List configured providers."""
    with _build(settings) as llm:
        configured = llm.list_providers()

    table = Table(title="OneLLM Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Status", style="white")
    table.add_column("Credentials", style="dim")

    for provider in Provider:
        status = "[green]configured[/]" if provider in configured else "[dim]-[/]"
        env = " / ".join(API_KEY_ENV.get(provider, ("no key needed",)))
        table.add_row(provider.value, status, env)

    console.print(table)


@app.command()
def route(
    model: str = typer.Argument(..., help="Model string, e.g. 'local/mistral'"),
    settings: Optional[Path] = SettingsOption,
):
    """Show which provider and native model a model string resolves to."""
    with _build(settings) as llm:
        try:
            resolved = llm.route(model)
        except OneLLMError as e:
            _fail("Routing Error", e)
        configured = resolved.provider in llm.list_providers()

    console.print(Panel(
        f"Provider:  [cyan]{resolved.provider.value}[/]\n"
        f"Model:     [bold]{resolved.model}[/]\n"
        f"Rule:      {resolved.rule.display}\n"
        f"Configured: {'[green]yes[/]' if configured else '[red]no[/]'}",
        title=f"Route: {model}",
    ))


@app.command()
def complete(
    model: str = typer.Argument(..., help="Model string"),
    prompt: str = typer.Argument(..., help="User prompt"),
    system: Optional[str] = typer.Option(None, help="System prompt"),
    temperature: Optional[float] = typer.Option(None, help="Sampling temperature"),
    max_tokens: Optional[int] = typer.Option(None, help="Max output tokens"),
    settings: Optional[Path] = SettingsOption,
):
    """Run a blocking completion."""
    request = _request(model, prompt, system, temperature, max_tokens)
    with _build(settings) as llm:
        try:
            response = llm.complete(request)
        except OneLLMError as e:
            _fail("Completion Failed", e)

    console.print(response.content)
    _print_usage(response)


@app.command()
def stream(
    model: str = typer.Argument(..., help="Model string"),
    prompt: str = typer.Argument(..., help="User prompt"),
    system: Optional[str] = typer.Option(None, help="System prompt"),
    settings: Optional[Path] = SettingsOption,
):
    """Run a streaming completion, printing chunks as they arrive."""
    request = _request(model, prompt, system)
    _stream(request, settings)


@app.command()
def demo():
    """Ask a small local Ollama model for a snippet of code."""
    request = _request(DEMO_MODEL, DEMO_PROMPT)
    with _build_demo() as llm:
        names = ", ".join(sorted(p.value for p in llm.list_providers()))
        console.print(f"Configured providers: {names}")
        try:
            response = llm.complete(request)
        except OneLLMError as e:
            _fail("Completion Failed", e)

    console.print(response.content)
    console.print("Done.")


def _build_demo() -> OneLLM:
    try:
        return OneLLM.builder().ollama().build()
    except OneLLMError as e:
        _fail("Configuration Error", e)


def _stream(request: LLMRequest, settings: Optional[Path] = None):
    llm = _build(settings)
    final = None
    try:
        for chunk in llm.stream(request):
            if chunk.done:
                final = chunk
            else:
                console.print(chunk.text, end="", soft_wrap=True, highlight=False)
    except OneLLMError as e:
        console.print()
        _fail("Stream Failed", e)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/]")
        raise typer.Exit(code=130)
    finally:
        llm.close()

    console.print()
    if final is not None and final.usage is not None:
        console.print(
            f"[dim]{final.usage.input_tokens} in / {final.usage.output_tokens} out"
            f"{f' · {final.finish_reason}' if final.finish_reason else ''}[/]"
        )


if __name__ == "__main__":
    app()
