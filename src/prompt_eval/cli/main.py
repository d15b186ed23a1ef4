"""Main CLI entry point for Prompt Eval.

Provides commands to run evaluations and check models:
    prompt-eval run <run-file> [--output-dir DIR] [--loops N]
    prompt-eval models list [--provider P] [--all]
    prompt-eval models test <model-id>
    prompt-eval models compare <prompt> -m <model> [-m <model> ...]
"""

import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

import click

from .. import __version__
from ..evaluation import (
    EvaluationOrchestrator,
    FileResultStore,
    RunConfig,
    RunConfigError,
    RunSummary,
    TerminationPolicy,
    load_run_file,
)
from ..evaluation.events import Event
from ..llm import CallResult, ModelService

EXIT_CANCELLED = 130


def run_async(coro: Any) -> Any:
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_service(config_file: str | None) -> ModelService:
    """Create a model service configured from the environment and an optional file.

    Raises:
        click.ClickException: If the provider config file is missing or invalid
    """
    service = ModelService()
    service.initialize()
    if config_file:
        try:
            service.config_manager.load_from_file(config_file)
        except (FileNotFoundError, ValueError) as e:
            raise click.ClickException(str(e)) from None
    return service


@click.group()
@click.version_option(version=__version__, prog_name="prompt-eval")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Prompt Eval - automated evaluation of system prompt quality.

    Providers are configured through environment variables
    (OPENAI_API_KEY, ANTHROPIC_API_KEY, GOOGLE_API_KEY,
    AZURE_OPENAI_ENDPOINT, OLLAMA_BASE_URL, ...) or a --config-file.

    \b
    Commands:
        prompt-eval run run.yaml
        prompt-eval models list
        prompt-eval models test gpt-4o-mini
        prompt-eval models compare "Hello" -m gpt-4o -m claude-3-5-haiku-latest
    """
    _configure_logging(verbose)


# =============================================================================
# Run Command
# =============================================================================


def _echo_event(event: Event, output_format: str) -> None:
    if output_format == "json":
        click.echo(event.model_dump_json(exclude_none=True))
        return

    if event.type == "update":
        progress = f"{event.progress:5.1f}%" if event.progress is not None else "  ... "
        click.echo(f"[{progress}] {event.active_task_message}")
    elif event.type == "state_update":
        if event.system_prompt is not None:
            lines = event.system_prompt.strip().splitlines()
            first_line = lines[0] if lines else ""
            click.echo(f"  System prompt for {event.framework_name}: {first_line[:80]}")
        if event.model_answer is not None:
            click.echo(f"  Answer to {event.question_id}: {event.model_answer[:80]!r}")
        if event.score is not None:
            click.echo(f"  Score: {event.score}/{event.max_score}")
    elif event.type == "error":
        click.echo(f"Error: {event.message}")
    else:
        click.echo(event.message)


def _echo_summary(summary: RunSummary) -> None:
    if not summary.results:
        return
    click.echo("")
    click.echo(f"{'Loop':<6} {'Framework':<30} {'Score':>12}")
    click.echo("-" * 50)
    for result in summary.results:
        score = "skipped" if result.skipped else f"{result.total_score}/{result.max_total}"
        click.echo(f"{result.loop:<6} {result.framework:<30} {score:>12}")
    if summary.run_id:
        click.echo(f"\nRun id: {summary.run_id}")


async def _run_evaluation(
    service: ModelService, store: FileResultStore, config: RunConfig, output_format: str
) -> RunSummary:
    orchestrator = EvaluationOrchestrator(service, store)
    handle = orchestrator.start(config)

    # Ctrl-C cancels cooperatively at the next stage boundary
    loop = asyncio.get_running_loop()
    handled = False
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, handle.cancel)
        handled = True

    try:
        async for event in handle.events:
            _echo_event(event, output_format)
        return await handle.wait()
    finally:
        if handled:
            loop.remove_signal_handler(signal.SIGINT)
        await service.aclose()


@cli.command()
@click.argument("run_file", type=click.Path(exists=False))
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False),
    help="Parent directory for run results (default: ./output/result)",
)
@click.option("--loops", "-n", type=int, help="Run exactly N loops (overrides the run file)")
@click.option("--config-file", type=click.Path(exists=False), help="YAML provider config file")
@click.option(
    "--format", "-f", "output_format", type=click.Choice(["text", "json"]), default="text"
)
def run(
    run_file: str,
    output_dir: str | None,
    loops: int | None,
    config_file: str | None,
    output_format: str,
) -> None:
    """Run an evaluation described by a YAML run file.

    Exits 0 when the run completes, 130 when cancelled with Ctrl-C and 1 on
    error. Results already written stay on disk in every case.

    \b
    Examples:
        prompt-eval run run.yaml
        prompt-eval run run.yaml --loops 3 --output-dir results
        prompt-eval run run.yaml --format json
    """
    try:
        config = load_run_file(run_file)
    except RunConfigError as e:
        click.echo(f"Error: {e}")
        sys.exit(1)

    if loops is not None:
        if loops < 1:
            click.echo("Error: --loops must be at least 1")
            sys.exit(1)
        config = config.model_copy(
            update={"termination": TerminationPolicy(mode="loop", loop_count=loops)}
        )

    service = _build_service(config_file)
    store = FileResultStore(Path(output_dir) if output_dir else None)
    summary = run_async(_run_evaluation(service, store, config, output_format))

    if output_format == "text":
        _echo_summary(summary)

    if summary.status == "cancelled":
        sys.exit(EXIT_CANCELLED)
    if summary.status == "error":
        sys.exit(1)


# =============================================================================
# Model Commands
# =============================================================================


@cli.group()
def models() -> None:
    """Inspect and check models.

    \b
    Commands:
        prompt-eval models list
        prompt-eval models test <model-id>
        prompt-eval models compare <prompt> -m <model-id> ...
    """
    pass


def _format_pricing(model: Any) -> str:
    if model.pricing is None:
        return "-"
    return f"{model.pricing.input}/{model.pricing.output}"


@models.command("list")
@click.option("--provider", "-p", help="Filter by provider id")
@click.option("--all", "show_all", is_flag=True, help="Include unconfigured providers")
@click.option("--config-file", type=click.Path(exists=False), help="YAML provider config file")
@click.option(
    "--format", "-f", "output_format", type=click.Choice(["text", "json"]), default="text"
)
def models_list(
    provider: str | None, show_all: bool, config_file: str | None, output_format: str
) -> None:
    """List models.

    By default only models whose provider is configured are shown.

    \b
    Examples:
        prompt-eval models list
        prompt-eval models list --provider openai
        prompt-eval models list --all --format json
    """
    service = _build_service(config_file)
    if show_all:
        found = service.registry.all_models()
        if provider:
            found = [m for m in found if m.provider == provider]
    elif provider:
        found = service.models_by_provider(provider)
    else:
        found = service.available_models()

    if not found:
        click.echo("No models available.")
        if not show_all:
            click.echo("Configure a provider (e.g. export OPENAI_API_KEY=...) or use --all.")
        return

    if output_format == "json":
        click.echo(json.dumps([m.model_dump(mode="json") for m in found], indent=2))
        return

    click.echo(f"{'ID':<40} {'Provider':<14} {'Context':>10} {'Price/1K in/out':>18}")
    click.echo("-" * 85)
    for m in found:
        model_id = f"{m.provider}:{m.id}"
        click.echo(
            f"{model_id:<40} {m.provider:<14} {m.capabilities.max_tokens:>10} "
            f"{_format_pricing(m):>18}"
        )


def _echo_call_result(label: str, result: CallResult) -> None:
    if result.success and result.response is not None:
        click.echo(f"{label}: OK ({result.duration_seconds:.2f}s)")
        click.echo(f"  {result.response.content.strip()[:200]}")
        if result.usage is not None:
            cost = f", cost ${result.usage.cost:.6f}" if result.usage.cost is not None else ""
            click.echo(f"  Tokens: {result.usage.total_tokens}{cost}")
    else:
        message = result.error.message if result.error else "unknown error"
        click.echo(f"{label}: FAILED ({message})")


@models.command("test")
@click.argument("model_id")
@click.option("--prompt", default='Hello, respond with "OK"', help="Test prompt")
@click.option("--config-file", type=click.Path(exists=False), help="YAML provider config file")
def models_test(model_id: str, prompt: str, config_file: str | None) -> None:
    """Check connectivity with one short round-trip.

    \b
    Examples:
        prompt-eval models test gpt-4o-mini
        prompt-eval models test anthropic:claude-3-5-haiku-latest
    """
    service = _build_service(config_file)

    async def check() -> CallResult:
        try:
            return await service.test_model(model_id, prompt)
        finally:
            await service.aclose()

    result = run_async(check())
    _echo_call_result(model_id, result)
    if not result.success:
        sys.exit(1)


@models.command("compare")
@click.argument("prompt")
@click.option("--model", "-m", "model_ids", multiple=True, required=True, help="Model id")
@click.option("--config-file", type=click.Path(exists=False), help="YAML provider config file")
def models_compare(prompt: str, model_ids: tuple[str, ...], config_file: str | None) -> None:
    """Send the same prompt to several models.

    \b
    Examples:
        prompt-eval models compare "Summarize HTTP/2" -m gpt-4o -m gemini-2.5-flash
    """
    service = _build_service(config_file)

    async def compare() -> list[tuple[str, CallResult]]:
        try:
            return await service.compare_models(list(model_ids), prompt)
        finally:
            await service.aclose()

    results = run_async(compare())
    for model_id, result in results:
        _echo_call_result(model_id, result)
    if not any(result.success for _, result in results):
        sys.exit(1)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
