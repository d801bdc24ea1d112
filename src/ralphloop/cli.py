"""CLI entrypoints for ralph.

Two Typer apps are exposed as console scripts:

- ``ralph``: run the autonomous iteration loop against the PRD in the
  working directory.
- ``ralph-prd``: one-shot helpers to generate, refine and inspect PRDs and
  to write AGENTS.md guidelines.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table

from . import __version__
from .config import Config, ConfigError
from .controller import IterationController, LoopState
from .conversation import AnthropicCompletionService, ConversationLoop, IterationResult, ServiceError
from .generate import analyze_codebase, generate_and_save_prd, generate_guidelines, refine_prd
from .loop_logger import LoopLogger
from .output import ConsoleReporter
from .prd import PRDParseError, find_prd_file, load_prd, save_prd
from .progress import ProgressStore
from .tools import build_default_registry

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

RUN_EPILOG = """Examples:

  ralph 5                      Run 5 iterations

  ralph 10 --hitl              Run 10 iterations with HITL pauses

  ralph --config my.config.json

Configuration is read from environment variables (ANTHROPIC_API_KEY,
RALPH_MODEL, RALPH_MAX_TOKENS, RALPH_WORKING_DIR, RALPH_PRD_FILE,
RALPH_PROGRESS_FILE, RALPH_VERBOSE), then the config file
(ralph.config.json), then a .env file.

PRD files are auto-detected in this order: plans/prd.json, prd.json,
plans/prd.md, prd.md.
"""

app = typer.Typer(
    name="ralph",
    help="Ralph - autonomous AI coding loop.",
    add_completion=False,
    context_settings=CONTEXT_SETTINGS,
)

prd_app = typer.Typer(
    name="ralph-prd",
    help="Generate, refine and inspect ralph PRDs.",
    add_completion=False,
    no_args_is_help=True,
    context_settings=CONTEXT_SETTINGS,
)

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with Rich handler.

    Args:
        verbose: If True, set DEBUG level; otherwise WARNING.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )
    # SDK request logging is too noisy even in verbose mode
    for name in ("httpx", "httpcore", "anthropic"):
        logging.getLogger(name).setLevel(logging.WARNING)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Ralph Wiggum v{__version__}")
        raise typer.Exit()


def load_config(config_file: Optional[Path], verbose: bool, require_api_key: bool = True) -> Config:
    """Load configuration or exit with the validation errors."""
    try:
        config = Config.from_env(config_file=config_file)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    if verbose:
        config = config.with_overrides(verbose=True)
    setup_logging(config.verbose)

    errors = config.validate()
    if not require_api_key:
        errors = [error for error in errors if "ANTHROPIC_API_KEY" not in error]
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  - {escape(error)}")
        raise typer.Exit(1)
    return config


def confirm_next(iteration: int, result: IterationResult) -> bool:
    """Ask whether to continue after a HITL pause."""
    console.print(f"\n[bold]Iteration {iteration} finished:[/bold] {escape(result.task_description)}")
    if result.files_changed:
        console.print(f"[dim]Files changed:[/dim] {escape(', '.join(result.files_changed))}")
    try:
        return Confirm.ask("Continue to the next iteration?", default=True, console=console)
    except (EOFError, KeyboardInterrupt):
        console.print()
        return False


@app.command(epilog=RUN_EPILOG)
def run(
    iterations: Optional[int] = typer.Argument(
        None,
        help="Number of iterations to run (default: 1).",
        show_default=False,
    ),
    iterations_option: Optional[int] = typer.Option(
        None,
        "--iterations",
        "-n",
        help="Number of iterations to run.",
    ),
    hitl: bool = typer.Option(
        False,
        "--hitl",
        help="Human-in-the-loop mode (pause between iterations).",
    ),
    sandbox: bool = typer.Option(
        False,
        "--sandbox",
        help="Run in sandbox mode (limited permissions).",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file (default: ralph.config.json).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Show model output, tool calls and debug logging.",
    ),
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Ralph Wiggum - Autonomous AI Coding Loop."""
    count = iterations_option if iterations_option is not None else iterations
    if count is None:
        count = 1
    if count < 1:
        console.print("[red]Error:[/red] iterations must be at least 1")
        raise typer.Exit(1)

    if sandbox:
        console.print("[yellow]Note: Sandbox mode is not yet implemented.[/yellow]")
        console.print("[dim]For sandboxed execution, run ralph inside a Docker container.[/dim]")

    config = load_config(config_file, verbose)

    reporter = ConsoleReporter(console=console, verbose=config.verbose)
    run_log = LoopLogger(log_dir=config.log_dir)
    loop = ConversationLoop(
        service=AnthropicCompletionService.from_config(config),
        registry=build_default_registry(config),
        config=config,
        reporter=reporter,
        run_log=run_log,
    )
    controller = IterationController(
        config=config,
        loop=loop,
        confirm=confirm_next,
        run_log=run_log,
        on_iteration_start=reporter.iteration_header,
    )

    console.print("[bold]Ralph Wiggum - Autonomous AI Coding Loop[/bold]")
    console.print(f"[dim]Working dir:[/dim] {escape(str(config.working_dir))}")
    console.print(f"[dim]Model:[/dim] {config.model}")
    console.print(f"[dim]Iterations:[/dim] {count}{' (HITL)' if hitl else ''}")

    try:
        summary = controller.run(count, hitl=hitl)
    except PRDParseError as e:
        run_log.finalize(LoopState.FAILED.value)
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        console.print("[dim]Hint: create one with 'ralph-prd generate \"<description>\"'[/dim]")
        raise typer.Exit(1)

    run_log.finalize(summary.final_state.value)
    reporter.print_summary(summary, run_log.stats)

    if summary.final_state == LoopState.FAILED:
        raise typer.Exit(1)


# =============================================================================
# ralph-prd
# =============================================================================


def _resolve_prd_path(config: Config, prd: Optional[Path]) -> Path:
    if prd is not None:
        return prd
    if config.prd_file is not None:
        return config.prd_file
    found = find_prd_file(config.working_dir)
    if found is None:
        console.print("[red]Error:[/red] No PRD file found.")
        raise typer.Exit(1)
    return found


@prd_app.callback()
def prd_main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Generate, refine and inspect ralph PRDs."""
    pass


@prd_app.command()
def generate(
    description: str = typer.Argument(..., help="What needs to be built."),
    output: Path = typer.Option(
        Path("plans/prd.json"),
        "--output",
        "-o",
        help="Where to write the PRD (.json or .md), relative to the working directory.",
    ),
    analyze: bool = typer.Option(
        False,
        "--analyze",
        help="Include the existing file listing and README as context.",
    ),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    """Generate a PRD from a project description."""
    config = load_config(config_file, verbose)
    output_path = output if output.is_absolute() else config.working_dir / output

    console.print("[dim]Generating PRD...[/dim]")
    try:
        task_list = generate_and_save_prd(
            description,
            AnthropicCompletionService.from_config(config),
            output_path,
            working_dir=config.working_dir,
            analyze=analyze,
        )
    except (ServiceError, PRDParseError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    console.print(f"[green]Generated {len(task_list.items)} tasks[/green] -> {escape(str(output_path))}")


@prd_app.command()
def refine(
    feedback: str = typer.Argument(..., help="How the PRD should change."),
    prd: Optional[Path] = typer.Option(None, "--prd", "-p", help="PRD file (default: auto-detect)."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    """Refine an existing PRD based on feedback."""
    config = load_config(config_file, verbose)
    prd_path = _resolve_prd_path(config, prd)

    try:
        task_list = load_prd(prd_path)
        refined = refine_prd(task_list, feedback, AnthropicCompletionService.from_config(config))
    except (ServiceError, PRDParseError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    save_prd(prd_path, refined)
    console.print(f"[green]Refined PRD ({len(refined.items)} tasks)[/green] -> {escape(str(prd_path))}")


@prd_app.command()
def guidelines(
    description: str = typer.Argument(..., help="Project description."),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Where to write the guidelines (default: the configured guidelines file).",
    ),
    analyze: bool = typer.Option(False, "--analyze", help="Include the existing file listing as context."),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file."),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:
    """Generate an AGENTS.md guidelines file."""
    config = load_config(config_file, verbose)
    output_path = output or config.guidelines_file
    if not output_path.is_absolute():
        output_path = config.working_dir / output_path

    if output_path.exists() and not force:
        console.print(f"[red]Error:[/red] {escape(str(output_path))} already exists (use --force to overwrite)")
        raise typer.Exit(1)

    existing_files = analyze_codebase(config.working_dir) if analyze else None
    try:
        text = generate_guidelines(description, AnthropicCompletionService.from_config(config), existing_files)
    except (ServiceError, PRDParseError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(text, encoding="utf-8")
    console.print(f"[green]Wrote guidelines[/green] -> {escape(str(output_path))}")


@prd_app.command()
def show(
    prd: Optional[Path] = typer.Option(None, "--prd", "-p", help="PRD file (default: auto-detect)."),
    progress: bool = typer.Option(False, "--progress", help="Also show the progress history."),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config file."),
) -> None:
    """Show PRD tasks and their status."""
    config = load_config(config_file, verbose=False, require_api_key=False)
    prd_path = _resolve_prd_path(config, prd)

    try:
        task_list = load_prd(prd_path)
    except PRDParseError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    console.print(f"\n[bold]{escape(task_list.name)}[/bold] ({len(task_list.completed)}/{len(task_list.items)} complete)")
    if task_list.description:
        console.print(f"[dim]{escape(task_list.description)}[/dim]")

    table = Table(show_header=True, header_style="bold", box=None)
    table.add_column("ID", style="dim", width=5)
    table.add_column("Priority", width=8)
    table.add_column("Category", width=14)
    table.add_column("Task")
    table.add_column("Status", width=8)
    for item in task_list.items:
        status = "[green]done[/green]" if item.passes else "[yellow]todo[/yellow]"
        table.add_row(item.id, item.priority, item.category, escape(item.description), status)
    console.print(table)

    if progress:
        store = ProgressStore(config.progress_file)
        console.print()
        console.print(Markdown(store.summarize()))


if __name__ == "__main__":
    app()
