from __future__ import annotations

import logging
from pathlib import Path

import typer
import uvicorn
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from adapters.filesystem.graph_repository import FileSystemGraphRepository
from adapters.filesystem.json_utils import dump_json_bytes
from app.compiler_wiring import build_compiler, build_script_repository
from app.config import AppSettings, load_settings
from domain.errors import DialogueConversionError
from domain.models import GraphDocument
from domain.services.flag_usage import collect_flag_usage
from domain.services.graph_analysis import summarize_graph
from domain.services.graph_equivalence import graphs_equivalent
from domain.services.parse_script import ScriptParser

app = typer.Typer(no_args_is_help=True)
convert_app = typer.Typer(no_args_is_help=True)
app.add_typer(convert_app, name="convert")
console = Console()
err_console = Console(stderr=True)

GRAPH_SUFFIXES = {".json"}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="YAML config file."),
    log_level: str | None = typer.Option(None, "--log-level", help="Override configured level."),
) -> None:
    try:
        settings = load_settings(config)
    except (FileNotFoundError, ValidationError) as exc:
        err_console.print(f"[red]Invalid configuration:[/] {escape(str(exc))}")
        raise typer.Exit(code=1) from exc
    if log_level:
        level = log_level.upper()
        if not isinstance(logging.getLevelName(level), int):
            err_console.print(f"[red]Unknown log level:[/] {escape(log_level)}")
            raise typer.Exit(code=1)
        settings = settings.model_copy(update={"log_level": level})
    configure_logging(settings.log_level)
    ctx.obj = settings


def _settings(ctx: typer.Context) -> AppSettings:
    settings = ctx.obj
    return settings if isinstance(settings, AppSettings) else load_settings()


def _fail(message: str, exc: Exception) -> typer.Exit:
    err_console.print(f"[red]{message}:[/] {escape(str(exc))}")
    return typer.Exit(code=1)


def _report_flags(document: GraphDocument) -> None:
    usage = collect_flag_usage(document)
    if usage.read or usage.written:
        console.print(f"Flags: {len(usage.read)} read, {len(usage.written)} written")
    missing = usage.never_written()
    if missing:
        err_console.print(f"[yellow]Flags read but never set:[/] {escape(', '.join(missing))}")


@app.command("export")
def export_script(
    ctx: typer.Context,
    graph_path: Path = typer.Argument(..., help="Graph document JSON file."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Script file to write."),
    start: str | None = typer.Option(None, "--start", help="Start node id override."),
) -> None:
    settings = _settings(ctx)
    compiler = build_compiler(settings)
    try:
        document = FileSystemGraphRepository().load_by_path(graph_path)
        script = compiler.export_script(document, start_node_id=start)
    except (OSError, ValueError, DialogueConversionError) as exc:
        raise _fail("Export failed", exc) from exc

    if output is None:
        typer.echo(script, nl=False)
        return
    build_script_repository(settings).save(script, output)
    console.print(f"[green]Wrote[/] {output}")


@app.command("import")
def import_script(
    ctx: typer.Context,
    script_path: Path = typer.Argument(..., help="Script file to parse."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Graph JSON file to write."),
    title: str | None = typer.Option(None, "--title", help="Document title."),
) -> None:
    settings = _settings(ctx)
    compiler = build_compiler(settings)
    try:
        text = build_script_repository(settings).load_by_path(script_path)
        parsed = compiler.import_parsed(text, title=title)
    except (OSError, ValueError, DialogueConversionError) as exc:
        raise _fail("Import failed", exc) from exc

    for diagnostic in parsed.undefined_jumps:
        err_console.print(f"[yellow]Warning:[/] {diagnostic}")
    if output is None:
        typer.echo(dump_json_bytes(parsed.document.to_payload()).decode("utf-8"), nl=False)
        return
    FileSystemGraphRepository().save(parsed.document, output)
    console.print(f"[green]Wrote[/] {output}")


@app.command("layout")
def layout(
    ctx: typer.Context,
    graph_path: Path = typer.Argument(..., help="Graph document JSON file."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Defaults to the input file."),
    pinned: list[str] = typer.Option([], "--pin", help="Node id that must not move."),
) -> None:
    compiler = build_compiler(_settings(ctx))
    repo = FileSystemGraphRepository()
    try:
        document = repo.load_by_path(graph_path)
    except (OSError, ValueError) as exc:
        raise _fail("Layout failed", exc) from exc
    resolved = compiler.resolve_layout(document, pinned=pinned)
    target = output or graph_path
    repo.save(resolved, target)
    console.print(f"[green]Wrote[/] {target}")


@convert_app.command("to-script")
def convert_to_script(
    ctx: typer.Context,
    input_dir: Path = typer.Option(Path("data/graphs"), help="Directory with graph JSON files."),
    output_dir: Path = typer.Option(Path("data/scripts"), help="Directory to write scripts."),
) -> None:
    settings = _settings(ctx)
    compiler = build_compiler(settings)
    script_repo = build_script_repository(settings)
    graph_repo = FileSystemGraphRepository()

    paths = graph_repo.list_paths(input_dir)
    if not paths:
        console.print(f"[yellow]No graph files found in {input_dir}[/]")
        raise typer.Exit(code=0)

    failed = 0
    for path in paths:
        try:
            script = compiler.export_script(graph_repo.load_by_path(path))
        except (OSError, ValueError, DialogueConversionError) as exc:
            err_console.print(f"[red]Skipped[/] {path}: {escape(str(exc))}")
            failed += 1
            continue
        target_path = output_dir / f"{path.stem}{settings.script.suffix}"
        script_repo.save(script, target_path)
        console.print(f"[green]Wrote[/] {target_path}")
    if failed:
        raise typer.Exit(code=1)


@convert_app.command("to-graph")
def convert_to_graph(
    ctx: typer.Context,
    input_dir: Path = typer.Option(Path("data/scripts"), help="Directory with script files."),
    output_dir: Path = typer.Option(Path("data/graphs"), help="Directory to write graph JSON."),
) -> None:
    settings = _settings(ctx)
    compiler = build_compiler(settings)
    graph_repo = FileSystemGraphRepository()
    script_repo = build_script_repository(settings)

    paths = script_repo.list_paths(input_dir)
    if not paths:
        console.print(f"[yellow]No script files found in {input_dir}[/]")
        raise typer.Exit(code=0)

    failed = 0
    for path in paths:
        try:
            document = compiler.import_script(script_repo.load_by_path(path), title=path.stem)
        except (OSError, ValueError, DialogueConversionError) as exc:
            err_console.print(f"[red]Skipped[/] {path}: {escape(str(exc))}")
            failed += 1
            continue
        target_path = output_dir / f"{path.stem}.json"
        graph_repo.save(document, target_path)
        console.print(f"[green]Wrote[/] {target_path}")
    if failed:
        raise typer.Exit(code=1)


@app.command("validate")
def validate(
    ctx: typer.Context,
    input_path: Path = typer.Argument(..., help="Graph JSON or script file to validate."),
) -> None:
    if not input_path.exists():
        err_console.print(f"[red]File not found:[/] {input_path}")
        raise typer.Exit(code=1)
    settings = _settings(ctx)
    try:
        if input_path.suffix in GRAPH_SUFFIXES:
            document = FileSystemGraphRepository().load_by_path(input_path)
            build_compiler(settings).export_script(document)
            summary = summarize_graph(document)
            console.print(
                f"[green]Valid graph document:[/] {input_path} "
                f"({summary.nodes} nodes, {summary.edges} edges, {summary.cycle_count} cycles)"
            )
            _report_flags(document)
        else:
            text = build_script_repository(settings).load_by_path(input_path)
            parsed = ScriptParser().parse(text)
            for diagnostic in parsed.undefined_jumps:
                err_console.print(f"[yellow]Warning:[/] {diagnostic}")
            console.print(
                f"[green]Valid script:[/] {input_path} ({len(parsed.document.nodes)} nodes)"
            )
            _report_flags(parsed.document)
    except (ValueError, DialogueConversionError) as exc:
        raise _fail("Validation failed", exc) from exc


@app.command("roundtrip")
def roundtrip(
    ctx: typer.Context,
    graph_path: Path = typer.Argument(..., help="Graph document JSON file."),
) -> None:
    compiler = build_compiler(_settings(ctx))
    try:
        document = FileSystemGraphRepository().load_by_path(graph_path)
        script = compiler.export_script(document)
        restored = compiler.import_script(script, title=document.title)
    except (OSError, ValueError, DialogueConversionError) as exc:
        raise _fail("Round trip failed", exc) from exc
    if not graphs_equivalent(document, restored):
        err_console.print(f"[red]Round trip changed the graph:[/] {graph_path}")
        raise typer.Exit(code=1)
    console.print(f"[green]Round trip preserved[/] {graph_path}")


@app.command("serve")
def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", help="Interface to bind."),
    port: int = typer.Option(8000, help="Port to listen on."),
) -> None:
    from app.web_main import create_app

    settings = _settings(ctx)
    uvicorn.run(create_app(settings), host=host, port=port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    app()
