import json
from pathlib import Path
from typing import Any

import click


@click.group()
def main() -> None:
    """Councilflow - Multi-agent pipeline runner."""


def _load_json(path: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"{path} is not valid JSON: {exc}") from exc


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
def validate(file: str) -> None:
    """Validate a pipeline document."""
    from councilflow.runtime.registry import validate_pipeline

    report = validate_pipeline(_load_json(file))
    for error in report.errors:
        click.echo(f"error: {error}")
    for warning in report.warnings:
        click.echo(f"warning: {warning}")
    if not report.valid:
        raise SystemExit(1)
    click.echo("Pipeline is valid.")


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--input", "user_input", default="", help="User input for the first phase.")
@click.option(
    "--roster",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON roster with agents, positions, teams, characters and stores.",
)
@click.option(
    "--strategy",
    type=click.Choice(["synthesis", "compilation", "injection"]),
    default="synthesis",
    help="How the final output is returned.",
)
@click.option("--save/--no-save", default=False, help="Store the pipeline and the finished run under data_root.")
def run(file: str, user_input: str, roster: str | None, strategy: str, save: bool) -> None:
    """Run a pipeline once and print its final output."""
    import asyncio

    from councilflow.runtime.log import setup_logging
    from councilflow.runtime.settings import get_settings

    settings = get_settings()
    setup_logging(settings.log_level)

    document = _load_json(file)
    roster_data = _load_json(roster) if roster else {}
    run_state = asyncio.run(_run_pipeline(settings, document, roster_data, user_input, strategy, save))

    output = run_state.compiled_prompt if run_state.compiled_prompt is not None else run_state.final_output
    click.echo(output if isinstance(output, str) else json.dumps(output, indent=2, ensure_ascii=False))


async def _run_pipeline(
    settings: Any,
    document: dict[str, Any],
    roster: dict[str, Any],
    user_input: str,
    strategy: str,
    save: bool,
) -> Any:
    from councilflow.runtime.collaborators import (
        HttpLLMClient,
        MemoryCharacterDirectory,
        MemoryCuration,
        MemoryDirectory,
        MemoryThreadLog,
    )
    from councilflow.runtime.execution.engine import PipelineEngine
    from councilflow.runtime.store import LocalRunStore

    directory = MemoryDirectory.from_roster(roster)
    characters = MemoryCharacterDirectory()
    for raw in roster.get("characters", []):
        characters.add_character(
            raw["characterId"],
            raw.get("name", raw["characterId"]),
            character_type=raw.get("characterType", "supporting"),
            traits=raw.get("traits"),
            spawned=raw.get("spawned", False),
        )
    curation = MemoryCuration()
    for store_id, entries in roster.get("stores", {}).items():
        for entry in entries:
            await curation.create(store_id, entry)
    for pipeline_id, stores in roster.get("ragPipelines", {}).items():
        curation.register_rag_pipeline(pipeline_id, stores)

    store = LocalRunStore(settings.data_root, settings.data_prefix) if save else None
    llm = HttpLLMClient.from_settings(settings) if settings.llm_base_url else None

    engine = PipelineEngine(
        directory=directory,
        characters=characters,
        curation=curation,
        llm=llm,
        threads=MemoryThreadLog(),
        settings=settings,
        store=store,
    )
    try:
        pipeline = await engine.register_pipeline(document)
        if store is not None:
            await store.write_pipeline(pipeline.to_document())
        return await engine.start_run(
            pipeline.id,
            user_input,
            strategy=strategy,
            injection_mappings=roster.get("injectionMappings"),
        )
    finally:
        if llm is not None:
            await llm.aclose()


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


@main.command()
@click.argument("template")
@click.option(
    "--context",
    "context_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON file with the resolver context.",
)
@click.option("--strict", is_flag=True, default=False, help="Replace unresolved tokens with an empty string.")
def render(template: str, context_file: str | None, strict: bool) -> None:
    """Resolve a template string against a JSON context."""
    from councilflow.runtime.settings import get_settings
    from councilflow.runtime.templating import TemplateResolver

    settings = get_settings()
    resolver = TemplateResolver(
        preserve_unresolved=settings.preserve_unresolved and not strict,
        placeholder=settings.unresolved_placeholder,
    )
    context = _load_json(context_file) if context_file else {}
    click.echo(resolver.resolve(template, context))


# ---------------------------------------------------------------------------
# Run history
# ---------------------------------------------------------------------------


@main.command()
@click.option("--limit", default=20, show_default=True, help="Maximum number of runs to show.")
def history(limit: int) -> None:
    """List stored runs, newest first."""
    import asyncio

    from councilflow.runtime.settings import get_settings
    from councilflow.runtime.store import LocalRunStore

    settings = get_settings()
    store = LocalRunStore(settings.data_root, settings.data_prefix)
    runs = asyncio.run(store.list_runs())
    if not runs:
        click.echo("No stored runs.")
        return
    for summary in runs[:limit]:
        line = f"{summary['id']}  {summary['pipelineId']}  {summary['status']}  {summary['startedAt']}"
        if summary.get("error"):
            line += f"  ({summary['error']})"
        click.echo(line)


if __name__ == "__main__":
    main()
