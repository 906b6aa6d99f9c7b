"""CLI entry point for srkit."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Callable

import typer
from rich.console import Console
from rich.table import Table

from srkit import __version__
from srkit.analyzers import FULL_SCAN, PROFILES, AnalyzerProfile
from srkit.config import SrkitConfig
from srkit.errors import AnalysisAborted, FactAccessError, RegistryLoadError, ReportRenderError
from srkit.model import Category, Report
from srkit.provider import PROVIDER_KINDS, FactProvider, create_provider, write_snapshot
from srkit.signatures import Registry, default_registry, load

app = typer.Typer(
    name="srkit",
    help="Static detection of security-relevant techniques in binaries.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config(
    config_file: str | None, provider: str | None, top: int | None
) -> SrkitConfig:
    config = SrkitConfig.load(config_file)
    if provider:
        if provider not in PROVIDER_KINDS:
            typer.echo(
                f"Error: unknown provider {provider!r} (choose from {', '.join(PROVIDER_KINDS)})",
                err=True,
            )
            raise typer.Exit(1)
        config.provider.kind = provider  # type: ignore[assignment]
    if top is not None:
        config.report.top_n = top
    return config


def _load_registry(config: SrkitConfig) -> Registry:
    try:
        if config.catalogue_dirs:
            return load(config.catalogue_dirs)
        return default_registry()
    except RegistryLoadError as e:
        typer.echo(f"Error: signature catalogue is invalid: {e}", err=True)
        raise typer.Exit(1)


async def _run_analysis(
    profile: AnalyzerProfile,
    fact_provider: FactProvider,
    registry: Registry,
    config: SrkitConfig,
    verbose: bool,
) -> Report:
    """Run one analysis while echoing wire events to stderr."""
    from srkit.engine.pipeline import Analysis
    from srkit.session.wire import EventType, Wire

    wire = Wire()
    # Subscribed before the run so its first events reach the consumer.
    queue = wire.subscribe()

    async def _consume_wire() -> None:
        while True:
            event = await queue.get()
            if event is None:
                break
            d = event.data
            if event.type == EventType.WARNING:
                typer.echo(f"warning: {d.get('warning', '')}", err=True)
            elif event.type == EventType.ERROR:
                typer.echo(f"error [{d.get('stage', '?')}]: {d.get('error', '')}", err=True)
            elif verbose and event.type == EventType.STAGE:
                typer.echo(f"-- {d.get('stage')}", err=True)
            elif verbose and event.type == EventType.CATEGORY_DONE:
                typer.echo(
                    f"   {d.get('category')}: {d.get('raw_matches')} raw matches", err=True
                )

    consumer = asyncio.create_task(_consume_wire())
    analysis = Analysis(registry=registry, config=config, profile=profile, wire=wire)
    try:
        return await analysis.run(fact_provider)
    finally:
        wire.close()
        await consumer
        wire.unsubscribe(queue)


def _render(report: Report, profile: AnalyzerProfile, config: SrkitConfig, json_out: str | None) -> None:
    from srkit.report.render import ConsoleSink, JsonSink

    sinks: list[tuple[str, Callable[[], None]]] = []
    console = ConsoleSink(
        show_evidence=config.report.show_evidence,
        max_evidence=config.report.max_evidence,
    )
    sinks.append(("console", lambda: console.render(report, title=profile.title)))
    if json_out:
        sink = JsonSink(json_out)
        sinks.append(("json", lambda: sink.render(report)))

    for name, render in sinks:
        try:
            render()
        except ReportRenderError as e:
            # The run itself succeeded; only this output is lost.
            typer.echo(f"Error: {name} report output failed: {e}", err=True)
            continue
        if name == "json":
            typer.echo(f"Report written to {json_out}", err=True)


def _analyze(
    profile: AnalyzerProfile,
    binary: str,
    provider: str | None,
    json_out: str | None,
    top: int | None,
    verbose: bool,
    config_file: str | None,
) -> None:
    setup_logging(verbose)

    binary_path = os.path.abspath(binary)
    if not os.path.isfile(binary_path):
        typer.echo(f"Error: Binary not found: {binary_path}", err=True)
        raise typer.Exit(1)

    config = _load_config(config_file, provider, top)
    registry = _load_registry(config)
    fact_provider = create_provider(
        config.provider.kind, binary_path, analysis_cmd=config.provider.analysis_cmd
    )

    try:
        report = asyncio.run(
            _run_analysis(profile, fact_provider, registry, config, verbose)
        )
    except AnalysisAborted as e:
        reason = e.cause if e.cause is not None else e
        typer.echo(f"Error: {profile.title} failed during {e.stage}: {reason}", err=True)
        raise typer.Exit(1)
    finally:
        fact_provider.close()

    _render(report, profile, config, json_out)


def _make_command(profile: AnalyzerProfile) -> Callable[..., None]:
    def command(
        binary: str = typer.Argument(help="Path to the binary (or fact snapshot) to analyze."),
        provider: str | None = typer.Option(
            None,
            "--provider",
            "-p",
            help="Fact provider: rizin, lief or snapshot (default: from env/config).",
        ),
        json_out: str | None = typer.Option(
            None, "--json", "-j", help="Also write the report as JSON to this path."
        ),
        top: int | None = typer.Option(
            None, "--top", "-n", min=0, help="Findings shown per category (default: all)."
        ),
        verbose: bool = typer.Option(
            False, "--verbose", "-v", help="Enable debug logging."
        ),
        config_file: str | None = typer.Option(
            None, "--config", "-c", help="Config file path."
        ),
    ) -> None:
        _analyze(profile, binary, provider, json_out, top, verbose, config_file)

    command.__doc__ = f"{profile.title}: {profile.help}"
    command.__name__ = profile.command.replace("-", "_")
    return command


for _profile in (*PROFILES, FULL_SCAN):
    app.command(name=_profile.command)(_make_command(_profile))
app.command(name="xpc", hidden=True)(_make_command(PROFILES[-1]))


@app.command()
def signatures(
    category: str | None = typer.Option(
        None, "--category", "-k", help="Only list this category (e.g. anti-debug)."
    ),
    rules: bool = typer.Option(False, "--rules", "-r", help="List correlation rules instead."),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """List the signature catalogue."""
    setup_logging(False)
    config = SrkitConfig.load(config_file)
    registry = _load_registry(config)

    try:
        cats = [Category.parse(category)] if category else list(Category)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    console = Console()
    if rules:
        table = Table(title="Correlation rules")
        table.add_column("Rule", no_wrap=True)
        table.add_column("Category")
        table.add_column("Signatures")
        table.add_column("Boost", justify="right")
        for cat in cats:
            for rule in registry.rules_for(cat):
                table.add_row(rule.id, cat.value, ", ".join(rule.signatures), f"{rule.boost:.2f}")
    else:
        table = Table(title=f"Signatures ({sum(len(registry.signatures_for(c)) for c in cats)})")
        table.add_column("Signature", no_wrap=True)
        table.add_column("Category")
        table.add_column("Weight", justify="right")
        table.add_column("Clauses")
        table.add_column("Title")
        for cat in cats:
            for sig in registry.signatures_for(cat):
                kinds = "+".join(c.type for c in sig.clauses)
                table.add_row(sig.id, cat.value, f"{sig.weight:.2f}", kinds, sig.display_title)
    console.print(table)


@app.command()
def snapshot(
    binary: str = typer.Argument(help="Path to the binary."),
    output: str = typer.Argument(help="Where to write the JSON fact snapshot."),
    provider: str | None = typer.Option(
        None, "--provider", "-p", help="Fact provider: rizin or lief."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_file: str | None = typer.Option(None, "--config", "-c", help="Config file path."),
) -> None:
    """Extract a binary's facts and save them for later replay."""
    setup_logging(verbose)
    binary_path = os.path.abspath(binary)
    if not os.path.isfile(binary_path):
        typer.echo(f"Error: Binary not found: {binary_path}", err=True)
        raise typer.Exit(1)

    config = _load_config(config_file, provider, None)
    fact_provider = create_provider(
        config.provider.kind, binary_path, analysis_cmd=config.provider.analysis_cmd
    )
    try:
        facts = fact_provider.collect()
        path = write_snapshot(facts, fact_provider.binary_id(), output)
    except (FactAccessError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        fact_provider.close()
    typer.echo(f"{len(facts)} facts written to {path}")


@app.command()
def version() -> None:
    """Print the srkit version."""
    typer.echo(f"srkit v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
