# -*- coding: utf-8 -*-
"""
City Prosperity Index CLI
=========================

Commands:
    cpi version                                   - Show version
    cpi indicators [--domain D]                   - List registry indicators
    cpi validate [--catalog PATH]                 - Run the registry self-check
    cpi standardize INDICATOR k=v ...             - Score without storing
    cpi submit INDICATOR k=v ... -u U -c C -k K   - Score and store
    cpi report -u U -c C -k K [--format json]     - Hierarchical city report
    cpi compare -u U Cairo:Egypt Lagos:Nigeria    - Compare stored cities
    cpi history -u U                              - List stored cities
    cpi delete -u U RECORD_ID                     - Delete a stored city

Raw inputs are given as ``name=value``. Lists (industry shares, land-use
shares) use commas, and land-use grid cells are separated by semicolons:
``land_use_shares=0.2,0.8;0.5,0.5``.
"""

import dataclasses
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, NoReturn, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from cityprosperity import __version__
from cityprosperity.config import get_config, set_config
from cityprosperity.determinism import round_half_up
from cityprosperity.engine.classification import classify
from cityprosperity.engine.normalization import score_indicator
from cityprosperity.engine.report import CityReport, GroupNode
from cityprosperity.exceptions import (
    CityProsperityException,
    InvalidConfigurationError,
    to_user_message,
)
from cityprosperity.registry import get_registry, load_registry
from cityprosperity.service import CalculationService

app = typer.Typer(
    name="cpi",
    help="City Prosperity Index: standardize urban indicators and build composites",
    no_args_is_help=True,
    add_completion=False,
)
console = Console()

logger = logging.getLogger(__name__)


@app.callback()
def _root(
    database: Optional[str] = typer.Option(
        None, "--database", "-d", help="SQLite record store (':memory:' for none)",
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    ),
):
    """
    City Prosperity Index - indicator standardization and composite scoring
    """
    config = get_config()
    overrides: Dict[str, Any] = {}
    if database:
        overrides["database_path"] = database
    if log_level:
        overrides["log_level"] = log_level.upper()
    if overrides:
        try:
            config = dataclasses.replace(config, **overrides)
        except ValueError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)
        set_config(config)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_number(name: str, text: str) -> float:
    try:
        return float(text)
    except ValueError:
        raise typer.BadParameter(f"{name}: '{text}' is not a number")


def parse_raw_inputs(pairs: List[str]) -> Dict[str, Any]:
    """Turn ``name=value`` arguments into a raw input mapping."""
    inputs: Dict[str, Any] = {}
    for pair in pairs:
        name, sep, text = pair.partition("=")
        name = name.strip()
        if not sep or not name:
            raise typer.BadParameter(f"expected name=value, got '{pair}'")
        text = text.strip()
        if ";" in text:
            inputs[name] = [
                [_parse_number(name, item) for item in cell.split(",") if item.strip()]
                for cell in text.split(";")
                if cell.strip()
            ]
        elif "," in text:
            inputs[name] = [
                _parse_number(name, item) for item in text.split(",") if item.strip()
            ]
        else:
            inputs[name] = _parse_number(name, text)
    return inputs


def _fail(exc: Exception) -> NoReturn:
    console.print(f"[red]Error:[/red] {to_user_message(exc)}")
    if isinstance(exc, CityProsperityException):
        for field_name, reason in exc.context.get("invalid_fields", {}).items():
            console.print(f"  • {field_name}: {reason}")
    raise typer.Exit(1)


def _fmt(value: Optional[float]) -> str:
    return "-" if value is None else f"{value:.2f}"


def _score_style(score: Optional[float]) -> str:
    if score is None:
        return "dim"
    if score >= 70:
        return "green"
    if score >= 50:
        return "yellow"
    return "red"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def version():
    """Show version"""
    console.print(f"[bold green]City Prosperity Index v{__version__}[/bold green]")


@app.command()
def indicators(
    domain: Optional[str] = typer.Option(None, "--domain", help="Only indicators of this domain or sub-domain"),
):
    """List the indicators of the registry"""
    try:
        registry = get_registry()
        listed = registry.indicators_under(domain) if domain else list(registry.indicators)
    except CityProsperityException as e:
        _fail(e)

    table = Table(title=f"Indicators ({len(listed)})")
    table.add_column("Indicator", style="cyan")
    table.add_column("Sub-domain")
    table.add_column("Inputs")
    table.add_column("Formula")
    table.add_column("Unit", style="dim")
    for definition in listed:
        table.add_row(
            definition.id,
            definition.parent,
            ", ".join(definition.inputs),
            definition.formula.value + (" (inverted)" if definition.inverted else ""),
            definition.unit,
        )
    console.print(table)


@app.command()
def validate(
    catalog: Optional[Path] = typer.Option(None, "--catalog", help="Catalog YAML to check (default: packaged catalog)"),
):
    """Run the registry self-check"""
    try:
        registry = load_registry(catalog)
    except InvalidConfigurationError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        for problem in e.problems:
            console.print(f"  • {problem}")
        raise typer.Exit(1)
    console.print(
        f"[green]✓[/green] Catalog {registry.version or ''} is valid: "
        f"{len(registry.groups)} groups, {len(registry)} indicators"
    )


@app.command()
def standardize(
    indicator: str = typer.Argument(..., help="Indicator id (see 'cpi indicators')"),
    inputs: List[str] = typer.Argument(..., help="Raw inputs as name=value"),
):
    """Score an indicator without storing it"""
    raw_inputs = parse_raw_inputs(inputs)
    try:
        result = score_indicator(indicator, raw_inputs)
    except CityProsperityException as e:
        _fail(e)

    score = round_half_up(result.score, get_config().score_precision)
    comment = classify(result.score, indicator)
    console.print(
        Panel(
            f"Raw value: [bold]{result.raw_value:.4f}[/bold]\n"
            f"Standardized: [bold {_score_style(score)}]{score:.2f}[/]\n"
            f"Verdict: [bold]{comment}[/bold]",
            title=indicator,
        )
    )


@app.command()
def submit(
    indicator: str = typer.Argument(..., help="Indicator id"),
    inputs: List[str] = typer.Argument(..., help="Raw inputs as name=value"),
    user: str = typer.Option(..., "--user", "-u", help="User identifier"),
    city: str = typer.Option(..., "--city", "-c", help="City name"),
    country: str = typer.Option(..., "--country", "-k", help="Country name"),
):
    """Score an indicator and merge it into the city's record"""
    raw_inputs = parse_raw_inputs(inputs)
    try:
        service = CalculationService()
        result = service.submit(user, city, country, indicator, raw_inputs)
    except CityProsperityException as e:
        _fail(e)

    action = "Created" if result.created else "Updated"
    console.print(
        f"[green]✓[/green] {action} {result.record.city}, {result.record.country}: "
        f"{indicator} = [bold]{result.standardized:.2f}[/bold] ({result.comment})"
    )
    for group_id in result.completed_groups:
        console.print(
            f"  [cyan]{group_id}[/cyan] complete: {result.record.values[group_id]:.2f}"
        )


def _add_group(tree: Tree, node: GroupNode) -> None:
    label = (
        f"[bold]{node.name}[/bold] "
        f"[{_score_style(node.score)}]{_fmt(node.score)}[/] {node.comment or ''}"
    )
    branch = tree.add(label)
    for child in node.children:
        if isinstance(child, GroupNode):
            _add_group(branch, child)
        else:
            branch.add(
                f"{child.name}: [{_score_style(child.standardized)}]"
                f"{_fmt(child.standardized)}[/] {child.comment or ''}"
            )


def _print_report(report: CityReport) -> None:
    tree = Tree(
        f"[bold cyan]{report.city}, {report.country}[/bold cyan] "
        f"({report.scored_indicators}/{report.total_indicators} indicators)"
    )
    _add_group(tree, report.root)
    console.print(tree)


@app.command()
def report(
    user: str = typer.Option(..., "--user", "-u", help="User identifier"),
    city: str = typer.Option(..., "--city", "-c", help="City name"),
    country: str = typer.Option(..., "--country", "-k", help="Country name"),
    output_format: str = typer.Option("table", "--format", "-f", help="table or json"),
):
    """Show the hierarchical report of a city"""
    try:
        city_report = CalculationService().report(user, city, country)
    except CityProsperityException as e:
        _fail(e)

    if output_format == "json":
        console.print_json(city_report.model_dump_json())
    else:
        _print_report(city_report)


@app.command()
def compare(
    cities: List[str] = typer.Argument(..., help="Cities as City:Country"),
    user: str = typer.Option(..., "--user", "-u", help="User identifier"),
):
    """Compare the domain scores of stored cities"""
    try:
        service = CalculationService()
        records = service.compare(user, cities)
    except CityProsperityException as e:
        _fail(e)

    if not records:
        console.print("[yellow]No stored calculations match the requested cities[/yellow]")
        return

    registry = service.registry
    table = Table(title="City comparison")
    table.add_column("Composite", style="cyan")
    for record in records:
        table.add_column(f"{record.city}, {record.country}", justify="right")
    for group_id in list(registry.domains()) + [registry.root_id]:
        table.add_row(
            registry.group(group_id).name,
            *(_fmt(record.values.get(group_id)) for record in records),
        )
    console.print(table)


@app.command()
def history(
    user: str = typer.Option(..., "--user", "-u", help="User identifier"),
):
    """List stored cities, most recently updated first"""
    try:
        records = CalculationService().list_history(user)
    except CityProsperityException as e:
        _fail(e)

    table = Table(title=f"Calculations ({len(records)})")
    table.add_column("ID", style="dim")
    table.add_column("City", style="cyan")
    table.add_column("Country")
    table.add_column("CPI", justify="right")
    table.add_column("Updated")
    for record in records:
        table.add_row(
            record.id,
            record.city,
            record.country,
            _fmt(record.values.get(get_registry().root_id)),
            record.updated_at.isoformat(),
        )
    console.print(table)


@app.command()
def delete(
    record_id: str = typer.Argument(..., help="Record id (see 'cpi history')"),
    user: str = typer.Option(..., "--user", "-u", help="User identifier"),
):
    """Delete a stored city"""
    try:
        CalculationService().delete_record(user, record_id)
    except CityProsperityException as e:
        _fail(e)
    console.print(f"[green]✓[/green] Deleted {record_id}")


@app.command("export")
def export_record(
    user: str = typer.Option(..., "--user", "-u", help="User identifier"),
    city: str = typer.Option(..., "--city", "-c", help="City name"),
    country: str = typer.Option(..., "--country", "-k", help="Country name"),
):
    """Print a stored record in its flat persisted shape"""
    try:
        record = CalculationService().find_record(user, city, country)
    except CityProsperityException as e:
        _fail(e)
    console.print_json(json.dumps(record.to_flat()))


def main():
    app()


if __name__ == "__main__":
    main()
