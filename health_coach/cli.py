from __future__ import annotations

import json
import logging
from dataclasses import asdict, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import typer

from .catalog import exercise_label
from .dashboard_client import DashboardClient, PublishError
from .data_sources import MEAL_NAMES, AppState, WorkoutSet, create_empty_log, normalize_logs, upsert_workout_set
from .decision import summarize
from .exporters import export_weekly_json, merge_import, to_csv, to_tagged_csv
from .metrics import date_range, meal_target_for, meal_totals
from .payload_builder import build_payload, payload_hash
from .settings import Settings, load_settings, parse_date, today
from .state import SaveScheduler, StateStore, load_last_hash, save_last_hash

app = typer.Typer(help="Daily nutrition/training log analytics and biweekly coaching decisions.")


@app.callback()
def configure(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _store(settings: Settings) -> StateStore:
    return StateStore(settings.state_path, settings.fallback_path)


def _reference(settings: Settings, value: Optional[str]) -> str:
    if value is None:
        return today(settings.timezone)
    try:
        return parse_date(value)
    except ValueError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc


def _save(settings: Settings, store: StateStore, state: AppState) -> None:
    scheduler = SaveScheduler(store, settings.save_debounce_ms)
    scheduler.request(state)
    result = scheduler.flush()
    if result and result.used_fallback:
        typer.secho(f"Saved to fallback store {store.fallback}.", fg=typer.colors.YELLOW)


@app.command()
def kpis(
    on: Optional[str] = typer.Option(None, "--date", help="Reference date (YYYY-MM-DD); defaults to today."),
    as_json: bool = typer.Option(False, "--json", help="Print the raw KPI summary as JSON."),
) -> None:
    """Show 7- and 14-day KPIs and the automatic decision."""

    settings = load_settings()
    reference = _reference(settings, on)
    summary = summarize(_store(settings).load(), reference, settings.coach)

    if as_json:
        typer.echo(json.dumps(asdict(summary), indent=2, ensure_ascii=False))
        return

    payload = build_payload(summary, datetime.now(timezone.utc), settings.timezone)
    for label, block in (("7 días", payload["week"]), ("14 días", payload["fortnight"])):
        typer.secho(label, bold=True)
        for key, value in block.items():
            typer.echo(f"  {key}: {value}")
    colour = typer.colors.GREEN if summary.kpis14.decision == "none" else typer.colors.YELLOW
    typer.secho(f"Decisión: {payload['decision']['label']}", fg=colour, bold=True)
    typer.echo(summary.kpis14.reason)


@app.command()
def targets(
    on: Optional[str] = typer.Option(None, "--date", help="Day to compare (YYYY-MM-DD); defaults to today."),
) -> None:
    """Show each meal's macro targets next to what was logged that day."""

    settings = load_settings()
    log_date = _reference(settings, on)
    state = _store(settings).load()
    log = next((row for row in state.logs if row.date == log_date), None) or create_empty_log(log_date)

    typer.secho(f"{log_date} ({log.day_type})", bold=True)
    for meal in MEAL_NAMES:
        target = meal_target_for(log.day_type, meal)
        eaten = meal_totals(log, meal)
        typer.echo(
            f"  {meal}: P {eaten.p:g}/{target.protein_g:g}  G {eaten.f:g}/{target.fat_g:g}  "
            f"C {eaten.c:g}/{target.carbs_g:g}  kcal {eaten.kcal:g}/{target.kcal:g}"
        )
    percent = log.adherence.nutrition_percent
    colour = typer.colors.GREEN if percent >= settings.coach.adherence_threshold else typer.colors.YELLOW
    typer.secho(f"Adherencia: {percent}%", fg=colour)


@app.command("export-csv")
def export_csv(
    on: Optional[str] = typer.Option(None, "--date", help="Last day of the window (YYYY-MM-DD)."),
    days: int = typer.Option(7, min=1, help="Window length in days."),
    tagged: bool = typer.Option(False, help="One row per meal/set instead of zipping them by position."),
    output: Optional[Path] = typer.Option(None, help="Output file; defaults to the export directory."),
) -> None:
    """Write the logs of a trailing window as CSV."""

    settings = load_settings()
    window = date_range(days, _reference(settings, on))
    state = _store(settings).load()

    if tagged:
        content = to_tagged_csv(state.logs, window.start, window.end, state.exercise_catalog)
    else:
        content = to_csv(state.logs, window.start, window.end, state.weekly_measurements)

    target = output or settings.export_dir / f"health-tracker-{window.start}-to-{window.end}.csv"
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    typer.secho(f"CSV written to {target}", fg=typer.colors.GREEN)


@app.command("export-week")
def export_week(
    on: Optional[str] = typer.Option(None, "--date", help="Any day of the week to export."),
) -> None:
    """Write the Monday–Sunday backup JSON for a week."""

    settings = load_settings()
    result = export_weekly_json(_store(settings).load(), _reference(settings, on), timezone_name=settings.timezone)
    target = settings.export_dir / result.file_name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(result.content, encoding="utf-8")
    typer.secho(f"Week {result.week_start}..{result.week_end} written to {target}", fg=typer.colors.GREEN)


@app.command("import-json")
def import_json(path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True)) -> None:
    """Merge a backup JSON into the stored state."""

    settings = load_settings()
    store = _store(settings)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        state = merge_import(store.load(), payload)
    except (json.JSONDecodeError, ValueError) as exc:
        typer.secho(f"Could not import {path}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    _save(settings, store, state)
    typer.secho(
        f"Imported. {len(state.logs)} logs, {len(state.weekly_measurements)} weekly measurements stored.",
        fg=typer.colors.GREEN,
    )


@app.command("add-set")
def add_set(
    on: str = typer.Argument(..., metavar="DATE"),
    exercise: str = typer.Argument(...),
    sets: int = typer.Argument(..., min=1),
    reps: int = typer.Argument(..., min=1),
    weight_kg: float = typer.Argument(..., min=0),
    rir: Optional[float] = typer.Option(None, help="Reps in reserve."),
) -> None:
    """Add or update the day's entry for an exercise."""

    settings = load_settings()
    log_date = _reference(settings, on)
    store = _store(settings)
    state = store.load()

    known = {item.id for item in state.exercise_catalog}
    if exercise not in known:
        typer.secho(f"Unknown exercise {exercise!r}.", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    log = next((row for row in state.logs if row.date == log_date), None) or create_empty_log(log_date)
    log = upsert_workout_set(log, WorkoutSet(exercise_id=exercise, sets=sets, reps=reps, weight_kg=weight_kg, rir=rir))
    others = [row for row in state.logs if row.date != log_date]
    _save(settings, store, replace(state, logs=normalize_logs(others + [log])))
    label = exercise_label(exercise, state.exercise_catalog)
    typer.secho(f"{label} saved for {log_date}.", fg=typer.colors.GREEN)


@app.command()
def publish(
    dry_run: bool = typer.Option(False, help="Print payload without hitting the webhook."),
    force: bool = typer.Option(False, help="Bypass hash comparison and push regardless."),
    show_payload: bool = typer.Option(False, help="Print the payload JSON before publishing."),
) -> None:
    """Summarize the stored logs and push the KPIs to the dashboard webhook."""

    settings = load_settings()
    if not settings.webhook_url and not dry_run:
        typer.secho("Missing dashboard webhook. Set HEALTH_WEBHOOK_URL.", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    summary = summarize(_store(settings).load(), today(settings.timezone), settings.coach)
    payload = build_payload(summary, datetime.now(timezone.utc), settings.timezone)
    current_hash = payload_hash(payload)
    hash_path = settings.state_path.with_name("publish.json")

    if not force and load_last_hash(hash_path) == current_hash:
        typer.secho("No changes detected; skipping publish.", fg=typer.colors.YELLOW)
        return

    if show_payload or dry_run:
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))

    client = DashboardClient(settings.webhook_url or "")
    try:
        response = client.publish(payload, dry_run=dry_run)
    except PublishError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    if dry_run:
        typer.secho("Dry run complete — payload not sent.", fg=typer.colors.CYAN)
        return

    save_last_hash(current_hash, hash_path)
    typer.secho("Dashboard updated.", fg=typer.colors.GREEN)
    if response:
        typer.echo(json.dumps(response, indent=2))


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
