import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from stepwright.model.scenario import load_scenario
from stepwright.player.runner import run_playback
from stepwright.recorder.analyzer import analyze_scenario_file, compute_lint_violations
from stepwright.recorder.runner import run_record
from stepwright.settings import (
    PlayerOptions,
    default_settings_path,
    load_settings,
    save_settings,
    set_setting,
)
from stepwright.store import list_runs

app = typer.Typer(help="Record browser interaction as test scenarios and replay them.")
config_app = typer.Typer(help="Inspect and change persisted settings.")
app.add_typer(config_app, name="config")


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)"),
):
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_and_validate_scenario(scenario_path: Path):
    if not scenario_path.exists():
        typer.echo(f"Scenario not found: {scenario_path}")
        raise typer.Exit(code=1)
    try:
        return load_scenario(scenario_path)
    except ValueError as exc:
        typer.echo(f"Invalid scenario: {exc}")
        raise typer.Exit(code=1)


@app.command()
def record(
    name: str,
    start_url: str = typer.Option(..., "--start-url", help="Initial URL to open before recording"),
    output_dir: Path = typer.Option(Path("scenarios"), "--output-dir", help="Directory for the scenario file"),
):
    """Record interaction in a headed browser until Ctrl+C, then save the scenario."""
    try:
        asyncio.run(run_record(name, start_url=start_url, output_dir=output_dir))
    except RuntimeError as exc:
        typer.echo(_format_record_runtime_error(exc))
        raise typer.Exit(code=1)


def _format_record_runtime_error(exc: RuntimeError) -> str:
    """Return compact user-facing guidance for common recorder runtime failures."""
    message = str(exc).strip()
    lower = message.lower()
    if "executable doesn't exist" in lower or "playwright install" in lower:
        return (
            "Recording failed: Browser binaries are not installed.\n"
            "Run `playwright install chromium` and retry."
        )
    if "address already in use" in lower:
        return (
            "Recording failed: Recorder port is already in use.\n"
            "Stop stale stepwright processes and retry."
        )
    return f"Recording failed: {message}"


@app.command()
def play(
    scenario_path: Path,
    base_url: Optional[str] = typer.Option(None, "--base-url", help="Base URL for relative navigate steps"),
    headless: Optional[bool] = typer.Option(None, "--headless/--headed"),
    continue_on_failure: Optional[bool] = typer.Option(None, "--continue-on-failure/--stop-on-failure"),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", min=0),
    cdp_url: Optional[str] = typer.Option(None, "--cdp-url", help="Attach to a running browser instead of launching"),
    report_json: Optional[Path] = typer.Option(None, "--report-json", help="Write a JSON report"),
    junit: Optional[Path] = typer.Option(None, "--junit", help="Write a JUnit XML report"),
):
    """Replay a scenario and report per-step results; exits 1 unless the run succeeds."""
    _load_and_validate_scenario(scenario_path)
    settings = load_settings()
    options = PlayerOptions.from_settings(
        settings,
        base_url=base_url,
        headless=headless,
        continue_on_failure=continue_on_failure,
        max_retries=max_retries,
    )
    result = asyncio.run(
        run_playback(
            scenario_path,
            options,
            settings=settings,
            cdp_url=cdp_url,
            report_json=report_json,
            junit=junit,
        )
    )

    for step_result in result.step_results:
        line = f"  {step_result.index + 1:>3}. [{step_result.status.upper():7}] {step_result.step_id} ({step_result.duration:.0f}ms)"
        typer.echo(line)
        if step_result.error is not None:
            typer.echo(f"       {step_result.error.error_code}: {step_result.error.message}")
    summary = result.summary
    typer.echo(
        f"PLAYBACK: {'OK' if result.success else 'FAIL'} ({result.state}) "
        f"passed={summary.passed} failed={summary.failed} skipped={summary.skipped} "
        f"duration={summary.duration / 1000:.2f}s"
    )
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def analyze(
    scenario_path: Path,
    json_output: bool = typer.Option(False, "--json", help="Print the full JSON report"),
):
    """Score selector robustness of a recorded scenario (no browser execution)."""
    _load_and_validate_scenario(scenario_path)
    report = analyze_scenario_file(scenario_path)
    if json_output:
        typer.echo(json.dumps(report, indent=2))
        return
    summary = report["summary"]
    typer.echo(f"SCENARIO: {report['scenario_id']}")
    typer.echo(f"  selector_steps: {summary['selector_steps']}")
    typer.echo(f"  average_score: {summary['average_score']}")
    typer.echo(
        f"  stable={summary['stable']} acceptable={summary['acceptable']} "
        f"fragile={summary['fragile']} high_risk={summary['high_risk']}"
    )
    for step in report["steps"]:
        reasons = f" ({', '.join(step['reasons'])})" if step["reasons"] else ""
        typer.echo(f"    - {step['step_id']} {step['type']}: {step['score']} {step['band']}{reasons}")


@app.command()
def lint(
    scenario_path: Path,
    min_average_score: float = typer.Option(70.0, "--min-average-score"),
    max_fragile: int = typer.Option(5, "--max-fragile"),
    max_high_risk: int = typer.Option(0, "--max-high-risk"),
):
    """Lint a scenario for CI gating using selector robustness thresholds."""
    _load_and_validate_scenario(scenario_path)
    report = analyze_scenario_file(scenario_path)
    violations = compute_lint_violations(report, min_average_score, max_fragile, max_high_risk)

    output = {"status": "ok" if not violations else "failed", "summary": report.get("summary", {})}
    if violations:
        output["violations"] = violations
    typer.echo(json.dumps(output, indent=2))
    if violations:
        raise typer.Exit(code=1)


@app.command()
def runs(limit: int = typer.Option(20, "--limit", min=1, help="Number of runs to show")):
    """List recent playback runs from history."""
    rows = asyncio.run(list_runs(limit))
    if not rows:
        typer.echo("No runs recorded yet.")
        return
    for row in rows:
        status = "OK" if row["success"] else "FAIL"
        typer.echo(
            f"{row['started_at']}  {row['run_id']}  {status:4}  {row['state']:9}  "
            f"{row['passed']}/{row['total_steps']} passed  {row['scenario_id']}"
        )


@config_app.command("show")
def config_show():
    """Print the effective settings as JSON."""
    typer.echo(json.dumps(load_settings(), indent=2))


@config_app.command("set")
def config_set(key: str, value: str):
    """Set `recorder.<name>` or `player.<name>` and persist it."""
    try:
        updated = set_setting(load_settings(), key, value)
    except ValueError as exc:
        typer.echo(f"Invalid setting: {exc}")
        raise typer.Exit(code=1)
    save_settings(updated)
    section, _, name = key.partition(".")
    typer.echo(f"{key} = {json.dumps(updated[section][name])} ({default_settings_path()})")


if __name__ == "__main__":
    app()
