"""Command-line access to students, suggestion rounds, and saved/discarded activities."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, NoReturn, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from acopilot.core.errors import ActivityError
from acopilot.core.models import Activity, ActivityOptions, RecentActivity, Story, StudentProfile, SuggestionRound
from acopilot.pipeline.bootstrap import bootstrap_service, build_service
from apps.suggestions.service import ActivitySuggestionService
from apps.suggestions.session import DeduplicationTracker

app = typer.Typer(help="Suggest, save, discard, and restore educational activities and stories for students.")
console = Console()


@dataclass
class CLIState:
    config: Optional[Path] = None
    repo_root: Optional[Path] = None
    store: Optional[Path] = None


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", show_default=False, help="Service YAML (defaults to config/activity.yaml)."),
    repo_root: Path | None = typer.Option(
        None, "--repo-root", show_default=False, help="Repository root (defaults to ACOPILOT_REPO_ROOT or the cwd)."
    ),
    store: Path | None = typer.Option(None, "--store", show_default=False, help="Override the SQLite student store path."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    ctx.obj = CLIState(config=config, repo_root=repo_root, store=store)


def _service(ctx: typer.Context, *, offline: bool = False) -> ActivitySuggestionService:
    state: CLIState = ctx.obj or CLIState()
    service_ctx = bootstrap_service(
        state.config,
        repo_root=state.repo_root,
        store_path_override=state.store,
        offline=offline,
    )
    return build_service(service_ctx)


def _fail(exc: ActivityError) -> NoReturn:
    console.print(f"[red]{exc.kind.value}:[/red] {exc.message}")
    raise typer.Exit(code=1)


def _read_profile_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise typer.BadParameter(f"Profile file not found at {path}")
    text = path.read_text(encoding="utf-8")
    data = json.loads(text) if path.suffix.lower() == ".json" else yaml.safe_load(text)
    if not isinstance(data, dict):
        raise typer.BadParameter(f"Expected a mapping in {path}")
    return data


def _skills_label(activity: Activity) -> str:
    if activity.skills:
        return ", ".join(f"{tag.name} ({tag.category.value})" for tag in activity.skills)
    if activity.raw_skills is not None:
        return f"[red]unrecognized: {activity.raw_skills}[/red]"
    return "[red]none[/red]"


def _print_activities(title: str, activities: List[Activity], *, show_rationale: bool = False) -> None:
    table = Table(title=title)
    table.add_column("ID", overflow="fold")
    table.add_column("Title")
    if show_rationale:
        table.add_column("Why it works")
    table.add_column("Skills")
    table.add_column("When")
    for activity in activities:
        row = [activity.id, activity.title]
        if show_rationale:
            row.append(activity.rationale)
        row.append(_skills_label(activity))
        row.append(activity.timestamp.isoformat() if activity.timestamp else "")
        table.add_row(*row)
    console.print(table)


def _print_round(round_: SuggestionRound) -> None:
    source = "backup templates" if round_.used_fallback else "AI generator"
    _print_activities(f"Round {round_.round_index} ({source})", round_.activities, show_rationale=True)
    if round_.provenance_note:
        style = "yellow" if round_.degraded else "cyan"
        console.print(f"[{style}]{round_.provenance_note}[/{style}]")


# ----------------------------------------------------------------------
# Students


@app.command("add-student")
def add_student(
    ctx: typer.Context,
    profile_file: Path = typer.Argument(..., help="YAML or JSON file with the student profile."),
    owner: Optional[str] = typer.Option(None, "--owner", help="Owning account id."),
) -> None:
    """Create a student from a profile file."""

    data = _read_profile_file(profile_file)
    if owner:
        data["owner_id"] = owner
    profile = StudentProfile.model_validate(data)
    created = _service(ctx, offline=True).create_student(profile)
    console.print(f"[green]Created student[/green] {created.name} ({created.id})")


@app.command("list")
def list_students(
    ctx: typer.Context,
    owner: Optional[str] = typer.Option(None, "--owner", help="Only students owned by this account."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of a table."),
) -> None:
    """List students in the store."""

    rows = _service(ctx, offline=True).list_students(owner_id=owner)
    if as_json:
        typer.echo(json.dumps(rows, indent=2, ensure_ascii=False))
        return
    if not rows:
        console.print("[yellow]No students found in the store.[/yellow]")
        return
    table = Table("ID", "Name", "Owner", "Updated")
    for row in rows:
        table.add_row(*[str(row.get(key) or "") for key in ("id", "name", "owner_id", "updated_at")])
    console.print(table)


@app.command()
def show(
    ctx: typer.Context,
    student_id: str = typer.Argument(..., help="Student identifier."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of tables."),
) -> None:
    """Show a student's profile and activity collections."""

    try:
        profile = _service(ctx, offline=True).get_student(student_id)
    except ActivityError as exc:
        _fail(exc)
    if as_json:
        typer.echo(profile.model_dump_json(indent=2))
        return
    console.print(f"[bold]{profile.name}[/bold] ({profile.id})  age band: {profile.age_band or 'unknown'}")
    recent = profile.recent_activity
    if recent is None or not recent.is_complete:
        console.print("[yellow]No complete recent activity; suggestions are blocked until one is recorded.[/yellow]")
    else:
        console.print(f"Recent activity: {recent.name} ({recent.result}, {recent.difficulty_level})")
    _print_activities("Saved", profile.saved)
    _print_activities("Discarded", profile.discarded)
    _print_activities("History", profile.history)


@app.command("set-recent")
def set_recent(
    ctx: typer.Context,
    student_id: str = typer.Argument(..., help="Student identifier."),
    name: str = typer.Option(..., "--name", help="Activity name."),
    result: str = typer.Option(..., "--result", help="Outcome, e.g. 'Success' or 'Struggled'."),
    difficulty: str = typer.Option(..., "--difficulty", help="Difficulty level."),
    observations: str = typer.Option(..., "--observations", help="What the child did and said."),
) -> None:
    """Record the recent activity that unlocks suggestion rounds."""

    recent = RecentActivity(name=name, result=result, difficulty_level=difficulty, observations=observations)
    try:
        _service(ctx, offline=True).update_recent_activity(student_id, recent)
    except ActivityError as exc:
        _fail(exc)
    console.print(f"[green]Recent activity updated for[/green] {student_id}")


# ----------------------------------------------------------------------
# Suggestion rounds


@app.command()
def suggest(
    ctx: typer.Context,
    student_id: str = typer.Argument(..., help="Student identifier."),
    rounds: int = typer.Option(1, "--rounds", min=1, max=10, help="Generation rounds within one session."),
    exclude: List[str] = typer.Option([], "--exclude", help="Titles to treat as already shown (repeatable)."),
    home: bool = typer.Option(False, "--home", help="Generate a single at-home activity instead."),
    location: str = typer.Option("indoor", "--location", help="indoor or outdoor."),
    supervision: Optional[str] = typer.Option(None, "--supervision", help="none, minimal, or full."),
    age: Optional[str] = typer.Option(None, "--age", help="Age band override such as '4-5 years'."),
    duration: str = typer.Option("30 minutes", "--duration"),
    materials: Optional[str] = typer.Option(None, "--materials", help="Comma-separated materials at hand."),
    offline: bool = typer.Option(False, "--offline", help="Skip the LM and use the fallback templates."),
    save_first: bool = typer.Option(False, "--save-first", help="Save the first activity of the last round."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of tables."),
) -> None:
    """Run one or more suggestion rounds for a student."""

    try:
        options = ActivityOptions(
            age=age,
            location=location,
            duration=duration,
            supervision=supervision,
            available_materials=materials,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    service = _service(ctx, offline=offline)
    results: List[SuggestionRound] = []
    try:
        session = service.open_session(student_id)
        DeduplicationTracker(session).record_shown(exclude)
        for _ in range(rounds):
            if home:
                results.append(service.request_home_activity(session, options))
            else:
                results.append(service.request_suggestions(session, options=options))
        saved = None
        if save_first and results and results[-1].activities:
            saved = service.save_activity(session, results[-1].activities[0].id)
    except ActivityError as exc:
        _fail(exc)

    if as_json:
        payload = [round_.model_dump(mode="json") for round_ in results]
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    for round_ in results:
        _print_round(round_)
    if saved is not None:
        console.print(f"[green]Saved[/green] {saved.title} ({saved.id})")


# ----------------------------------------------------------------------
# Collections


@app.command()
def restore(
    ctx: typer.Context,
    student_id: str = typer.Argument(..., help="Student identifier."),
    activity_id: str = typer.Argument(..., help="Discarded activity id."),
) -> None:
    """Move a discarded activity back into the saved list."""

    try:
        restored = _service(ctx, offline=True).restore_discarded(student_id, activity_id)
    except ActivityError as exc:
        _fail(exc)
    console.print(f"[green]Restored[/green] {restored.title}")


@app.command()
def remove(
    ctx: typer.Context,
    student_id: str = typer.Argument(..., help="Student identifier."),
    activity_id: str = typer.Argument(..., help="Activity id to delete."),
    from_collection: str = typer.Option("saved", "--from", help="saved or discarded."),
) -> None:
    """Delete an activity from the saved or discarded list."""

    try:
        _service(ctx, offline=True).remove_activity(student_id, activity_id, from_collection)
    except ActivityError as exc:
        _fail(exc)
    console.print(f"[green]Removed[/green] {activity_id} from {from_collection}")


@app.command("log-past")
def log_past(
    ctx: typer.Context,
    student_id: str = typer.Argument(..., help="Student identifier."),
    name: str = typer.Option(..., "--name", help="Activity name."),
    result: Optional[str] = typer.Option(None, "--result"),
    difficulty: Optional[str] = typer.Option(None, "--difficulty"),
    date: Optional[datetime] = typer.Option(None, "--date", formats=["%Y-%m-%d"], help="Date the activity happened."),
    notes: Optional[str] = typer.Option(None, "--notes"),
) -> None:
    """Record an activity the student already did."""

    try:
        entry = _service(ctx, offline=True).log_past_activity(
            student_id,
            name=name,
            result=result,
            difficulty_level=difficulty,
            date=date,
            notes=notes,
        )
    except ActivityError as exc:
        _fail(exc)
    console.print(f"[green]Logged[/green] {entry.title} ({entry.id})")


# ----------------------------------------------------------------------
# Stories


def _print_story(item: Story) -> None:
    console.print(f"[bold]{item.title}[/bold] ({item.id})")
    console.print(item.content)
    if item.note:
        console.print(f"[cyan]{item.note}[/cyan]")


@app.command()
def story(
    ctx: typer.Context,
    story_context: str = typer.Argument(..., metavar="CONTEXT", help="What happened today, e.g. 'painting with sponges'."),
    student_id: Optional[str] = typer.Option(None, "--student", help="Personalise the story for this student."),
    exclude: List[str] = typer.Option([], "--exclude", help="Story titles not to offer again (repeatable)."),
    offline: bool = typer.Option(False, "--offline", help="Skip the LM and use the backup stories."),
    save: bool = typer.Option(False, "--save", help="Save the story to the student's saved stories."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of text."),
) -> None:
    """Write a short story for parents about something their child did."""

    if save and student_id is None:
        raise typer.BadParameter("--save needs --student")
    service = _service(ctx, offline=offline)
    try:
        drafted = service.request_story(story_context, student_id=student_id, exclude_titles=exclude)
        if save:
            service.save_story(student_id, drafted)
    except ActivityError as exc:
        _fail(exc)

    if as_json:
        typer.echo(drafted.model_dump_json(indent=2))
        return
    _print_story(drafted)
    if save:
        console.print(f"[green]Saved story for[/green] {student_id}")


@app.command()
def stories(
    ctx: typer.Context,
    student_id: str = typer.Argument(..., help="Student identifier."),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of text."),
) -> None:
    """List a student's saved stories."""

    try:
        saved = _service(ctx, offline=True).list_stories(student_id)
    except ActivityError as exc:
        _fail(exc)
    if as_json:
        typer.echo(json.dumps([item.model_dump(mode="json") for item in saved], indent=2, ensure_ascii=False))
        return
    if not saved:
        console.print("[yellow]No saved stories.[/yellow]")
    for item in saved:
        _print_story(item)


@app.command("remove-story")
def remove_story(
    ctx: typer.Context,
    student_id: str = typer.Argument(..., help="Student identifier."),
    story_id: str = typer.Argument(..., help="Saved story id."),
) -> None:
    """Delete a saved story."""

    try:
        _service(ctx, offline=True).remove_story(student_id, story_id)
    except ActivityError as exc:
        _fail(exc)
    console.print(f"[green]Removed story[/green] {story_id}")


if __name__ == "__main__":  # pragma: no cover
    app()
