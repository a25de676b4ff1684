import logging
import sys
from datetime import datetime
from zoneinfo import ZoneInfo

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config.manager import ConfigManager
from ..database.connection import DatabaseManager, build_store
from ..errors import DaeliError
from ..services.planner import PlannerService
from ..services.resolver import tally_votes

console = Console()
config_manager = ConfigManager()


def init_services():
    """Build the planner from the current configuration"""
    if not config_manager.validate():
        sys.exit(1)
    store = build_store(config_manager)
    return PlannerService(store, strict_references=config_manager.get('features.strict_references', False))


def display_tz():
    return ZoneInfo(config_manager.get('app.timezone', 'UTC'))


def format_time(value: datetime) -> str:
    if value is None:
        return ""
    return value.astimezone(display_tz()).strftime("%a %b %d, %I:%M %p")


def fail(error: DaeliError):
    console.print(f"[bold red]{error.kind}:[/bold red] {error.message}")
    sys.exit(1)


@click.group()
@click.option('--config', '-c', help='Path to .env file')
def cli(config):
    """Daeli - plan dates together"""
    global config_manager
    if config:
        config_manager = ConfigManager(config)
    # Keep the terminal quiet unless debugging
    level = config_manager.get('development.log_level') if config_manager.get('development.debug') else 'WARNING'
    logging.basicConfig(level=level)


@cli.command()
def setup():
    """Run the setup wizard"""
    config_manager.setup_wizard()
    console.print("\nTo get started, try: daeli init-db && daeli ai-ideas")


@cli.command('init-db')
def init_db():
    """Create the database tables"""
    if config_manager.get('app.store_backend') != 'sql':
        console.print("[yellow]The in-memory store needs no initialization[/yellow]")
        return
    config_manager.ensure_directories()
    tables = DatabaseManager(config_manager.get('app.database_url')).init_database()
    console.print(f"[green]✓[/green] Database ready: {', '.join(tables)}")


@cli.command()
@click.option('--couple', help='Couple token to filter by')
def ideas(couple):
    """List ideas"""
    planner = init_services()
    items = planner.list_ideas(couple)
    if not items:
        console.print("[yellow]No ideas yet[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", overflow="fold")
    table.add_column("Idea", no_wrap=True)
    table.add_column("Source")
    table.add_column("Tags", style="dim")
    table.add_column("Location", style="dim")
    for idea in items:
        table.add_row(idea.id, idea.title, idea.source, ", ".join(idea.tags or []), idea.location or "")
    console.print(table)


@cli.command('add-idea')
@click.argument('title')
@click.option('--description', '-d')
@click.option('--location', '-l')
@click.option('--tag', '-t', 'tags', multiple=True, help='Tag, may be repeated')
@click.option('--couple', help='Couple token')
def add_idea(title, description, location, tags, couple):
    """Add a manual idea"""
    planner = init_services()
    try:
        idea = planner.create_idea({
            'title': title,
            'description': description,
            'location': location,
            'tags': list(tags) or None,
            'coupleToken': couple,
        })
    except DaeliError as e:
        fail(e)
    console.print(f"[green]✓[/green] Added idea: [bold]{idea.title}[/bold]")
    console.print(f"   id {idea.id}", soft_wrap=True)


@cli.command('ai-ideas')
@click.option('--couple', help='Couple token')
def ai_ideas(couple):
    """Add the curated AI picks"""
    planner = init_services()
    for idea in planner.create_ai_ideas(couple):
        console.print(f"[green]✓[/green] {idea.title} [dim]({', '.join(idea.tags or [])})[/dim]")


@cli.command()
@click.argument('idea_id')
@click.argument('start')
@click.argument('end')
@click.option('--title', help='Title override')
@click.option('--description', help='Description override')
@click.option('--location', help='Location override')
@click.option('--tag', '-t', 'tags', multiple=True)
@click.option('--couple', help='Couple token')
def suggest(idea_id, start, end, title, description, location, tags, couple):
    """Propose a timeslot (ISO 8601 START and END) for an idea"""
    planner = init_services()
    try:
        suggestion = planner.create_suggestion({
            'ideaId': idea_id,
            'startUtc': start,
            'endUtc': end,
            'titleOverride': title,
            'descriptionOverride': description,
            'locationOverride': location,
            'tags': list(tags) or None,
            'coupleToken': couple,
        })
        display = planner.resolve_display(suggestion.id)
    except DaeliError as e:
        fail(e)
    console.print(f"\n[green]✓[/green] Suggested: [bold]{display.title}[/bold]")
    console.print(f"   📅 {format_time(display.start)} - {format_time(display.end)}")
    if display.location:
        console.print(f"   📍 {display.location}")
    console.print(f"   id {suggestion.id}", soft_wrap=True)


@cli.command()
@click.option('--status', type=click.Choice(['pending', 'accepted', 'cancelled']))
@click.option('--couple', help='Couple token to filter by')
def suggestions(status, couple):
    """List suggestions with their votes"""
    planner = init_services()
    items = planner.list_suggestions(couple, status)
    if not items:
        console.print("[yellow]No suggestions found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", overflow="fold")
    table.add_column("When", style="dim")
    table.add_column("Suggestion", no_wrap=True)
    table.add_column("Status")
    table.add_column("Votes")
    for suggestion in items:
        display = planner.resolve_display(suggestion.id)
        up, down = tally_votes(suggestion.votes)
        table.add_row(suggestion.id, format_time(display.start), display.title, suggestion.status, f"👍 {up} / 👎 {down}")
    console.print(table)


@cli.command()
@click.argument('suggestion_id')
@click.argument('partner_id')
@click.argument('vote', type=click.Choice(['up', 'down']))
def vote(suggestion_id, partner_id, vote):
    """Cast or change a partner's vote"""
    planner = init_services()
    try:
        suggestion = planner.cast_vote(suggestion_id, partner_id, vote)
    except DaeliError as e:
        fail(e)
    up, down = tally_votes(suggestion.votes)
    console.print(f"[green]✓[/green] Votes: {up} up / {down} down")


@cli.command()
@click.argument('suggestion_id')
@click.option('--by', 'accepted_by', help='Partner accepting the suggestion')
def accept(suggestion_id, accepted_by):
    """Accept a suggestion and put it on the calendar"""
    planner = init_services()
    try:
        result = planner.accept(suggestion_id, accepted_by=accepted_by)
    except DaeliError as e:
        fail(e)
    if result.created:
        console.print(f"\n[green]✓[/green] Accepted: [bold]{result.display.title}[/bold]")
    else:
        console.print(f"\n[yellow]Already accepted:[/yellow] [bold]{result.display.title}[/bold]")
    console.print(f"   📅 {format_time(result.display.start)}")
    if result.display.location:
        console.print(f"   📍 {result.display.location}")


@cli.command()
@click.argument('suggestion_id')
def cancel(suggestion_id):
    """Cancel a pending suggestion"""
    planner = init_services()
    try:
        planner.cancel(suggestion_id)
    except DaeliError as e:
        fail(e)
    console.print("[green]Suggestion cancelled[/green]")


@cli.command()
@click.argument('suggestion_id')
def show(suggestion_id):
    """Show how a suggestion displays"""
    planner = init_services()
    try:
        suggestion = planner.get_suggestion(suggestion_id)
        display = planner.resolve_display(suggestion_id)
    except DaeliError as e:
        fail(e)
    up, down = tally_votes(suggestion.votes)
    body = [
        f"[bold]{display.title}[/bold]",
        f"📅 {format_time(display.start)} - {format_time(display.end)}",
    ]
    if display.location:
        body.append(f"📍 {display.location}")
    if display.description:
        body.append(display.description)
    body.append(f"Status: {suggestion.status}   Votes: {up} up / {down} down")
    console.print(Panel("\n".join(body), title="Suggestion"))


@cli.command()
@click.option('--couple', help='Couple token to filter by')
@click.option('--upcoming', is_flag=True, help='Only the next dates that have not started yet')
def events(couple, upcoming):
    """Show agreed dates"""
    planner = init_services()
    views = planner.list_upcoming(couple) if upcoming else planner.list_event_views(couple)
    if not views:
        console.print("[yellow]No events yet[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("When", style="dim")
    table.add_column("Date", no_wrap=True)
    table.add_column("Location", style="dim")
    for view in views:
        title = f"🎁 {view.title}" if view.is_surprise else view.title
        table.add_row(format_time(view.start_utc), title, view.location or "")
    console.print(table)


@cli.command()
@click.option('--host', default=None)
@click.option('--port', default=None, type=int)
def serve(host, port):
    """Run the HTTP API"""
    import uvicorn
    uvicorn.run(
        "daeli.api.main:app",
        host=host or config_manager.get('api.host'),
        port=port or config_manager.get('api.port'),
        log_level=config_manager.get('development.log_level', 'INFO').lower(),
    )


if __name__ == '__main__':
    cli()
