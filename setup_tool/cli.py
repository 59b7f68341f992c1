"""
Command-line interface for the Zona Mix hub.

Provides setup, inspection and maintenance commands using Click framework.
"""

import logging

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from services.core import HubCore
from shared.audio import AudioProcessor
from shared.config import HubConfig
from shared.constants import DEFAULT_TRACKS_LIMIT
from shared.errors import HubError
from .provider_factory import StorageProviderFactory

console = Console()


def _load_config(ctx) -> HubConfig:
    obj = ctx.find_object(dict) or {}
    config = HubConfig.from_env(obj.get('env_file'))
    if obj.get('data_dir'):
        config = config.relocated(obj['data_dir'])
    return config


def _core(ctx) -> HubCore:
    return HubCore(_load_config(ctx))


@click.group()
@click.version_option(version="1.0.0")
@click.option('--env-file', type=click.Path(dir_okay=False), help='Load settings from this .env file')
@click.option('--data-dir', type=click.Path(file_okay=False), help='Override ZONAMIX_DATA_DIR')
@click.pass_context
def cli(ctx, env_file, data_dir):
    """
    🎧 Zona Mix - DJ Control Hub

    Set up storage, inspect accounts and tracks, and run the server.
    """
    ctx.ensure_object(dict)
    ctx.obj['env_file'] = env_file
    ctx.obj['data_dir'] = data_dir


@cli.command()
@click.pass_context
def init(ctx):
    """
    Initialize the database and the storage buckets.
    """
    config = _load_config(ctx)
    console.print(Panel.fit(
        "[bold cyan]🎧 Zona Mix Setup[/bold cyan]\n\n"
        f"Storage: {StorageProviderFactory.get_provider_name(config.storage_provider)}",
        border_style="cyan"
    ))

    try:
        core = HubCore(config)
        buckets = core.init_storage()
    except HubError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise SystemExit(1)

    console.print(f"[green]✓[/green] Database: [cyan]{config.database_path}[/cyan]")
    for bucket, physical in buckets.items():
        console.print(f"[green]✓[/green] Bucket [cyan]{bucket}[/cyan] -> {physical}")


@cli.command()
@click.pass_context
def status(ctx):
    """Show configuration and row counts."""
    core = _core(ctx)

    table = Table(title="Configuración", show_header=True, header_style="bold magenta")
    table.add_column("Clave", style="cyan")
    table.add_column("Valor")
    for key, value in core.config.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)

    counts = Table(title="Datos", show_header=True, header_style="bold magenta")
    counts.add_column("Tabla", style="cyan")
    counts.add_column("Filas", justify="right", style="green")
    for name, count in core.status().items():
        counts.add_row(name, str(count))
    console.print(counts)


@cli.command()
@click.option('--query', '-q', default=None, help='Filter by display name')
@click.pass_context
def users(ctx, query):
    """List DJ profiles."""
    core = _core(ctx)
    profiles = core.users.search_users(core.users.get_all_users(), query)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Apodo", style="cyan")
    table.add_column("Nombre")
    table.add_column("Teléfono")
    for p in profiles:
        table.add_row(p.id, p.display_name or "-", p.nombre or "-", p.telefono or "-")
    console.print(table)
    console.print(f"Total: [bold]{len(profiles)}[/bold]")


@cli.command()
@click.option('--limit', default=DEFAULT_TRACKS_LIMIT, type=click.IntRange(1, 1000))
@click.option('--user', 'user_id', default=None, help='Only tracks of this user id')
@click.pass_context
def tracks(ctx, limit, user_id):
    """List tracks, newest first."""
    core = _core(ctx)
    items = core.tracks.get_user_tracks(user_id) if user_id else core.tracks.get_all_tracks(limit)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Título", style="cyan")
    table.add_column("Tipo")
    table.add_column("Género")
    table.add_column("Duración", justify="right")
    table.add_column("DJ", style="green")
    table.add_column("Descargable")
    for t in items:
        table.add_row(
            t.title,
            t.content_type,
            t.genre or "-",
            AudioProcessor.format_duration(t.duration),
            (t.profile or {}).get("display_name") or "-",
            "sí" if t.is_downloadable else "no",
        )
    console.print(table)
    console.print(f"Total: [bold]{len(items)}[/bold]")


@cli.command('create-user')
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--nombre', prompt=True)
@click.option('--telefono', prompt=True)
@click.pass_context
def create_user(ctx, email, password, nombre, telefono):
    """Register an account with its profile."""
    core = _core(ctx)
    try:
        result = core.auth.register_user(email, password, nombre, telefono)
    except HubError as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise SystemExit(1)
    console.print(f"[green]✓[/green] Usuario creado: [cyan]{result['user']['email']}[/cyan] ({result['user']['id']})")


@cli.command('purge-sessions')
@click.pass_context
def purge_sessions(ctx):
    """Delete sessions whose refresh token has expired."""
    removed = _core(ctx).auth.purge_expired_sessions()
    console.print(f"[green]✓[/green] Sesiones eliminadas: [bold]{removed}[/bold]")


@cli.command()
@click.option('--port', default=None, type=int, help='Port to listen on (default ZONAMIX_PORT or 5005)')
@click.option('--debug/--no-debug', default=None)
@click.pass_context
def serve(ctx, port, debug):
    """Run the API server."""
    from shared import api

    config = _load_config(ctx)
    debug = config.debug if debug is None else debug
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    api.configure(config)
    api.start_api(port=port or config.port, debug=debug)


if __name__ == '__main__':
    cli()
