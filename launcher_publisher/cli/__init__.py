"""
Command Line Interface for Launcher Publisher.
"""

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..db.base import get_session_local, init_database
from ..db.services import BuildLedger, ProfileService
from ..errors import BuildFailedError, PublisherError
from ..logging_config import configure_logging
from ..pipeline.publisher import ArtifactPublisher
from ..schemas import ProfileRebuildRequest
from ..storage import create_object_store

app = typer.Typer(help="Launcher Publisher - build and publish launcher profiles")
console = Console()


def _fail(error: PublisherError) -> None:
    console.print(f"❌ [red]{error.code}[/red]: {error.message}")
    raise typer.Exit(code=1)


@app.callback()
def setup() -> None:
    """Configure logging before any command runs."""
    configure_logging(get_settings())


@app.command("init-db")
def init_db():
    """Create all database tables."""
    init_database()
    console.print("✅ Database initialized")


@app.command("create-profile")
def create_profile(
    name: str = typer.Argument(..., help="Display name"),
    slug: str = typer.Argument(..., help="URL-safe identifier used in storage keys"),
    description: str = typer.Option("", help="Profile description"),
):
    """Create a profile."""
    db = get_session_local()()
    try:
        profile = ProfileService(db).create_profile(name=name, slug=slug, description=description)
        console.print(f"✅ Created profile {profile.slug} ({profile.id})")
    except PublisherError as e:
        _fail(e)
    finally:
        db.close()


@app.command()
def rebuild(
    slug: str = typer.Argument(..., help="Profile slug"),
    loader: str = typer.Option("", help="Loader type (vanilla, forge, fabric, ...)"),
    mc_version: str = typer.Option("", help="Minecraft version"),
    client_version: str = typer.Option("", help="Client version label"),
    source_sub_path: str = typer.Option("", help="Build from this sub directory only"),
    publish_to_servers: bool = typer.Option(True, help="Point the profile's servers at the build"),
):
    """Rebuild a profile and publish its manifest."""
    settings = get_settings()
    db = get_session_local()()
    try:
        profile = ProfileService(db).get_by_slug(slug)
        if profile is None:
            console.print(f"❌ Profile '{slug}' not found")
            raise typer.Exit(code=1)

        request = ProfileRebuildRequest(
            loader_type=loader,
            mc_version=mc_version,
            client_version=client_version,
            source_sub_path=source_sub_path,
            publish_to_servers=publish_to_servers,
        )
        publisher = ArtifactPublisher(db, create_object_store(settings.storage_uri), settings)
        with console.status(f"Building {slug}..."):
            build = publisher.rebuild_profile(profile.id, request)
    except BuildFailedError as e:
        console.print(f"❌ Build {e.build_id} failed")
        _fail(e.cause)
    except PublisherError as e:
        _fail(e)
    finally:
        db.close()

    rprint(
        Panel.fit(
            f"Build {build.id}\n"
            f"Files: {build.files_count} ({build.total_size_bytes} bytes), "
            f"skipped: {build.skipped_files_count}\n"
            f"Manifest: {build.manifest_key}",
            title=f"✅ {slug}",
            style="bold green",
        )
    )


@app.command()
def builds(
    slug: str = typer.Argument(..., help="Profile slug"),
    limit: int = typer.Option(20, help="Number of builds to show"),
):
    """List a profile's builds, newest first."""
    settings = get_settings()
    db = get_session_local()()
    try:
        profile = ProfileService(db).get_by_slug(slug)
        if profile is None:
            console.print(f"❌ Profile '{slug}' not found")
            raise typer.Exit(code=1)

        ledger = BuildLedger(db, history_max=settings.build_history_max)
        rows = ledger.list_builds(profile.id, limit=limit)

        table = Table(title=f"Builds of {slug}", show_header=True, header_style="bold magenta")
        table.add_column("Build", style="cyan")
        table.add_column("Status")
        table.add_column("Client")
        table.add_column("Files", justify="right")
        table.add_column("Created")
        table.add_column("Error")

        status_emoji = {"completed": "🟢", "failed": "🔴", "running": "🟡", "pending": "⚪"}
        for build in rows:
            marker = " (latest)" if build.id == profile.latest_build_id else ""
            table.add_row(
                f"{build.id}{marker}",
                f"{status_emoji.get(build.status, '❓')} {build.status}",
                build.client_version,
                str(build.files_count) if build.files_count is not None else "-",
                build.created_at.strftime("%Y-%m-%d %H:%M:%S") if build.created_at else "",
                (build.error_message or "")[:60],
            )
        console.print(table)
    finally:
        db.close()


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    instance = get_settings().instance_label
    suffix = f" ({instance})" if instance else ""
    rprint(Panel.fit(f"Launcher Publisher v{__version__}{suffix}", style="bold green"))


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
