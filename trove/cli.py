"""Trove CLI tool (trovectl)."""

import typer

app = typer.Typer(name="trovectl", help="Trove file storage CLI")
db_app = typer.Typer(help="Database management commands")
user_app = typer.Typer(help="User management commands")
cleanup_app = typer.Typer(help="One-off cleanup runs")
app.add_typer(db_app, name="db")
app.add_typer(user_app, name="user")
app.add_typer(cleanup_app, name="cleanup")


@db_app.command("init")
def db_init():
    """Create all tables that do not exist yet."""
    from trove.db.session import init_db

    init_db()
    typer.echo("Database tables created (or already exist)")


@db_app.command("reset")
def db_reset():
    """Drop and recreate every table (DANGER)."""
    confirm = typer.confirm("This will DROP all Trove tables and their data. Continue?")
    if not confirm:
        raise typer.Abort()
    from trove.db.base import Base
    from trove.db.session import engine
    import trove.models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    typer.echo("Database reset")


@user_app.command("create-admin")
def create_admin(
    username: str = typer.Option(None, help="Admin username (defaults to ADMIN_USERNAME)"),
    email: str = typer.Option(None, help="Admin email (defaults to ADMIN_EMAIL)"),
    password: str = typer.Option(None, help="Admin password (defaults to ADMIN_PASSWORD)"),
):
    """Create an administrator account."""
    from trove.core.config import settings
    from trove.core.exceptions import TroveError
    from trove.db.session import SessionLocal, init_db
    from trove.services.auth_service import auth_service

    init_db()
    db = SessionLocal()
    try:
        user = auth_service.create_user(
            db,
            username or settings.ADMIN_USERNAME,
            email or settings.ADMIN_EMAIL,
            password or settings.ADMIN_PASSWORD,
            is_admin=True,
        )
    except TroveError as e:
        typer.echo(f"Could not create admin: {e.message}", err=True)
        raise typer.Exit(code=1)
    finally:
        db.close()
    typer.echo(f"Admin '{user.username}' created (id={user.id})")


@cleanup_app.command("trash")
def cleanup_trash():
    """Purge trash older than each user's retention window."""
    from trove.services.sweepers import RetentionSweeper

    removed = RetentionSweeper().run_once()
    typer.echo(f"Permanently deleted {removed} files")


@cleanup_app.command("sessions")
def cleanup_sessions():
    """Expire idle upload sessions and drop old finished ones."""
    from trove.services.sweepers import SessionSweeper

    count = SessionSweeper().run_once()
    typer.echo(f"Cleaned up {count} upload sessions")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(False, help="Auto-reload"),
):
    """Start the FastAPI server."""
    import uvicorn
    uvicorn.run("trove.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
