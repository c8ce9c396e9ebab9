"""Entry-point for the MarkNote application."""

from __future__ import annotations

import inspect
import logging
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from marknote.bootstrap import initialize_app
from marknote.logging_utils import DEFAULT_LOG_FORMAT, configure_logging, get_log_file_path
from marknote.services.credentials import CredentialStore
from marknote.services.workspace import NoteWorkspace
from marknote.ui.overview import OverviewUI
from marknote.web import create_app
from marknote.web.server import get_max_upload_bytes


LOGGER = logging.getLogger("marknote.cli")


cli = typer.Typer(add_completion=False, help="MarkNote management commands")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3001


def _prepare_logging(log_root: Path) -> None:
    log_file = get_log_file_path(log_root)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configure_logging(handlers=[file_handler, stream_handler])


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None)


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server", envvar="MARKNOTE_HOST"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server", envvar="MARKNOTE_PORT"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="MARKNOTE_ROOT_PATH",
    ),
) -> None:
    """Run the MarkNote API and front end."""

    app_config = initialize_app()
    _prepare_logging(app_config.log_root)

    workspace = NoteWorkspace.from_config(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(workspace, config=app_config, root_path=normalized_root)

    config_kwargs = {}
    max_upload_bytes = get_max_upload_bytes()
    if max_upload_bytes > 0:
        config_signature = inspect.signature(uvicorn.Config.__init__)
        if "limit_max_request_size" in config_signature.parameters:
            config_kwargs["limit_max_request_size"] = max_upload_bytes
        else:
            LOGGER.debug(
                "uvicorn.Config has no 'limit_max_request_size'; uploads are capped in the app only.",
            )

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
        **config_kwargs,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server
    LOGGER.info("Serving notes from %s on http://%s:%s%s/", app_config.notes_root, host, port, normalized_root)
    server.run()


@cli.command()
def overview() -> None:
    """Summarise stored notes, images and share links."""

    app_config = initialize_app()
    _prepare_logging(app_config.log_root)

    workspace = NoteWorkspace.from_config(app_config)
    OverviewUI(workspace).run()


@cli.command("set-login")
def set_login(
    username: str = typer.Argument(..., help="Login name"),
    password: str = typer.Argument(..., help="Login password"),
) -> None:
    """Write the shared login used by the web UI."""

    app_config = initialize_app()
    store = CredentialStore(app_config.credentials_file)
    try:
        store.write(username, password)
    except ValueError as error:
        raise typer.BadParameter(str(error), param_hint="USERNAME/PASSWORD") from error
    typer.echo(f"Login written to: {store.path}")


if __name__ == "__main__":
    cli()
