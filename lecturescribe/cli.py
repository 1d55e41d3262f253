"""Typer CLI entry point for LectureScribe."""

from __future__ import annotations

import threading
from typing import Optional

import typer

from .config import (
    EnvironmentSettingError,
    clear_environment_setting,
    get_settings,
    list_environment_settings,
    update_environment_setting,
)
from .core.audio.base import CaptureError
from .core.pipeline.controller import SessionStateError
from .core.pipeline.factory import SessionConfigurationError, SessionRequest, create_controller
from .core.pipeline.scheduler import LoopScheduler
from .data.models import SessionSnapshot, SessionState
from .logging import configure_logging, get_logger, set_level
from .services.transcription.http_client import HttpTranscriptionService
from .ui.console import RecordingConsoleUI, format_elapsed

app = typer.Typer(help="LectureScribe live lecture transcription")
config_app = typer.Typer(help="Inspect and edit environment-backed settings")
app.add_typer(config_app, name="config")
LOGGER = get_logger(__name__)

# Extra time granted to the final upload after ``finish`` before giving up.
FINISH_GRACE_SECONDS = 5.0


def _format_value(value) -> str:
    if value is None:
        return "(unset)"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@app.command()
def devices() -> None:
    """List available audio input devices."""

    configure_logging()
    try:
        from .core.audio.sounddevice_backend import format_device_table
    except ImportError as exc:  # pragma: no cover - handled by dependency guards
        raise typer.BadParameter("sounddevice dependency is required for audio capture") from exc
    try:
        typer.echo(format_device_table())
    except CaptureError as exc:
        typer.echo(f"Unable to list devices: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def record(
    duration: Optional[float] = typer.Option(
        None, help="Record unattended for this many seconds; default opens the interactive console"
    ),
    backend: Optional[str] = typer.Option(None, help="Transcription backend: dummy/http/openai"),
    service_url: Optional[str] = typer.Option(None, help="Base URL of the transcription server"),
    context_id: Optional[str] = typer.Option(None, help="Context identifier forwarded with every upload"),
    device: Optional[str] = typer.Option(None, help="Input device id/name"),
    sample_rate: Optional[int] = typer.Option(None, help="Override sample rate"),
    channels: Optional[int] = typer.Option(None, help="Override number of channels"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Record a lecture and transcribe it while it is being captured."""

    configure_logging()
    if verbose:
        set_level("DEBUG")
    settings = get_settings()
    request = SessionRequest(
        backend=backend,
        service_url=service_url,
        context_id=context_id,
        device=device,
        sample_rate=sample_rate,
        channels=channels,
    )

    if duration is None:
        RecordingConsoleUI(settings=settings, request=request).run()
        return
    if duration < 0:
        raise typer.BadParameter("duration must not be negative")

    with LoopScheduler() as scheduler:
        try:
            controller = create_controller(request, scheduler, settings=settings)
        except SessionConfigurationError as exc:
            raise typer.BadParameter(str(exc)) from exc

        ended = threading.Event()

        def on_snapshot(snapshot: SessionSnapshot) -> None:
            if snapshot.state is SessionState.IDLE:
                ended.set()

        scheduler.call_blocking(controller.add_listener, on_snapshot)
        try:
            scheduler.call_blocking(controller.start)
        except CaptureError as exc:
            typer.echo(f"Could not open the microphone: {exc}", err=True)
            raise typer.Exit(code=1) from exc
        typer.echo(f"Recording for {duration:.0f}s (Ctrl+C to finish early)...")

        try:
            ended.wait(duration)
        except KeyboardInterrupt:
            typer.echo("")

        if not ended.is_set():
            typer.echo("Finishing: sending the remaining audio...")
            try:
                scheduler.call_blocking(controller.finish)
            except SessionStateError:
                LOGGER.debug("Session ended before finish was requested")
            if not ended.wait(settings.dispatch_timeout_seconds + FINISH_GRACE_SECONDS):
                LOGGER.warning("Session did not finish in time; aborting")
                scheduler.call_blocking(controller.stop)

        snapshot = scheduler.call_blocking(controller.snapshot)

    typer.echo(f"Title: {snapshot.title or '(none)'}")
    if snapshot.suggested_title:
        typer.echo(f"Suggested title: {snapshot.suggested_title}")
    if snapshot.key_topics:
        typer.echo(f"Key topics: {', '.join(snapshot.key_topics)}")
    typer.echo(f"Duration: {format_elapsed(snapshot.elapsed_seconds)}")
    typer.echo("Transcript:")
    typer.echo(snapshot.transcript or "(empty)")
    if snapshot.last_error:
        typer.echo(f"Error: {snapshot.last_error}", err=True)
        raise typer.Exit(code=1)


@app.command()
def health(
    service_url: Optional[str] = typer.Option(None, help="Base URL of the transcription server"),
) -> None:
    """Check that the transcription server reports itself healthy."""

    configure_logging()
    service = HttpTranscriptionService(base_url=service_url)
    try:
        healthy = service.check_health()
    finally:
        service.close()
    if healthy:
        typer.echo(f"{service.base_url} is healthy")
        return
    typer.echo(f"{service.base_url} is not healthy", err=True)
    raise typer.Exit(code=1)


@config_app.command("show")
def config_show() -> None:
    """Print every setting with its environment variable and default."""

    for entry in list_environment_settings(get_settings()):
        typer.echo(
            f"{entry.env_name} = {_format_value(entry.value)} (default: {_format_value(entry.default)})"
        )


@config_app.command("set")
def config_set(
    field: str = typer.Argument(..., help="Setting name, e.g. flush_interval_seconds"),
    value: str = typer.Argument(..., help="New value"),
) -> None:
    """Persist a setting to the .env file."""

    try:
        settings = update_environment_setting(field.lower(), value)
    except EnvironmentSettingError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"{field.lower()} = {_format_value(getattr(settings, field.lower()))}")


@config_app.command("unset")
def config_unset(field: str = typer.Argument(..., help="Setting name")) -> None:
    """Remove a setting override so its default applies again."""

    try:
        settings = clear_environment_setting(field.lower())
    except EnvironmentSettingError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"{field.lower()} reset to {_format_value(getattr(settings, field.lower()))}")


if __name__ == "__main__":  # pragma: no cover
    app()
