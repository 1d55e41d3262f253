"""Interactive console UI for managing live lecture transcriptions."""

from __future__ import annotations

import threading
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Optional

from ..config import (
    EnvironmentSettingError,
    Settings,
    clear_environment_setting,
    get_settings,
    list_environment_settings,
    update_environment_setting,
)
from ..core.audio.base import CaptureError
from ..core.pipeline.controller import SessionController, SessionStateError
from ..core.pipeline.factory import SessionConfigurationError, SessionRequest, create_controller
from ..core.pipeline.scheduler import LoopScheduler, Scheduler
from ..data.models import SessionSnapshot, SessionState
from ..logging import get_logger

LOGGER = get_logger(__name__)

ControllerFactory = Callable[[SessionRequest, Scheduler], SessionController]


def format_elapsed(seconds: int) -> str:
    minutes, secs = divmod(max(int(seconds), 0), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class RecordingConsoleUI:
    """Simple interactive console used to drive a session from the terminal.

    Commands are marshalled onto the session scheduler; snapshots published
    by the controller are turned into queued messages that are printed
    between menu prompts.
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        request: Optional[SessionRequest] = None,
        scheduler: Optional[Scheduler] = None,
        controller_factory: Optional[ControllerFactory] = None,
        device_table: Optional[Callable[[], str]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._request = request or SessionRequest()
        self._owns_scheduler = scheduler is None
        self._scheduler: Scheduler = scheduler or LoopScheduler()
        self._controller_factory = controller_factory or self._default_controller
        self._device_table = device_table
        self._controller: Optional[SessionController] = None
        self._messages: Deque[str] = deque()
        self._lock = threading.Lock()
        self._last: Optional[SessionSnapshot] = None
        self._running = True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run(self) -> None:
        """Enter the interactive UI loop."""

        if self._owns_scheduler and isinstance(self._scheduler, LoopScheduler):
            self._scheduler.start()
        self._info("Launching LectureScribe console. Press Ctrl+C to exit.")
        try:
            while self._running:
                self._flush_messages()
                self._print_menu()
                try:
                    choice = input("Select option: ").strip().lower()
                except (KeyboardInterrupt, EOFError):
                    print()
                    choice = "q"
                self._handle_choice(choice)
        finally:
            self._shutdown_session()
            self._flush_messages()
            if self._owns_scheduler and isinstance(self._scheduler, LoopScheduler):
                self._scheduler.stop()
            print("Goodbye!")

    @property
    def last_snapshot(self) -> Optional[SessionSnapshot]:
        with self._lock:
            return self._last

    # ------------------------------------------------------------------
    # Menu handlers
    # ------------------------------------------------------------------
    def _handle_choice(self, choice: str) -> None:
        if choice in {"1", "start", "s"}:
            self._start_session()
        elif choice in {"2", "pause", "p"}:
            self._run_command("pause", "Recording paused.")
        elif choice in {"3", "resume", "r"}:
            self._run_command("resume", "Recording resumed.")
        elif choice in {"4", "finish", "f"}:
            self._run_command("finish", "Finishing: sending the remaining audio...")
        elif choice in {"5", "abort", "x"}:
            self._run_command("stop", "Recording aborted; unsent audio was discarded.")
        elif choice in {"6", "transcript", "t"}:
            self._show_transcript()
        elif choice in {"7", "devices", "d"}:
            self._show_devices()
        elif choice in {"8", "env", "config", "e"}:
            self._configure_environment()
        elif choice in {"q", "quit", "exit"}:
            self._running = False
        else:
            self._info("Unknown option. Please choose one of the menu entries.")

    def _start_session(self) -> None:
        snapshot = self.last_snapshot
        if snapshot is not None and snapshot.state is not SessionState.IDLE:
            self._info("A recording is already in progress. Finish it before starting a new one.")
            return
        self._release_controller()
        try:
            controller = self._controller_factory(self._request, self._scheduler)
        except SessionConfigurationError as exc:
            self._error(str(exc))
            return
        controller.add_listener(self._on_snapshot)
        self._controller = controller

        current = self._request.context_id or self._settings.context_id or ""
        context_id = input(f"Context id [{current or 'none'}]: ").strip() or current or None
        try:
            self._scheduler.call_blocking(self._controller.start, context_id)
        except SessionStateError as exc:
            self._info(str(exc))
            return
        except CaptureError as exc:
            self._error(f"Could not open the microphone: {exc}")
            return
        self._info("Recording started. Use pause/resume/finish to control the session.")

    def _run_command(self, name: str, message: str) -> None:
        if self._controller is None:
            self._info("No active recording.")
            return
        try:
            self._scheduler.call_blocking(getattr(self._controller, name))
        except SessionStateError as exc:
            self._info(str(exc))
            return
        self._info(message)

    def _show_transcript(self) -> None:
        snapshot = self.last_snapshot
        if snapshot is None or not (snapshot.transcript or snapshot.title):
            self._info("No transcript yet.")
            return
        print()
        print(f"Title: {snapshot.title or '(pending)'}")
        if snapshot.suggested_title and snapshot.suggested_title != snapshot.title:
            print(f"Suggested title: {snapshot.suggested_title}")
        if snapshot.key_topics:
            print(f"Key topics: {', '.join(snapshot.key_topics)}")
        print(snapshot.transcript or "(empty)")

    def _show_devices(self) -> None:
        print()
        print(self._render_device_table())

    def _configure_environment(self) -> None:
        while True:
            settings = list(list_environment_settings(self._settings))
            print()
            print("Environment configuration:")
            for idx, entry in enumerate(settings, start=1):
                print(
                    f"{idx}) {entry.env_name} = {self._format_env_value(entry.value)}"
                    f" (default: {self._format_env_value(entry.default)})"
                )
            print("b) Back to main menu")

            choice = input("Select variable to edit: ").strip().lower()
            if choice in {"b", "back", "q", "exit"}:
                return

            try:
                index = int(choice)
            except ValueError:
                self._info("Invalid selection. Choose a number from the list or 'b' to go back.")
                self._flush_messages()
                continue

            if not 1 <= index <= len(settings):
                self._info("Selection out of range. Try again.")
                self._flush_messages()
                continue

            selected = settings[index - 1]
            new_value = input(
                f"Enter new value for {selected.env_name} (leave empty to reset to default): "
            ).strip()

            try:
                if new_value:
                    self._settings = update_environment_setting(selected.field, new_value)
                    verb = "updated"
                else:
                    self._settings = clear_environment_setting(selected.field)
                    verb = "reset"
            except EnvironmentSettingError as exc:
                self._error(f"Failed to update {selected.env_name}: {exc}")
                self._flush_messages()
                continue

            current = getattr(self._settings, selected.field)
            self._info(f"{selected.env_name} {verb}. Current value: {self._format_env_value(current)}.")
            self._flush_messages()

    # ------------------------------------------------------------------
    # Snapshot handling (scheduler thread)
    # ------------------------------------------------------------------
    def _on_snapshot(self, snapshot: SessionSnapshot) -> None:
        with self._lock:
            previous, self._last = self._last, snapshot
        if previous is None or previous.session_id != snapshot.session_id:
            previous = SessionSnapshot(session_id=snapshot.session_id)

        if snapshot.last_error and snapshot.last_error != previous.last_error:
            self._error(snapshot.last_error)
        if snapshot.title and snapshot.title != previous.title:
            self._info(f"Title: {snapshot.title}")
        if len(snapshot.transcript) > len(previous.transcript):
            added = snapshot.transcript[len(previous.transcript):].strip()
            self._messages.append(f"[transcript] {added}")
        if snapshot.state is SessionState.IDLE and previous.state is not SessionState.IDLE:
            self._info(
                f"Session ended after {format_elapsed(snapshot.elapsed_seconds)} "
                f"with {len(snapshot.transcript.split())} words."
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _default_controller(self, request: SessionRequest, scheduler: Scheduler) -> SessionController:
        return create_controller(request, scheduler, settings=self._settings)

    def _render_device_table(self) -> str:
        if self._device_table is not None:
            return self._device_table()
        try:
            from ..core.audio.sounddevice_backend import format_device_table
        except ImportError as exc:  # pragma: no cover - optional dependency
            return f"Unable to list devices: {exc}"
        try:
            return format_device_table()
        except CaptureError as exc:
            LOGGER.error("Device enumeration failed: %s", exc)
            return f"Unable to list devices: {exc}"

    def _shutdown_session(self) -> None:
        if self._controller is None:
            return
        snapshot = self.last_snapshot
        if snapshot is not None and snapshot.state is not SessionState.IDLE:
            self._scheduler.call_blocking(self._controller.stop)
        self._release_controller()

    def _release_controller(self) -> None:
        if self._controller is None:
            return
        self._scheduler.call_blocking(self._controller.remove_listener, self._on_snapshot)
        self._controller = None

    def _format_env_value(self, value: Any) -> str:
        if value is None:
            return "(unset)"
        if isinstance(value, Path):
            return str(value)
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    def _status_line(self) -> str:
        snapshot = self.last_snapshot
        if snapshot is None or snapshot.state is SessionState.IDLE:
            return "No active recording."
        state = snapshot.state.value
        if snapshot.finishing:
            state = "finishing"
        return (
            f"Session {snapshot.session_id} ({state}) {format_elapsed(snapshot.elapsed_seconds)}"
            f" | {len(snapshot.transcript.split())} words | {snapshot.dispatch_count} upload(s)"
        )

    def _print_menu(self) -> None:
        print()
        print(self._status_line())
        print("1) Start recording")
        print("2) Pause recording")
        print("3) Resume recording")
        print("4) Finish recording")
        print("5) Abort recording")
        print("6) Show transcript")
        print("7) Show audio devices")
        print("8) Configure environment variables")
        print("q) Quit")

    def _info(self, message: str) -> None:
        self._messages.append(f"[info] {message}")

    def _error(self, message: str) -> None:
        self._messages.append(f"[error] {message}")

    def _flush_messages(self) -> None:
        while self._messages:
            print(self._messages.popleft())


__all__ = ["RecordingConsoleUI", "format_elapsed"]
