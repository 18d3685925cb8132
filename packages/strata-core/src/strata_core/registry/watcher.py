"""Refresh a registry when publishers swap pointer files.

``os.replace`` on a pointer file reaches watchdog as a create, modify or
move event in the pointer directory. Events are collapsed by a debounce
timer so a ``publish_many`` batch causes one ``Registry.refresh``.

    >>> registry = Registry.from_store_root(Path(".strata/store"))
    >>> with ManifestWatcher.for_store_root(registry, ".strata/store"):
    ...     serve_requests(registry)

Hosts without filesystem events fall back to ``Registry.start_polling``.
"""

from __future__ import annotations

import enum
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from strata_core.errors import StrataError
from strata_core.publisher.store import POINTER_SUFFIX

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

    from strata_core.registry.registry import Registry
    from strata_core.registry.snapshot import RegistrySnapshot

logger = structlog.get_logger(__name__)

OBSERVER_JOIN_SECONDS = 5.0


class WatcherState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class WatcherError(StrataError):
    """Pointer directory missing, or start() called on a running watcher."""


def _as_path(raw: str | bytes) -> Path:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return Path(raw)


def is_pointer_file(path: Path) -> bool:
    """True for live pointer files; staging files start with a dot."""
    return path.suffix == POINTER_SUFFIX and not path.name.startswith(".")


class _PointerEventHandler(FileSystemEventHandler):
    def __init__(self, on_change: Callable[[], None], debounce_seconds: float) -> None:
        super().__init__()
        self._callback = on_change
        self._delay = debounce_seconds
        self._timer: threading.Timer | None = None
        self._timer_lock = threading.Lock()

    def _on_pointer_event(self, event: FileSystemEvent) -> None:
        # a rename is judged by where the file ended up
        target = event.dest_path or event.src_path
        if event.is_directory or not is_pointer_file(_as_path(target)):
            return
        logger.debug("pointer_event", event_type=event.event_type, path=str(target))
        self._restart_timer()

    on_created = _on_pointer_event
    on_modified = _on_pointer_event
    on_deleted = _on_pointer_event
    on_moved = _on_pointer_event

    def _restart_timer(self) -> None:
        timer = threading.Timer(self._delay, self._fire)
        timer.daemon = True
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = timer
            timer.start()

    def _fire(self) -> None:
        with self._timer_lock:
            self._timer = None
        self._callback()

    def cancel_pending(self) -> None:
        with self._timer_lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()


class ManifestWatcher:
    """Watch a store's pointer directory and refresh ``registry`` on change.

    ``on_refresh`` receives each new snapshot. Refresh failures are logged
    as ``registry_refresh_failed`` and handed to ``on_error``; the registry
    keeps serving its previous snapshot.
    """

    def __init__(
        self,
        registry: Registry,
        pointer_dir: Path | str,
        *,
        debounce_seconds: float = 0.5,
        on_refresh: Callable[[RegistrySnapshot], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        pointer_dir = Path(pointer_dir)
        if not pointer_dir.is_dir():
            raise WatcherError(f"Pointer directory does not exist: {pointer_dir}")

        self._registry = registry
        self._pointer_dir = pointer_dir
        self._debounce_seconds = debounce_seconds
        self._on_refresh = on_refresh
        self._on_error = on_error
        self._observer: BaseObserver | None = None
        self._handler: _PointerEventHandler | None = None
        self._guard = threading.Lock()
        self._log = logger.bind(pointer_dir=str(pointer_dir))

    @classmethod
    def for_store_root(cls, registry: Registry, store_root: Path | str, **kwargs: Any) -> ManifestWatcher:
        """Watch ``<store_root>/pointers``, creating the directory when absent."""
        pointer_dir = Path(store_root) / "pointers"
        pointer_dir.mkdir(parents=True, exist_ok=True)
        return cls(registry, pointer_dir, **kwargs)

    @property
    def pointer_dir(self) -> Path:
        return self._pointer_dir

    @property
    def debounce_seconds(self) -> float:
        return self._debounce_seconds

    @property
    def state(self) -> WatcherState:
        with self._guard:
            return WatcherState.STOPPED if self._observer is None else WatcherState.RUNNING

    def start(self) -> None:
        with self._guard:
            if self._observer is not None:
                raise WatcherError("Watcher is already running")
            handler = _PointerEventHandler(self._refresh_registry, self._debounce_seconds)
            observer = Observer()
            observer.schedule(handler, str(self._pointer_dir), recursive=False)
            observer.start()
            self._handler, self._observer = handler, observer
        self._log.info("watcher_started", debounce_seconds=self._debounce_seconds)

    def stop(self) -> None:
        """Stop the observer and drop any pending refresh. No-op when stopped."""
        with self._guard:
            handler, observer = self._handler, self._observer
            self._handler = self._observer = None
        if observer is None:
            return
        if handler is not None:
            handler.cancel_pending()
        observer.stop()
        observer.join(timeout=OBSERVER_JOIN_SECONDS)
        self._log.info("watcher_stopped")

    def __enter__(self) -> ManifestWatcher:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _refresh_registry(self) -> None:
        self._log.info("pointer_change_detected")
        try:
            snapshot = self._registry.refresh()
        except StrataError as exc:
            self._log.error("registry_refresh_failed", error=exc.user_message)
            if self._on_error is not None:
                self._on_error(exc)
            return
        if self._on_refresh is not None:
            self._on_refresh(snapshot)
