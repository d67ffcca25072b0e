# backend/sync_coordinator.py
"""
Sync Coordinator.

Reloads all collections, runs the derivation pass, recomputes analytics and
publishes an immutable Snapshot to subscribers. Triggers:

- a repeating timer on a background thread (default every 30 seconds)
- on_foreground(), called by the host when the app regains focus
- sync(), called by AppStore right after each mutation

At most one sync runs at a time. Non-blocking triggers that arrive while a
sync is running are dropped; the next tick catches up. Subscribers see
snapshot versions in increasing order; a snapshot that loses the race to
a newer one is never delivered.
"""
import threading
from dataclasses import dataclass
from types import MappingProxyType
from datetime import datetime
from typing import Optional, Dict, Any, Tuple, Callable, List, Mapping

from .analytics import AnalyticsSnapshot, compute_analytics
from .database import Store
from .derivation import DerivationEngine
from .errors import handle_error
from .logging_setup import get_logger
from .repository import EntityRepository

logger = get_logger('sync')

DEFAULT_INTERVAL_SECONDS = 30.0

Record = Mapping[str, Any]


def freeze(value: Any) -> Any:
    """Read-only view of a record: dicts become mappingproxies, lists become tuples."""
    if isinstance(value, dict):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of freeze(): a fresh, mutable copy."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value


@dataclass(frozen=True)
class Snapshot:
    """
    Read-only materialization of every collection plus analytics.

    Records are frozen (see freeze()), so one snapshot can be shared by every
    subscriber. Use find() for a mutable copy.
    """
    tasks: Tuple[Record, ...] = ()
    projects: Tuple[Record, ...] = ()
    goals: Tuple[Record, ...] = ()
    reminders: Tuple[Record, ...] = ()
    calendar_events: Tuple[Record, ...] = ()
    settings: Optional[Record] = None
    analytics: AnalyticsSnapshot = AnalyticsSnapshot()
    synced_at: Optional[datetime] = None
    version: int = 0

    def find(self, collection: str, record_id: str) -> Optional[Record]:
        """Look up a record by id. `collection` uses the snapshot attribute name."""
        for record in getattr(self, collection):
            if record['id'] == record_id:
                return thaw(record)
        return None


SnapshotCallback = Callable[[Snapshot], None]
ErrorCallback = Callable[[str, BaseException], None]


class SyncCoordinator:
    """
    Orchestrates periodic and event-triggered reload/derive/recompute passes.

    Errors during a sync are reported through handle_error() and the error
    subscribers; the last good snapshot stays published.
    """

    def __init__(self, store: Store, repository: EntityRepository, engine: DerivationEngine,
                 interval: float = DEFAULT_INTERVAL_SECONDS, log_dir: Optional[str] = None,
                 environment: str = 'development', clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.repository = repository
        self.engine = engine
        self.interval = interval
        self.log_dir = log_dir
        self.environment = environment
        self.clock = clock or repository.clock

        self._sync_lock = threading.Lock()
        self._state_lock = threading.Lock()
        # Serializes delivery; a subscriber may re-enter sync() on the same thread
        self._publish_lock = threading.RLock()
        self._stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

        self._snapshot = Snapshot()
        self._version = 0
        self._published_version = 0
        self._subscribers: List[SnapshotCallback] = []
        self._error_subscribers: List[ErrorCallback] = []
        self.last_error: Optional[BaseException] = None
        self.last_error_id: Optional[str] = None
        self.ready = False

    # -----------------------------
    # Lifecycle
    # -----------------------------
    def initialize(self) -> Snapshot:
        """Run one blocking reload-and-derive pass. Failures propagate."""
        snapshot = self.sync(blocking=True, raise_errors=True)
        self.ready = True
        logger.info(f"[SyncCoordinator] Ready (version {snapshot.version})")
        return snapshot

    def start(self):
        """Start the periodic sync timer in a background thread."""
        if self.thread and self.thread.is_alive():
            return
        self._stop_event.clear()
        self.thread = threading.Thread(target=self._run_loop, name='productiflow-sync', daemon=True)
        self.thread.start()
        logger.info(f"[SyncCoordinator] Started periodic sync every {self.interval}s")

    def stop(self, timeout: Optional[float] = None):
        """Cancel the timer. A sync already in flight is allowed to finish."""
        self._stop_event.set()
        if self.thread:
            self.thread.join(timeout=timeout)
            self.thread = None
        logger.info("[SyncCoordinator] Stopped periodic sync")

    @property
    def running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def _run_loop(self):
        while not self._stop_event.wait(self.interval):
            self.trigger_sync('timer')

    # -----------------------------
    # Triggers
    # -----------------------------
    def trigger_sync(self, reason: str = 'manual') -> bool:
        """
        Start a sync unless one is already running.

        Returns:
            False when the trigger was coalesced into a running sync
        """
        if not self._sync_lock.acquire(blocking=False):
            logger.debug(f"[SyncCoordinator] Sync already running, dropped trigger '{reason}'")
            return False
        try:
            snapshot = self._sync_locked(reason, raise_errors=False)
        finally:
            self._sync_lock.release()
        if snapshot is not None:
            self._publish(snapshot)
        return True

    def on_foreground(self) -> bool:
        return self.trigger_sync('foreground')

    def sync(self, blocking: bool = True, raise_errors: bool = False, reason: str = 'mutation') -> Snapshot:
        """
        Run a sync and return the current snapshot.

        With blocking=True, waits for a running sync to finish and then runs
        a fresh one so the caller sees its own writes. With blocking=False
        this is trigger_sync(). On failure (raise_errors=False) the last
        good snapshot is returned.
        """
        if not blocking:
            self.trigger_sync(reason)
            return self.snapshot
        with self._sync_lock:
            snapshot = self._sync_locked(reason, raise_errors=raise_errors)
        if snapshot is None:
            return self.snapshot
        self._publish(snapshot)
        return snapshot

    # -----------------------------
    # Sync pass
    # -----------------------------
    def _sync_locked(self, reason: str, raise_errors: bool) -> Optional[Snapshot]:
        try:
            with self.store.transaction() as tx:
                result = self.engine.reconcile(tx)
                data = self.repository.load_all(tx=tx)
            now = self.clock()
            analytics = compute_analytics(data['tasks'], data['goals'], data['projects'], now=now)
        except Exception as e:
            self._report_error(reason, e)
            if raise_errors:
                raise
            return None

        with self._state_lock:
            self._version += 1
            snapshot = Snapshot(
                tasks=freeze(data['tasks']),
                projects=freeze(data['projects']),
                goals=freeze(data['goals']),
                reminders=freeze(data['reminders']),
                calendar_events=freeze(data['calendarEvents']),
                settings=freeze(data['settings']),
                analytics=analytics,
                synced_at=now,
                version=self._version,
            )
            self._snapshot = snapshot
            self.last_error = None
            self.last_error_id = None
        logger.debug(
            f"[SyncCoordinator] Sync '{reason}' -> version {snapshot.version} "
            f"({len(snapshot.tasks)} tasks, {len(snapshot.calendar_events)} events, "
            f"{len(result.created)} derived)"
        )
        return snapshot

    def _report_error(self, reason: str, error: BaseException):
        error_id = handle_error(
            'sync', error, context={'reason': reason},
            log_dir=self.log_dir, environment=self.environment
        )
        with self._state_lock:
            self.last_error = error
            self.last_error_id = error_id
            callbacks = list(self._error_subscribers)
        for callback in callbacks:
            try:
                callback(error_id, error)
            except Exception as callback_error:
                logger.warning(f"[SyncCoordinator] Error subscriber failed: {callback_error}")

    # -----------------------------
    # Publishing
    # -----------------------------
    @property
    def snapshot(self) -> Snapshot:
        """Last known good snapshot."""
        with self._state_lock:
            return self._snapshot

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Register a snapshot listener. Returns a function that unsubscribes it."""
        with self._state_lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._state_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)
        return unsubscribe

    def subscribe_errors(self, callback: ErrorCallback) -> Callable[[], None]:
        """Register a listener for sync failures, called with (error_id, error)."""
        with self._state_lock:
            self._error_subscribers.append(callback)

        def unsubscribe():
            with self._state_lock:
                if callback in self._error_subscribers:
                    self._error_subscribers.remove(callback)
        return unsubscribe

    def _publish(self, snapshot: Snapshot):
        """Deliver a snapshot unless a newer one has already gone out."""
        with self._publish_lock:
            if snapshot.version <= self._published_version:
                logger.debug(
                    f"[SyncCoordinator] Skipped stale version {snapshot.version} "
                    f"(published {self._published_version})"
                )
                return
            self._published_version = snapshot.version
            with self._state_lock:
                callbacks = list(self._subscribers)
            for callback in callbacks:
                if self._published_version != snapshot.version:
                    # A subscriber re-entered sync() and a newer snapshot went out
                    break
                try:
                    callback(snapshot)
                except Exception as e:
                    logger.error(f"[SyncCoordinator] Subscriber {getattr(callback, '__name__', callback)} failed: {e}")
