"""
Reconciliation locks

Scoring, deleting and preseason passes for the same (season, scope) are
serialized. With Redis reachable the lock is shared by every worker process;
otherwise it only covers threads of the current process.
"""

import logging
import threading
from contextlib import contextmanager

import redis
from flask import current_app

from prediction_pool.errors import ConcurrentModificationError

logger = logging.getLogger(__name__)


class ReconciliationLockManager:
    """Hands out per (season, scope) locks"""

    def __init__(self):
        self._local_locks = {}
        self._registry_lock = threading.Lock()
        self._redis_clients = {}

    def _lock_name(self, season_id, scope):
        return f"{current_app.config.get('CACHE_KEY_PREFIX', '')}reconcile:{season_id}:{scope}"

    def _redis_client(self, url):
        client = self._redis_clients.get(url)
        if client is None:
            client = redis.Redis.from_url(url)
            self._redis_clients[url] = client
        return client

    def _local_lock(self, name):
        with self._registry_lock:
            lock = self._local_locks.get(name)
            if lock is None:
                lock = threading.Lock()
                self._local_locks[name] = lock
            return lock

    def _acquire(self, name):
        """Return an acquired lock object, or None when the wait timed out"""
        wait = current_app.config.get("RECONCILE_LOCK_WAIT", 30)

        if current_app.config.get("RECONCILE_LOCK_BACKEND") == "redis":
            try:
                client = self._redis_client(current_app.config["REDIS_URL"])
                lock = client.lock(
                    name,
                    timeout=current_app.config.get("RECONCILE_LOCK_TIMEOUT", 600),
                    blocking_timeout=wait,
                )
                if lock.acquire():
                    return lock
                return None
            except redis.exceptions.ConnectionError as e:
                logger.warning(
                    f"Redis unavailable for reconciliation lock {name}, "
                    f"using in-process lock: {e}"
                )

        lock = self._local_lock(name)
        if lock.acquire(timeout=wait):
            return lock
        return None

    @contextmanager
    def hold(self, season_id, scope):
        """
        Hold the reconciliation lock for one season scope

        Args:
            season_id: Season identifier
            scope: Round number, "preseason", or another named scope

        Raises:
            ConcurrentModificationError: another pass kept the lock past the wait
        """
        name = self._lock_name(season_id, scope)
        lock = self._acquire(name)
        if lock is None:
            raise ConcurrentModificationError(
                f"Another reconciliation is running for season {season_id} ({scope})",
                season_id=season_id,
                scope=str(scope),
            )

        logger.debug(f"Acquired reconciliation lock {name}")
        try:
            yield
        finally:
            try:
                lock.release()
            except redis.exceptions.LockError as e:
                # Lease expired before release; the pass already finished
                logger.warning(f"Reconciliation lock {name} expired before release: {e}")
            logger.debug(f"Released reconciliation lock {name}")


reconciliation_locks = ReconciliationLockManager()
