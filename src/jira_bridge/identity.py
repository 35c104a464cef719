"""
Identity Resolver

Maps Slack user ids to Jira accounts. A mapping is created by an explicit
link action and replaced by relinking; there is at most one row per Slack
user. An unmapped user is a normal outcome: callers attribute their
actions anonymously.

Usage:
    store = IdentityStore(Path("database.sqlite"))
    resolver = IdentityResolver(store)

    await resolver.link("U123", "5b10ac8d82e05b22cc7d4ef5", "ana@example.com")
    mapping = await resolver.resolve("U123")
"""

import asyncio
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Union

from jira_bridge.logging_config import get_logger
from jira_bridge.models import IdentityMapping

logger = get_logger("identity")

SCHEMA = """
CREATE TABLE IF NOT EXISTS user_mapping (
    slack_id TEXT PRIMARY KEY,
    jira_account_id TEXT NOT NULL,
    jira_email TEXT
)
"""


class IdentityStore:
    """
    Keyed SQLite table of identity mappings.

    Blocking; the resolver calls it from worker threads. Writes are
    serialized with a lock and are plain upserts, so no cross-row locking
    is needed.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = str(db_path)
        self._lock = threading.RLock()

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        # A shared connection keeps ":memory:" databases alive across calls
        self._shared = sqlite3.connect(":memory:", check_same_thread=False) \
            if self.db_path == ":memory:" else None

        with self._get_conn() as conn:
            conn.execute(SCHEMA)
        logger.info("Identity store ready: %s", self.db_path)

    @contextmanager
    def _get_conn(self) -> Iterator[sqlite3.Connection]:
        if self._shared is not None:
            with self._lock:
                yield self._shared
                self._shared.commit()
            return

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def get(self, slack_id: str) -> Optional[IdentityMapping]:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT slack_id, jira_account_id, jira_email FROM user_mapping WHERE slack_id = ?",
                (slack_id,),
            ).fetchone()
        if row is None:
            return None
        return IdentityMapping(
            chat_user_id=row[0], tracker_account_id=row[1], tracker_email=row[2]
        )

    def upsert(self, mapping: IdentityMapping) -> None:
        with self._lock, self._get_conn() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO user_mapping (slack_id, jira_account_id, jira_email) "
                "VALUES (?, ?, ?)",
                (mapping.chat_user_id, mapping.tracker_account_id, mapping.tracker_email),
            )

    def delete(self, slack_id: str) -> bool:
        with self._lock, self._get_conn() as conn:
            cursor = conn.execute("DELETE FROM user_mapping WHERE slack_id = ?", (slack_id,))
            return cursor.rowcount > 0

    def all(self) -> List[IdentityMapping]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT slack_id, jira_account_id, jira_email FROM user_mapping ORDER BY slack_id"
            ).fetchall()
        return [IdentityMapping(r[0], r[1], r[2]) for r in rows]

    def close(self) -> None:
        if self._shared is not None:
            self._shared.close()


class IdentityResolver:
    """Async front for the identity store."""

    def __init__(self, store: IdentityStore):
        self.store = store

    async def resolve(self, chat_id: str) -> Optional[IdentityMapping]:
        """Return the mapping for a Slack user, or None when unlinked."""
        mapping = await asyncio.to_thread(self.store.get, chat_id)
        if mapping is None:
            logger.debug("No Jira identity linked for %s", chat_id)
        return mapping

    async def link(self, chat_id: str, tracker_account_id: str, tracker_email: Optional[str]) -> None:
        """Create or replace the mapping for a Slack user."""
        mapping = IdentityMapping(chat_id, tracker_account_id, tracker_email)
        await asyncio.to_thread(self.store.upsert, mapping)
        logger.info("Linked %s to Jira account %s", chat_id, tracker_account_id)

    async def unlink(self, chat_id: str) -> bool:
        removed = await asyncio.to_thread(self.store.delete, chat_id)
        if removed:
            logger.info("Unlinked %s", chat_id)
        return removed
