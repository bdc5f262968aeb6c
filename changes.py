# changes.py
#
# Change-driven refresh. A background thread subscribes to Supabase
# postgres_changes and bumps a per-table version in a shared ChangeFeed;
# each page polls the versions it cares about and reruns on a change.

import asyncio
import logging
import threading

from typing import Any, Dict, Iterable, Optional, Tuple

import streamlit as st
from supabase import acreate_client

import db
import idle

logger = logging.getLogger(__name__)

WATCHED_TABLES = ("members", "contributions", "expenses", "csr_projects", "csr_contributions")

SUBSCRIBE_FAILED = "Failed to subscribe to real-time updates. Data may not refresh automatically."


class ChangeFeed:
    """Thread-safe per-table change counters."""

    def __init__(self):
        self._lock = threading.Lock()
        self._versions: Dict[str, int] = {}
        self.error: Optional[str] = None

    def publish(self, table: str, event: str = "*") -> int:
        with self._lock:
            version = self._versions.get(table, 0) + 1
            self._versions[table] = version
        logger.debug("Change on %s (%s), version %d", table, event, version)
        return version

    def versions(self, tables: Iterable[str]) -> Tuple[int, ...]:
        with self._lock:
            return tuple(self._versions.get(t, 0) for t in tables)

    def set_error(self, message: Optional[str]) -> None:
        with self._lock:
            self.error = message


def _event_type(payload: Any) -> str:
    if not isinstance(payload, dict):
        return "*"
    data = payload.get("data") or {}
    return str(payload.get("eventType") or data.get("type") or "*")


async def _listen(feed: ChangeFeed, url: str, key: str, tables: Iterable[str]) -> None:
    client = await acreate_client(url, key)
    for table in tables:

        def _on_change(payload, table=table):
            feed.publish(table, _event_type(payload))

        def _on_status(status, err=None, table=table):
            if err is not None:
                logger.error("Realtime subscription for %s failed: %s", table, err)
                feed.set_error(SUBSCRIBE_FAILED)

        await (
            client.channel(f"public:{table}")
            .on_postgres_changes("*", schema="public", table=table, callback=_on_change)
            .subscribe(_on_status)
        )
    logger.info("Realtime listener subscribed to %s", ", ".join(tables))
    # The socket's own task delivers events; keep the loop alive
    await asyncio.Event().wait()


def start_listener(feed: ChangeFeed, url: str, key: str, tables: Iterable[str] = WATCHED_TABLES) -> threading.Thread:
    tables = tuple(tables)

    def _run():
        try:
            asyncio.run(_listen(feed, url, key, tables))
        except Exception as e:
            logger.exception("Realtime listener stopped")
            feed.set_error(f"{SUBSCRIBE_FAILED} ({e})")

    thread = threading.Thread(target=_run, name="supabase-realtime", daemon=True)
    thread.start()
    return thread


@st.cache_resource(show_spinner=False)
def shared_feed() -> ChangeFeed:
    # One feed (and one listener thread) per server process
    feed = ChangeFeed()
    url, key = db.supabase_credentials()
    start_listener(feed, url, key)
    return feed


def watch_tables(tables: Iterable[str], key: str, poll_seconds: float = 3.0) -> None:
    """Rerun the page when any of ``tables`` changed since this session last looked."""
    tables = tuple(tables)
    feed = shared_feed()
    seen_key = f"_seen_versions_{key}"
    st.session_state[seen_key] = feed.versions(tables)

    @st.fragment(run_every=poll_seconds)
    def _poll():
        if feed.error:
            st.caption(feed.error)
        current = feed.versions(tables)
        if current != st.session_state.get(seen_key):
            st.session_state[seen_key] = current
            idle.request_system_rerun()

    _poll()
