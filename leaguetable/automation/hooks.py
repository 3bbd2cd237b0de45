"""
SQLAlchemy ORM adapter for the match lifecycle hooks.

Match inserts, updates and deletes are collected at flush time (previous
values come from attribute history, which is still available in
after_flush) and handed to the MatchLifecycle only once the transaction
commits. A rollback discards everything collected.

Usage:
    session_class = create_session_class()
    factory = create_session_factory(engine, sync_session_class=session_class)
    hooks = install_match_hooks(lifecycle, target=session_class)
    ...
    hooks.uninstall()

AsyncSession delegates to a sync Session, so listening on the sync class
covers both. The default target (the Session class) sees every session in
the process; pass a dedicated subclass to scope the hooks to one factory.
"""

import logging
from typing import Any

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from leaguetable.automation.lifecycle import MatchLifecycle
from leaguetable.automation.trigger import EventType, MatchEvent
from leaguetable.models import Match, match_to_record

logger = logging.getLogger(__name__)

_PENDING_KEY = "leaguetable_match_events"


def previous_record(match: Match) -> dict:
    """Record of a match as it was before the pending changes."""
    record = match_to_record(match)
    state = inspect(match)
    for name in record:
        history = state.attrs[name].history
        if history.has_changes():
            record[name] = history.deleted[0] if history.deleted else None
    return record


class MatchHooks:
    """Listeners on a Session class (or sessionmaker) feeding a MatchLifecycle."""

    def __init__(self, lifecycle: MatchLifecycle, target: Any = Session):
        self.lifecycle = lifecycle
        self.target = target
        self.installed = False

    def install(self) -> "MatchHooks":
        if not self.installed:
            event.listen(self.target, "after_flush", self._after_flush)
            event.listen(self.target, "after_commit", self._after_commit)
            event.listen(self.target, "after_rollback", self._after_rollback)
            self.installed = True
        return self

    def uninstall(self) -> None:
        if self.installed:
            event.remove(self.target, "after_flush", self._after_flush)
            event.remove(self.target, "after_commit", self._after_commit)
            event.remove(self.target, "after_rollback", self._after_rollback)
            self.installed = False

    def _after_flush(self, session: Session, flush_context) -> None:
        pending = session.info.setdefault(_PENDING_KEY, [])
        for obj in session.new:
            if isinstance(obj, Match):
                pending.append(MatchEvent(EventType.AFTER_CREATE, match_to_record(obj)))
        for obj in session.dirty:
            if isinstance(obj, Match) and session.is_modified(obj):
                pending.append(MatchEvent(
                    EventType.AFTER_UPDATE,
                    match_to_record(obj),
                    previous_record(obj),
                ))
        for obj in session.deleted:
            if isinstance(obj, Match):
                pending.append(MatchEvent(EventType.AFTER_DELETE, previous_record(obj)))

    def _after_commit(self, session: Session) -> None:
        events = session.info.pop(_PENDING_KEY, [])
        for match_event in events:
            try:
                self.lifecycle.handle(match_event)
            except Exception as e:
                logger.error(
                    f"[LIFECYCLE] Hook dispatch failed for match={match_event.record.get('id')}: {e}",
                    exc_info=True,
                )

    def _after_rollback(self, session: Session) -> None:
        discarded = session.info.pop(_PENDING_KEY, [])
        if discarded:
            logger.debug(f"[LIFECYCLE] Rollback discarded {len(discarded)} match events")


def install_match_hooks(lifecycle: MatchLifecycle, target: Any = Session) -> MatchHooks:
    """Register the match hooks on target and return the handle."""
    return MatchHooks(lifecycle, target).install()
