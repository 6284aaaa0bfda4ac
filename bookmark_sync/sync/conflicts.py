"""Conflict detection and resolution for two-sided bookmark edits."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from bookmark_sync.core.time_utils import utc_now
from bookmark_sync.sync.errors import ConflictUnresolvedError
from bookmark_sync.sync.models import (
    Conflict,
    ConflictResolution,
    ConflictStats,
    ConflictStrategy,
    ConflictType,
    ManualAction,
    RemoteItem,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

logger = logging.getLogger(__name__)


def conflict_key(provider_id: str, item_id: str) -> str:
    return f"{provider_id}-{item_id}"


def _items_equivalent(local: RemoteItem, remote: RemoteItem) -> bool:
    # ids and timestamps are not compared; drift alone is not a conflict
    return (
        local.title == remote.title
        and local.url == remote.url
        and local.description == remote.description
        and local.favicon == remote.favicon
        and local.metadata == remote.metadata
    )


def _modified_key(item: RemoteItem) -> float:
    return item.last_modified.timestamp() if item.last_modified else 0.0


def _pick_newest(local: RemoteItem, remote: RemoteItem) -> tuple[RemoteItem, RemoteItem]:
    """Return ``(winner, loser)``; remote wins ties."""
    if _modified_key(local) > _modified_key(remote):
        return local, remote
    return remote, local


class ConflictResolver:
    """Registry of detected conflicts plus the strategies that settle them.

    Conflicts are keyed by ``"{provider_id}-{item_id}"`` so re-detecting the same pair
    overwrites the earlier entry. The registry is guarded by a lock so a resolver can be
    shared across threads.

    Decisions made through :meth:`resolve_manually` are kept until the sync loop
    claims them with :meth:`take_manual_resolution`.
    """

    def __init__(
        self,
        default_strategy: ConflictStrategy | str = ConflictStrategy.REMOTE_WINS,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._default_strategy = ConflictStrategy(default_strategy)
        self._provider_strategies: dict[str, ConflictStrategy] = {}
        self._conflicts: dict[str, Conflict] = {}
        # manual decisions waiting for the next sync cycle to apply them
        self._decisions: dict[str, ConflictResolution] = {}
        self._clock = clock
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Strategy selection
    # ------------------------------------------------------------------

    def set_default_strategy(self, strategy: ConflictStrategy | str) -> None:
        self._default_strategy = ConflictStrategy(strategy)
        logger.info("conflict_default_strategy_set", extra={"strategy": str(strategy)})

    def get_default_strategy(self) -> ConflictStrategy:
        return self._default_strategy

    def set_provider_strategy(self, provider_id: str, strategy: ConflictStrategy | str) -> None:
        with self._lock:
            self._provider_strategies[provider_id] = ConflictStrategy(strategy)
        logger.info(
            "conflict_provider_strategy_set",
            extra={"provider_id": provider_id, "strategy": str(strategy)},
        )

    def get_provider_strategy(self, provider_id: str) -> ConflictStrategy:
        with self._lock:
            return self._provider_strategies.get(provider_id, self._default_strategy)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect_conflict(
        self, local: RemoteItem | None, remote: RemoteItem | None, provider_id: str
    ) -> Conflict | None:
        """Classify a disagreement between two views of one item.

        Returns ``None`` when either side is missing or both agree on every compared
        field. Matching titles with different URLs is a URL mismatch; any other
        difference is a metadata conflict.
        """
        if local is None or remote is None:
            return None
        if _items_equivalent(local, remote):
            return None

        if local.title == remote.title and local.url != remote.url:
            conflict_type = ConflictType.URL_MISMATCH
        else:
            conflict_type = ConflictType.METADATA_CONFLICT

        conflict = Conflict(
            id=conflict_key(provider_id, local.id or remote.id),
            type=conflict_type,
            local=local,
            remote=remote,
            provider_id=provider_id,
            created_at=self._clock(),
        )
        with self._lock:
            self._conflicts[conflict.id] = conflict

        logger.warning(
            "conflict_detected",
            extra={
                "conflict_id": conflict.id,
                "conflict_type": conflict.type.value,
                "provider_id": provider_id,
            },
        )
        return conflict

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_conflict(self, conflict: Conflict) -> ConflictResolution:
        """Settle ``conflict`` with the provider override or the default strategy.

        Manual conflicts stay registered until :meth:`resolve_manually` is called.
        """
        strategy = self.get_provider_strategy(conflict.provider_id)
        resolution = self._apply_strategy(conflict, strategy)

        if not resolution.requires_user_confirmation:
            with self._lock:
                self._conflicts.pop(conflict.id, None)

        logger.info(
            "conflict_resolved",
            extra={
                "conflict_id": conflict.id,
                "strategy": strategy.value,
                "requires_user_confirmation": resolution.requires_user_confirmation,
                "provider_id": conflict.provider_id,
            },
        )
        return resolution

    def _apply_strategy(self, conflict: Conflict, strategy: ConflictStrategy) -> ConflictResolution:
        resolved: RemoteItem | None
        requires_user_confirmation = False

        if strategy is ConflictStrategy.REMOTE_WINS:
            resolved = conflict.remote
        elif strategy is ConflictStrategy.LOCAL_WINS:
            resolved = conflict.local
        elif strategy is ConflictStrategy.NEWEST_WINS:
            resolved, _ = _pick_newest(conflict.local, conflict.remote)
        elif strategy is ConflictStrategy.MERGE:
            resolved = self._merge(conflict.local, conflict.remote)
        else:
            resolved = None
            requires_user_confirmation = True

        return ConflictResolution(
            conflict=conflict,
            strategy=strategy,
            resolved=resolved,
            requires_user_confirmation=requires_user_confirmation,
        )

    @staticmethod
    def _merge(local: RemoteItem, remote: RemoteItem) -> RemoteItem:
        """Newest side's fields win; fields missing on the winner come from the other side."""
        winner, loser = _pick_newest(local, remote)
        stamps = [stamp for stamp in (local.last_modified, remote.last_modified) if stamp]

        return winner.model_copy(
            update={
                "description": winner.description
                if winner.description is not None
                else loser.description,
                "favicon": winner.favicon if winner.favicon is not None else loser.favicon,
                "created_at": winner.created_at or loser.created_at,
                "updated_at": winner.updated_at or loser.updated_at,
                "metadata": {**loser.metadata, **winner.metadata},
                "last_modified": max(stamps) if stamps else None,
            }
        )

    def resolve_manually(
        self,
        conflict_id: str,
        action: ManualAction | str,
        custom_item: RemoteItem | None = None,
    ) -> ConflictResolution | None:
        """Apply a user's decision to a registered conflict.

        Returns ``None`` when the conflict is unknown. ``custom`` requires
        ``custom_item``; ``keep_both`` keeps the remote side and ``delete_both`` leaves
        the local bookmark as it is. The decision is held for the next sync cycle.
        """
        action = ManualAction(action)
        if action is ManualAction.CUSTOM and custom_item is None:
            msg = "custom resolution requires a replacement item"
            raise ValueError(msg)

        with self._lock:
            conflict = self._conflicts.pop(conflict_id, None)
        if conflict is None:
            logger.error("conflict_not_found", extra={"conflict_id": conflict_id})
            return None

        resolved: RemoteItem | None
        if action is ManualAction.KEEP_LOCAL:
            resolved = conflict.local
        elif action is ManualAction.KEEP_REMOTE:
            resolved = conflict.remote
        elif action is ManualAction.KEEP_BOTH:
            # two bookmarks for one item are not supported
            resolved = conflict.remote
            logger.info("conflict_keep_both_kept_remote", extra={"conflict_id": conflict_id})
        elif action is ManualAction.DELETE_BOTH:
            resolved = None
        else:
            resolved = custom_item

        logger.info(
            "conflict_resolved_manually",
            extra={
                "conflict_id": conflict_id,
                "action": action.value,
                "provider_id": conflict.provider_id,
            },
        )
        resolution = ConflictResolution(
            conflict=conflict,
            strategy=ConflictStrategy.MANUAL,
            resolved=resolved,
            requires_user_confirmation=False,
        )
        with self._lock:
            self._decisions[conflict_id] = resolution
        return resolution

    def take_manual_resolution(self, conflict_id: str) -> ConflictResolution | None:
        """Remove and return the pending manual decision for ``conflict_id``."""
        with self._lock:
            return self._decisions.pop(conflict_id, None)

    @staticmethod
    def winning_item(resolution: ConflictResolution) -> RemoteItem | None:
        """Return the item a resolution settled on.

        Raises:
            ConflictUnresolvedError: the resolution still waits for the user
        """
        if resolution.requires_user_confirmation:
            raise ConflictUnresolvedError(
                resolution.conflict.id, provider_id=resolution.conflict.provider_id
            )
        return resolution.resolved

    # ------------------------------------------------------------------
    # Registry queries
    # ------------------------------------------------------------------

    def get_unresolved_conflicts(self) -> list[Conflict]:
        with self._lock:
            return list(self._conflicts.values())

    def get_provider_conflicts(self, provider_id: str) -> list[Conflict]:
        return [c for c in self.get_unresolved_conflicts() if c.provider_id == provider_id]

    def get_conflict(self, conflict_id: str) -> Conflict | None:
        with self._lock:
            return self._conflicts.get(conflict_id)

    def clear_conflicts(self) -> None:
        with self._lock:
            cleared = len(self._conflicts)
            self._conflicts.clear()
            self._decisions.clear()
        logger.info("conflicts_cleared", extra={"cleared": cleared})

    def get_stats(self) -> ConflictStats:
        by_type = {conflict_type.value: 0 for conflict_type in ConflictType}
        by_provider: dict[str, int] = {}
        conflicts = self.get_unresolved_conflicts()
        for conflict in conflicts:
            by_type[conflict.type.value] += 1
            by_provider[conflict.provider_id] = by_provider.get(conflict.provider_id, 0) + 1
        return ConflictStats(total=len(conflicts), by_provider=by_provider, by_type=by_type)
