"""Trade journal: the submit and delete paths.

A submission is evaluated, its images are saved, and the trade record and
rule catalog changes are written in one transaction. Only then is the
trade folded into progress and the achievement snapshot.
"""

import logging
from datetime import date, datetime
from typing import Iterable, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ruleguard.attachments.base import AttachmentStore
from ruleguard.config import Settings
from ruleguard.db.store import (
    ACTIVITY_LOG,
    DAILY_STATS,
    PROGRESS,
    RULES,
    TRADES,
    UNLOCKED_ACHIEVEMENTS,
    DataStore,
)
from ruleguard.engine.achievements import AchievementTracker
from ruleguard.engine.compliance import (
    AdvisoryWarning,
    AppliedRule,
    ComplianceEvaluator,
    Evaluation,
    RuleCatalog,
    TradeDraft,
)
from ruleguard.engine.progress import ProgressAccumulator
from ruleguard.engine.stats import build_user_stats
from ruleguard.errors import (
    AttachmentError,
    ConcurrentModificationError,
    TradeNotFoundError,
    ValidationError,
)
from ruleguard.events import ChangeNotifier
from ruleguard.models import (
    AchievementDefinition,
    MilestoneChallenge,
    Progress,
    Rule,
    TradeEntry,
    UserStats,
    document_image_ids,
)

logger = logging.getLogger(__name__)

COMMIT_RETRIES = 3


class SubmissionResult(BaseModel):
    """Everything a caller needs to render after a submission."""

    trade: TradeEntry
    warnings: list[AdvisoryWarning] = Field(default_factory=list)
    rules: list[Rule] = Field(default_factory=list, description="Catalog after the trade")
    progress: Progress
    stats: UserStats
    unlocked: list[AchievementDefinition] = Field(
        default_factory=list, description="Achievements unlocked by this trade"
    )
    challenges_completed: list[MilestoneChallenge] = Field(default_factory=list)


class TradeJournal:
    """Coordinates the compliance, progress and achievement components."""

    def __init__(
        self,
        data_store: DataStore,
        attachments: AttachmentStore,
        settings: Settings,
        notifier: Optional[ChangeNotifier] = None,
        tracker: Optional[AchievementTracker] = None,
    ):
        """Initialize the journal.

        Args:
            data_store: Persistent store.
            attachments: Store for trade images.
            settings: Application settings.
            notifier: Change notifier. A private one is created if omitted.
            tracker: Achievement unlock tracker.
        """
        self._data_store = data_store
        self._attachments = attachments
        self._settings = settings
        self.notifier = notifier or ChangeNotifier()
        self.evaluator = ComplianceEvaluator(data_store)
        self.progress = ProgressAccumulator(data_store, settings)
        self.tracker = tracker or AchievementTracker(data_store)

    # ==================== Queries ====================

    def list_trades(self) -> list[TradeEntry]:
        """Get all trades, newest first."""
        return self._data_store.get_trades()

    def snapshot(self, social_connections: int = 0, today: Optional[date] = None) -> UserStats:
        """Build the current UserStats snapshot."""
        return build_user_stats(
            self._data_store.get_trades(),
            self._data_store.get_rules(),
            starting_portfolio_value=self._settings.starting_portfolio_value,
            today=today,
            social_connections=social_connections,
        )

    # ==================== Submit ====================

    def submit(
        self,
        draft: TradeDraft,
        applied_rules: Iterable[AppliedRule] = (),
        images: Iterable[bytes] = (),
        social_connections: int = 0,
        now: Optional[datetime] = None,
    ) -> SubmissionResult:
        """Submit a trade.

        Args:
            draft: Trade as entered.
            applied_rules: Applied rules with outcomes.
            images: Image payloads to attach.
            social_connections: Friend count for the achievement snapshot.
            now: Submission time.

        Returns:
            The stored trade, warnings, progress and new unlocks.

        Raises:
            ValidationError: Malformed input; nothing was stored.
            AttachmentError: An image could not be saved; nothing was stored.
        """
        now = now or datetime.now()
        evaluation = self.evaluator.evaluate(draft, applied_rules, now=now)

        image_ids = self._save_images(images)
        try:
            evaluation = evaluation.model_copy(
                update={
                    "trade": evaluation.trade.model_copy(update={"image_ids": image_ids})
                }
            )
            trade, rules = self._commit(evaluation)
        except Exception:
            self._release(image_ids)
            raise

        logger.info(
            "Logged trade %s %s pnl=%.2f compliant=%s",
            trade.id,
            trade.symbol,
            trade.pnl,
            trade.rule_compliant,
        )

        progress = self.progress.record_trade(trade)
        stats = self.snapshot(social_connections, today=now.date())
        unlocked = self.tracker.unlock(stats)
        challenges = self.tracker.engine.check_challenges(stats, now)

        changed = [TRADES, RULES, PROGRESS, DAILY_STATS]
        if not trade.rule_compliant:
            changed.append(ACTIVITY_LOG)
        if unlocked:
            changed.append(UNLOCKED_ACHIEVEMENTS)
        self.notifier.notify(*changed)

        return SubmissionResult(
            trade=trade,
            warnings=evaluation.warnings,
            rules=rules,
            progress=progress,
            stats=stats,
            unlocked=unlocked,
            challenges_completed=challenges,
        )

    def _save_images(self, images: Iterable[bytes]) -> list[int]:
        saved: list[int] = []
        try:
            for data in images:
                saved.append(self._attachments.save(data))
        except Exception as e:
            self._release(saved)
            if isinstance(e, AttachmentError):
                raise
            raise AttachmentError(f"Failed to save attachment: {e}") from e
        return saved

    def _release(self, image_ids: Iterable[int]) -> None:
        for attachment_id in image_ids:
            try:
                self._attachments.delete(attachment_id)
            except AttachmentError as e:
                logger.warning("Could not release attachment %s: %s", attachment_id, e)

    def _commit(self, evaluation: Evaluation) -> tuple[TradeEntry, list[Rule]]:
        """Write the trade and the catalog changes atomically.

        Both collections are re-read on every attempt.
        """
        for attempt in range(COMMIT_RETRIES):
            trades, trades_version = self._data_store.read_collection(TRADES)
            rules, rules_version = self._data_store.read_collection(RULES)

            trade = evaluation.trade
            taken = {doc.get("id") for doc in trades if isinstance(doc, dict)}
            trade_id = trade.id
            while trade_id in taken:
                trade_id += 1
            if trade_id != trade.id:
                trade = trade.model_copy(update={"id": trade_id})

            new_rules = ComplianceEvaluator.apply_to_catalog(
                rules, evaluation.model_copy(update={"trade": trade})
            )
            try:
                self._data_store.write_collections(
                    {
                        TRADES: ([trade.to_document()] + trades, trades_version),
                        RULES: (new_rules, rules_version),
                    }
                )
                return trade, RuleCatalog(new_rules).rules()
            except ConcurrentModificationError:
                if attempt == COMMIT_RETRIES - 1:
                    raise
                logger.debug("Retrying trade commit after a version conflict")
        raise ConcurrentModificationError(TRADES, -1, -1)

    # ==================== Delete ====================

    def delete_trade(self, trade_id: int, confirmed: bool = False) -> Optional[TradeEntry]:
        """Delete a trade and release its attachments.

        Args:
            trade_id: Trade to delete.
            confirmed: Must be True; deletion is gated on explicit confirmation.

        Returns:
            The deleted trade, or None when its stored document was
            unreadable. The attachments it lists are released either way.

        Raises:
            ValidationError: If the deletion was not confirmed.
            TradeNotFoundError: If no trade has that id.
        """
        if not confirmed:
            raise ValidationError("Deleting a trade must be confirmed")

        removed: list[dict] = []

        def remove(docs: list) -> list:
            removed.clear()
            kept = []
            for doc in docs:
                if isinstance(doc, dict) and doc.get("id") == trade_id:
                    removed.append(doc)
                else:
                    kept.append(doc)
            if not removed:
                raise TradeNotFoundError(trade_id)
            return kept

        self._data_store.update_collection(TRADES, remove)
        self._release(document_image_ids(removed[0]))
        trade = _read_trade(removed[0])
        logger.info("Deleted trade %s", trade_id)
        self.notifier.notify(TRADES)
        return trade

    def remove_attachment(self, trade_id: int, attachment_id: int) -> Optional[TradeEntry]:
        """Detach one image from a trade and delete it.

        Returns:
            The updated trade, or None when its stored document is unreadable.

        Raises:
            TradeNotFoundError: If no trade has that id.
            ValidationError: If the trade does not reference the attachment.
        """
        updated: list[dict] = []

        def detach(docs: list) -> list:
            updated.clear()
            result = []
            for doc in docs:
                if isinstance(doc, dict) and doc.get("id") == trade_id:
                    ids = document_image_ids(doc)
                    if attachment_id not in ids:
                        raise ValidationError(
                            f"Trade {trade_id} has no attachment {attachment_id}"
                        )
                    doc = {**doc, "imageIds": [i for i in ids if i != attachment_id]}
                    updated.append(doc)
                result.append(doc)
            if not updated:
                raise TradeNotFoundError(trade_id)
            return result

        self._data_store.update_collection(TRADES, detach)
        self._release([attachment_id])
        self.notifier.notify(TRADES)
        return _read_trade(updated[0])


def _read_trade(doc: dict) -> Optional[TradeEntry]:
    try:
        return TradeEntry.model_validate(doc)
    except PydanticValidationError as e:
        logger.warning("Trade %s has an unreadable document: %s", doc.get("id"), e)
        return None
