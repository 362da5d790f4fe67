"""Background tasks: scheduled batch checks and on-demand item checks."""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urlparse
from uuid import uuid4

from pricewatch.ai.oracle import ArbitrationOracle, OracleConfig, build_oracle
from pricewatch.config import settings
from pricewatch.db.models import TrackedItem
from pricewatch.db.repository import ItemRepository
from pricewatch.detect.change_detector import ChangeDetector, ChangeSummary
from pricewatch.detect.engine import ItemContext, ReconciledObservation, ReconciliationEngine
from pricewatch.ingest.base import EXTRACTION_METHODS, to_money
from pricewatch.ingest.escalation_manager import FetchEscalationController
from pricewatch.logging_config import get_logger
from pricewatch.metrics import (
    batch_duration_seconds,
    batch_items_due,
    record_check,
    scheduler_ticks_skipped_total,
)
from pricewatch.notify.events import LoggingNotifier, Notifier
from pricewatch.worker.scan_lock import BatchLock, SingleFlight, refresh_lock_heartbeat

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Outcome of one item check."""

    item_id: int
    observation: ReconciledObservation
    changes: Optional[ChangeSummary] = None

    @property
    def fetch_failed(self) -> bool:
        return self.changes is None

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "observation": self.observation.to_dict(),
            "changes": self.changes.to_dict() if self.changes else None,
        }


@dataclass
class BatchSummary:
    """Counters for one scheduled batch run."""

    run_id: str
    due: int = 0
    checked: int = 0
    failed: int = 0
    fetch_failed: int = 0
    needs_review: int = 0
    events: int = 0
    failed_item_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "due": self.due,
            "checked": self.checked,
            "failed": self.failed,
            "fetch_failed": self.fetch_failed,
            "needs_review": self.needs_review,
            "events": self.events,
            "failed_item_ids": list(self.failed_item_ids),
        }


class TaskRunner:
    """
    Runs item checks.

    A scheduled run checks every due item in turn behind a single-flight
    guard, with a randomized politeness delay between items. One item's
    failure or timeout never stops the batch. Manual checks share the same
    pipeline but skip the guard and leave the schedule alone.
    """

    def __init__(
        self,
        repository: ItemRepository,
        escalation: Optional[FetchEscalationController] = None,
        engine: Optional[ReconciliationEngine] = None,
        notifier: Optional[Notifier] = None,
        oracle: Optional[ArbitrationOracle] = None,
        oracle_factory: Callable[[OracleConfig], Optional[ArbitrationOracle]] = build_oracle,
        lock: Optional[BatchLock] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        item_timeout: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
    ):
        self.repository = repository
        self.escalation = escalation or FetchEscalationController()
        self.engine = engine or ReconciliationEngine()
        self.detector = ChangeDetector(repository, notifier or LoggingNotifier())
        self.oracle = oracle
        self.oracle_factory = oracle_factory
        self._owner_oracles: Dict[OracleConfig, Optional[ArbitrationOracle]] = {}
        self.lock = lock or SingleFlight()
        self.clock = clock
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.item_timeout = item_timeout or settings.item_check_timeout_seconds
        self.heartbeat_interval = heartbeat_interval or settings.scan_lock_heartbeat_interval_seconds

    async def close(self):
        """Clean up resources."""
        await self.escalation.close()
        await self.lock.close()
        for oracle in (self.oracle, *self._owner_oracles.values()):
            close = getattr(oracle, "close", None)
            if close is not None:
                await close()

    # =========================================================================
    # Scheduling
    # =========================================================================

    def compute_initial_next_check(self, now: datetime, interval: int) -> datetime:
        """Stagger a new item somewhere in its first interval."""
        return now + timedelta(seconds=self.rng.random() * interval)

    def compute_next_check(self, now: datetime, interval: int) -> datetime:
        jitter = settings.refresh_jitter_seconds
        delay = interval + self.rng.uniform(-jitter, jitter)
        return now + timedelta(seconds=max(0.0, delay))

    def oracle_for(self, item: TrackedItem) -> Optional[ArbitrationOracle]:
        """
        The oracle to consult for an item.

        Owners with their own provider choice get an oracle built for it, shared
        by every owner with the same choice; everyone else gets the default.
        Per-item skip flags are applied by the engine.
        """
        try:
            config = OracleConfig.for_owner(item.owner_id)
        except ValueError as e:
            logger.warning(f"Ignoring provider choice of owner {item.owner_id}: {e}")
            return self.oracle
        if config is None:
            return self.oracle
        if config not in self._owner_oracles:
            self._owner_oracles[config] = self.oracle_factory(config)
        return self._owner_oracles[config]

    # =========================================================================
    # Batch run
    # =========================================================================

    async def run_due_checks(self) -> Optional[BatchSummary]:
        """
        Check every due item once.

        Returns None without doing anything when another run is active.
        """
        run_id = uuid4().hex
        token = await self.lock.acquire(run_id)
        if token is None:
            scheduler_ticks_skipped_total.inc()
            logger.info("Price check already in progress, skipping...")
            return None

        started = time.monotonic()
        summary = BatchSummary(run_id=run_id)
        heartbeat = asyncio.create_task(refresh_lock_heartbeat(self.lock, run_id, token, self.heartbeat_interval))
        try:
            try:
                items = await self.repository.get_due_items(self.clock())
            except Exception as e:
                logger.error(f"Failed to load due items: {e}", exc_info=True)
                return summary

            summary.due = len(items)
            batch_items_due.set(len(items))
            logger.info(f"Found {len(items)} items to check")

            for index, item in enumerate(items):
                if index > 0:
                    delay = self.rng.uniform(
                        settings.politeness_delay_min_seconds, settings.politeness_delay_max_seconds
                    )
                    await self.sleep(delay)

                try:
                    result = await asyncio.wait_for(self.check_item(item, run_id=run_id), timeout=self.item_timeout)
                except asyncio.TimeoutError:
                    summary.failed += 1
                    summary.failed_item_ids.append(item.id)
                    record_check("scheduled", "timeout")
                    logger.error(f"Check of item {item.id} timed out after {self.item_timeout}s")
                    continue
                except Exception as e:
                    summary.failed += 1
                    summary.failed_item_ids.append(item.id)
                    record_check("scheduled", "error")
                    logger.error(f"Error checking item {item.id}: {e}", exc_info=True)
                    continue

                summary.checked += 1
                if result.fetch_failed:
                    summary.fetch_failed += 1
                if result.observation.needs_review:
                    summary.needs_review += 1
                if result.changes:
                    summary.events += len(result.changes.events)
        finally:
            heartbeat.cancel()
            try:
                await heartbeat
            except asyncio.CancelledError:
                pass
            await self.lock.release(run_id, token)
            batch_duration_seconds.observe(time.monotonic() - started)

        logger.info(
            f"Scheduled price check complete: {summary.checked}/{summary.due} checked, "
            f"{summary.failed} failed, {summary.fetch_failed} fetch failures"
        )
        return summary

    # =========================================================================
    # Item checks
    # =========================================================================

    async def check_item(self, item: TrackedItem, run_id: Optional[str] = None) -> CheckResult:
        """Scheduled check: run the pipeline, then stamp and reschedule the item."""
        started = time.monotonic()
        result = await self._run_pipeline(item, trigger="scheduled", run_id=run_id)

        now = self.clock()
        await self.repository.update_item_fields(
            item.id,
            last_checked=now,
            next_check_at=self.compute_next_check(now, item.refresh_interval or settings.default_refresh_interval),
        )
        record_check("scheduled", "fetch_failed" if result.fetch_failed else "ok", time.monotonic() - started)
        return result

    async def check_item_now(self, item_id: int) -> Optional[CheckResult]:
        """Manual check outside the scheduler; leaves next_check_at untouched."""
        item = await self.repository.get_item(item_id)
        if item is None:
            logger.warning(f"Manual check requested for unknown item {item_id}")
            return None

        started = time.monotonic()
        try:
            result = await asyncio.wait_for(self._run_pipeline(item, trigger="manual"), timeout=self.item_timeout)
        except asyncio.TimeoutError:
            record_check("manual", "timeout")
            raise
        await self.repository.update_item_fields(item.id, last_checked=self.clock())
        record_check("manual", "fetch_failed" if result.fetch_failed else "ok", time.monotonic() - started)
        return result

    async def _run_pipeline(self, item: TrackedItem, trigger: str, run_id: Optional[str] = None) -> CheckResult:
        log = get_logger(
            __name__, item_id=item.id, run_id=run_id, host=urlparse(item.url).netloc, trigger=trigger
        )
        log.info(f"Checking price for item {item.id}: {item.url}")
        fetched = await self.escalation.fetch_and_extract(item.url)

        if not fetched.fetched:
            # Nothing to diff against; stored state stays as it was
            log.warning(f"Could not fetch item {item.id}: {fetched.error}")
            observation = ReconciledObservation(
                used_renderer=fetched.used_renderer,
                fetch_error=fetched.error or "fetch failed",
                outcome="fetch_failed",
            )
            return CheckResult(item_id=item.id, observation=observation)

        context = ItemContext(
            anchor_price=item.anchor_price,
            preferred_method=item.preferred_method,
            skip_ai_verification=bool(item.skip_ai_verification),
            skip_ai_extraction=bool(item.skip_ai_extraction),
        )
        observation = await self.engine.reconcile(
            fetched.extraction,
            fetched.html,
            context,
            oracle=self.oracle_for(item),
            used_renderer=fetched.used_renderer,
        )
        changes = await self.detector.apply(item, observation, self.clock())

        fields = {}
        if observation.name and not item.name:
            fields["name"] = observation.name[:500]
        if observation.image_url and not item.image_url:
            fields["image_url"] = observation.image_url
        if bool(item.needs_review) != observation.needs_review:
            fields["needs_review"] = observation.needs_review
        if observation.unanimous and not item.preferred_method and not item.anchor_price:
            fields["preferred_method"] = observation.selected_method
            log.info(f"Learned preferred extraction method {observation.selected_method} for item {item.id}")
        if fields:
            await self.repository.update_item_fields(item.id, **fields)

        return CheckResult(item_id=item.id, observation=observation, changes=changes)

    # =========================================================================
    # User actions
    # =========================================================================

    async def track_item(self, url: str, refresh_interval: Optional[int] = None, **fields: Any) -> TrackedItem:
        """Start tracking a URL with a staggered first check."""
        interval = refresh_interval or settings.default_refresh_interval
        next_check_at = self.compute_initial_next_check(self.clock(), interval)
        return await self.repository.create_item(url, interval, next_check_at, **fields)

    async def confirm_price(self, item_id: int, price: Decimal, method: Optional[str] = None) -> None:
        """
        Record the user's confirmation of the correct price.

        The confirmed price becomes the anchor for future checks and clears
        the review flag.
        """
        amount = to_money(price)
        if amount <= 0:
            raise ValueError(f"Confirmed price must be positive, got {price!r}")
        if method is not None and method not in EXTRACTION_METHODS:
            raise ValueError(f"Unknown extraction method {method!r}")

        await self.repository.update_item_fields(
            item_id,
            anchor_price=amount,
            preferred_method=method,
            needs_review=False,
        )
        logger.info(f"Item {item_id} confirmed at {amount} ({method or 'no method'})")
