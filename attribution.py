"""Attribution recompute orchestration: deal closes → rows persisted → payouts announced."""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from attribution_engine import AttributionEngine, parse_model
from commissions import CommissionCalculator, build_payout_candidates, index_partners, to_attribution_records
from config import PAYOUT_MODEL
from exceptions import AttributionError
from models import (
    AttributionModel,
    BackfillResult,
    CommissionRule,
    Deal,
    DealStatus,
    Partner,
    PayoutCandidate,
    RecomputeResult,
    Touchpoint,
)
from rules import rule_set_version

logger = logging.getLogger(__name__)


class PayoutNotifier(Protocol):
    """Host-side dispatcher told about approved payouts after commissions are computed."""

    def notify_payouts(self, deal: Deal, candidates: List[PayoutCandidate]) -> None:
        ...


class _PairLock:
    """A lock plus the number of callers holding or waiting on it."""

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class AttributionService:
    """
    Recompute and persist attribution for won deals.

    A (deal, model) pair is one unit of work: concurrent recomputes of the
    same pair are serialized, different pairs run in parallel.
    """

    def __init__(
        self,
        db,
        notifier: Optional[PayoutNotifier] = None,
        attribution_engine: Optional[AttributionEngine] = None,
        payout_model: Union[str, AttributionModel] = PAYOUT_MODEL
    ):
        self.db = db
        self.notifier = notifier
        self.calculator = CommissionCalculator(attribution_engine=attribution_engine)
        self.payout_model = parse_model(payout_model)
        self._locks: Dict[Tuple[str, str], _PairLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _locked(self, deal_id: str, models: List[AttributionModel]) -> Iterator[None]:
        """
        Hold the (deal, model) locks for every requested model.

        Locks are taken in sorted key order so overlapping model sets can't
        deadlock. An entry leaves ``_locks`` as soon as nobody holds or waits on it.
        """
        keys = sorted({(deal_id, model.value) for model in models})
        held = []
        try:
            for key in keys:
                with self._locks_guard:
                    pair_lock = self._locks.setdefault(key, _PairLock())
                    pair_lock.users += 1
                pair_lock.lock.acquire()
                held.append(key)
            yield
        finally:
            for key in reversed(held):
                with self._locks_guard:
                    pair_lock = self._locks[key]
                    pair_lock.lock.release()
                    pair_lock.users -= 1
                    if pair_lock.users == 0:
                        del self._locks[key]

    def recompute_deal(
        self,
        deal: Deal,
        touchpoints: List[Touchpoint],
        partners: Union[Mapping[str, Partner], Sequence[Partner]],
        rules: List[CommissionRule],
        models: Optional[List[Union[str, AttributionModel]]] = None,
        computed_at: Optional[datetime] = None
    ) -> RecomputeResult:
        """
        Recompute attribution and commissions for a won deal.

        Every requested model is calculated before anything is written, so a
        failure in one model leaves all stored rows untouched. The (deal, model)
        locks are held from calculation through the write.
        """
        models = [parse_model(m) for m in (models or list(AttributionModel))]
        computed_at = computed_at or datetime.now()
        partners_by_id = index_partners(partners)
        version = rule_set_version(rules)

        with self._locked(deal.id, models):
            rows_by_model = {
                model: self.calculator.calculate(deal, touchpoints, rules, partners_by_id, model)
                for model in models
            }

            result = RecomputeResult(deal_id=deal.id, rows_by_model=rows_by_model, rule_set_version=version)

            for model, rows in rows_by_model.items():
                records = to_attribution_records(deal, rows, model, computed_at)
                result.rows_written += self.db.replace_attributions(deal.id, model, records)

        if self.payout_model in rows_by_model:
            result.payout_candidates = build_payout_candidates(deal, rows_by_model[self.payout_model], self.payout_model)
            self._notify(deal, result.payout_candidates)

        logger.info(
            f"Recomputed deal {deal.id}: {len(models)} models, {result.rows_written} rows, "
            f"{len(result.payout_candidates)} payout candidates (rules {version})"
        )
        return result

    def recompute_missing(
        self,
        deals: List[Deal],
        touchpoints_by_deal: Mapping[str, List[Touchpoint]],
        partners: Union[Mapping[str, Partner], Sequence[Partner]],
        rules: List[CommissionRule],
        models: Optional[List[Union[str, AttributionModel]]] = None
    ) -> BackfillResult:
        """
        Calculate attribution for won deals that don't have rows yet.

        A deal that fails is logged and skipped; the rest still run.
        """
        result = BackfillResult()
        partners_by_id = index_partners(partners)

        for deal in deals:
            if deal.status != DealStatus.WON or self.db.has_attributions(deal.id):
                continue

            touchpoints = touchpoints_by_deal.get(deal.id, [])
            if not touchpoints:
                result.skipped += 1
                continue

            try:
                recomputed = self.recompute_deal(deal, touchpoints, partners_by_id, rules, models)
            except AttributionError as e:
                logger.error(f"Failed to calculate attribution for deal {deal.id}: {e.message}")
                result.failed.append(deal.id)
                continue

            result.deals_processed += 1
            result.rows_written += recomputed.rows_written

        logger.info(
            f"Backfill complete: {result.deals_processed} deals, {result.rows_written} rows, "
            f"{result.skipped} without touchpoints, {len(result.failed)} failed"
        )
        return result

    def _notify(self, deal: Deal, candidates: List[PayoutCandidate]) -> None:
        """Fire-and-forget: notifier failures are logged, never raised."""
        if not self.notifier or not candidates:
            return
        try:
            self.notifier.notify_payouts(deal, candidates)
        except Exception as e:
            logger.error(f"Payout notification failed for deal {deal.id}: {e}")
