"""Reconciliation matching engine.

Matches imported transactions to projected recurring instances by
description, amount and date closeness under a named tolerance profile.
"""

from __future__ import annotations

import asyncio
import os
import re
from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from difflib import SequenceMatcher
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml
from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from budget_engine.config import settings
from budget_engine.logger import async_log_timing, get_logger, log_exception
from budget_engine.models import (
    ConfidenceLevel,
    ExceptionType,
    MatchSource,
    MatchStatus,
    ReconciliationMatch,
    RecurringException,
    SeriesKind,
    Transaction,
    TransactionSource,
)
from budget_engine.services.errors import (
    AlreadyRealizedError,
    ConflictError,
    EngineError,
    ItemFailure,
    NotFoundError,
    ValidationError,
)
from budget_engine.services.import_patterns import matches_any
from budget_engine.services.projection import (
    InstanceKey,
    ProjectedInstance,
    get_projected_instances,
    resolve_value,
)
from budget_engine.services.realization import link_to_instance, unlink_from_instance
from budget_engine.services.recurrence import clamp_day, is_scheduled
from budget_engine.services.recurring import get_exception, get_series, learn_import_pattern

logger = get_logger(__name__)

SCORE_QUANTUM = Decimal("0.0001")


# =============================================================================
# Tolerance profiles
# =============================================================================


@dataclass(frozen=True)
class ToleranceProfile:
    """Named acceptance thresholds for match scoring.

    ``amount_percent`` is a fraction of the expected amount (0.05 = 5%).
    ``amount_absolute`` widens tolerance only when the expected amount is zero.
    """

    name: str
    date_days: int
    amount_percent: Decimal
    amount_absolute: Decimal
    description_threshold: float
    weight_description: Decimal = Decimal("0.50")
    weight_amount: Decimal = Decimal("0.30")
    weight_date: Decimal = Decimal("0.20")
    high_threshold: Decimal = Decimal("0.85")
    medium_threshold: Decimal = Decimal("0.60")


DEFAULT_PROFILES: dict[str, ToleranceProfile] = {
    "strict": ToleranceProfile(
        name="strict",
        date_days=1,
        amount_percent=Decimal("0.01"),
        amount_absolute=Decimal("0.00"),
        description_threshold=0.70,
    ),
    "moderate": ToleranceProfile(
        name="moderate",
        date_days=3,
        amount_percent=Decimal("0.05"),
        amount_absolute=Decimal("0.00"),
        description_threshold=0.50,
    ),
    "loose": ToleranceProfile(
        name="loose",
        date_days=7,
        amount_percent=Decimal("0.15"),
        amount_absolute=Decimal("1.00"),
        description_threshold=0.30,
    ),
}

_profiles_cache: dict[str, ToleranceProfile] | None = None


def _config_path() -> Path:
    if settings.reconciliation_config_path:
        return Path(settings.reconciliation_config_path)
    return Path(__file__).resolve().parents[2] / "config" / "reconciliation.yaml"


def _decimal(value: Any, default: Decimal) -> Decimal:
    return default if value is None else Decimal(str(value))


def _profile_from_raw(
    name: str,
    raw: dict[str, Any],
    weights: dict[str, Any],
    thresholds: dict[str, Any],
) -> ToleranceProfile:
    base = DEFAULT_PROFILES.get(name) or replace(DEFAULT_PROFILES["moderate"], name=name)
    weights = {**weights, **(raw.get("weights") or {})}
    thresholds = {**thresholds, **(raw.get("thresholds") or {})}
    profile = ToleranceProfile(
        name=name,
        date_days=int(raw.get("date_days", base.date_days)),
        amount_percent=_decimal(raw.get("amount_percent"), base.amount_percent),
        amount_absolute=_decimal(raw.get("amount_absolute"), base.amount_absolute),
        description_threshold=float(raw.get("description_threshold", base.description_threshold)),
        weight_description=_decimal(weights.get("description"), base.weight_description),
        weight_amount=_decimal(weights.get("amount"), base.weight_amount),
        weight_date=_decimal(weights.get("date"), base.weight_date),
        high_threshold=_decimal(thresholds.get("high"), base.high_threshold),
        medium_threshold=_decimal(thresholds.get("medium"), base.medium_threshold),
    )
    if profile.date_days < 0 or profile.amount_percent < 0 or profile.amount_absolute < 0:
        raise ValueError(f"Profile {name} has a negative tolerance")
    return profile


def load_tolerance_profiles(force_reload: bool = False) -> dict[str, ToleranceProfile]:
    """Load tolerance profiles from YAML if available.

    Caches the result to avoid repeated disk I/O. A malformed file logs a
    warning and leaves the built-in profiles in place.
    """
    global _profiles_cache
    if _profiles_cache is not None and not force_reload:
        return _profiles_cache

    profiles = dict(DEFAULT_PROFILES)
    config_path = _config_path()

    if config_path.exists():
        try:
            raw = yaml.safe_load(config_path.read_text()) or {}
            scoring = raw.get("scoring") or {}
            weights = scoring.get("weights") or {}
            thresholds = scoring.get("thresholds") or {}
            loaded = {
                str(name).lower(): _profile_from_raw(str(name).lower(), body or {}, weights, thresholds)
                for name, body in (raw.get("profiles") or {}).items()
            }
            profiles.update(loaded)
        except (yaml.YAMLError, AttributeError, TypeError, ValueError, InvalidOperation) as e:
            logger.warning(
                "Failed to load reconciliation config - using defaults",
                config_path=str(config_path),
                error=str(e),
                error_type=type(e).__name__,
            )
            profiles = dict(DEFAULT_PROFILES)

    high_env = os.getenv("RECONCILIATION_HIGH_THRESHOLD")
    medium_env = os.getenv("RECONCILIATION_MEDIUM_THRESHOLD")
    if high_env:
        profiles = {k: replace(p, high_threshold=Decimal(high_env)) for k, p in profiles.items()}
    if medium_env:
        profiles = {k: replace(p, medium_threshold=Decimal(medium_env)) for k, p in profiles.items()}

    _profiles_cache = profiles
    return profiles


def get_tolerance_profile(name: str | None = None) -> ToleranceProfile:
    key = (name or settings.reconciliation_profile).strip().lower()
    profiles = load_tolerance_profiles()
    if key not in profiles:
        raise ValidationError(f"Unknown tolerance profile: {key} (expected one of {', '.join(sorted(profiles))})")
    return profiles[key]


# =============================================================================
# Scoring
# =============================================================================


def normalize_text(value: str) -> str:
    """Normalize text for similarity comparison."""
    cleaned = re.sub(r"[^a-z0-9]+", " ", value.lower()).strip()
    return re.sub(r"\s+", " ", cleaned)


def score_description(
    imported: str | None,
    expected: str | None,
    import_patterns: Iterable[str] = (),
) -> float:
    """Score description similarity (0-1); a learned import pattern always scores 1."""
    if matches_any(import_patterns, imported):
        return 1.0
    if not imported or not expected:
        return 0.0
    norm_a = normalize_text(imported)
    norm_b = normalize_text(expected)
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0

    shorter, longer = sorted((norm_a, norm_b), key=len)
    containment = len(shorter) / len(longer) if shorter in longer else 0.0

    ratio = SequenceMatcher(None, norm_a, norm_b).ratio()
    tokens_a = set(norm_a.split())
    tokens_b = set(norm_b.split())
    token_score = len(tokens_a & tokens_b) / len(tokens_a | tokens_b) if tokens_a | tokens_b else 0
    return round(max(containment, 0.6 * ratio + 0.4 * token_score), 4)


def score_amount(expected: Decimal, actual: Decimal, profile: ToleranceProfile) -> float | None:
    """Linear 1 -> 0 over the allowed variance; None when outside it.

    Amounts are compared by magnitude so bank debits match positive series amounts.
    """
    expected_abs = abs(expected)
    diff = abs(expected_abs - abs(actual))
    if expected_abs == 0:
        if diff == 0:
            return 1.0
        if profile.amount_absolute > 0 and diff <= profile.amount_absolute:
            return float((1 - diff / profile.amount_absolute).quantize(SCORE_QUANTUM))
        return None

    variance = diff / expected_abs
    if variance > profile.amount_percent:
        return None
    if profile.amount_percent == 0:
        return 1.0
    return float((1 - variance / profile.amount_percent).quantize(SCORE_QUANTUM))


def score_date(expected: date, actual: date, profile: ToleranceProfile) -> float | None:
    """Linear 1 -> 0 over ``date_days``; None beyond it."""
    offset = abs((actual - expected).days)
    if offset > profile.date_days:
        return None
    if profile.date_days == 0:
        return 1.0
    return round(1 - offset / profile.date_days, 4)


def weighted_total(breakdown: dict[str, float], profile: ToleranceProfile) -> Decimal:
    total = (
        Decimal(str(breakdown["description"])) * profile.weight_description
        + Decimal(str(breakdown["amount"])) * profile.weight_amount
        + Decimal(str(breakdown["date"])) * profile.weight_date
    )
    return total.quantize(SCORE_QUANTUM)


def classify(score: Decimal, profile: ToleranceProfile) -> tuple[MatchStatus, ConfidenceLevel]:
    if score >= profile.high_threshold:
        return MatchStatus.MATCHED, ConfidenceLevel.HIGH
    if score >= profile.medium_threshold:
        return MatchStatus.PENDING, ConfidenceLevel.MEDIUM
    return MatchStatus.MISSING, ConfidenceLevel.LOW


@dataclass
class MatchCandidate:
    """Scored candidate instance for one imported transaction."""

    instance: ProjectedInstance
    score: float
    confidence_level: ConfidenceLevel
    status: MatchStatus
    amount_variance: Decimal
    date_offset_days: int
    # Score components are 0-1 fractions, not monetary values.
    breakdown: dict[str, float]


def score_candidate(
    transaction: Transaction,
    instance: ProjectedInstance,
    profile: ToleranceProfile,
) -> MatchCandidate | None:
    """Score one candidate; None when any hard tolerance disqualifies it."""
    if (transaction.currency or "").upper() != instance.currency.upper():
        return None
    description = score_description(transaction.description, instance.description, instance.import_patterns)
    if description < profile.description_threshold:
        return None
    amount = score_amount(instance.amount, transaction.amount, profile)
    if amount is None:
        return None
    date_score = score_date(instance.effective_date, transaction.txn_date, profile)
    if date_score is None:
        return None

    breakdown = {"description": description, "amount": amount, "date": date_score}
    total = weighted_total(breakdown, profile)
    status, level = classify(total, profile)
    return MatchCandidate(
        instance=instance,
        score=float(total),
        confidence_level=level,
        status=status,
        amount_variance=abs(instance.amount) - abs(transaction.amount),
        date_offset_days=(transaction.txn_date - instance.effective_date).days,
        breakdown=breakdown,
    )


def _rank(candidate: MatchCandidate) -> tuple[float, int, date, str]:
    # Highest score, then smallest offset, then earliest scheduled date
    return (
        -candidate.score,
        abs(candidate.date_offset_days),
        candidate.instance.scheduled_date,
        str(candidate.instance.series_id),
    )


def find_best_match(
    transaction: Transaction,
    candidates: Iterable[ProjectedInstance],
    profile: ToleranceProfile,
) -> MatchCandidate | None:
    """Best candidate at or above the medium threshold, or None."""
    scored: list[MatchCandidate] = []
    for instance in candidates:
        candidate = score_candidate(transaction, instance, profile)
        if candidate is not None:
            scored.append(candidate)
    if not scored:
        return None
    best = min(scored, key=_rank)
    if best.status == MatchStatus.MISSING:
        return None
    return best


# =============================================================================
# Candidate generation
# =============================================================================


def candidate_window(txn_date: date, profile: ToleranceProfile) -> tuple[date, date]:
    delta = timedelta(days=profile.date_days)
    return txn_date - delta, txn_date + delta


async def projection_range(db: AsyncSession, window_start: date, window_end: date) -> tuple[date, date]:
    """Scheduled-date range holding every instance whose effective date can land in the window.

    A Modified exception may move an occurrence arbitrarily far from its
    scheduled date, so the window is widened to the original dates of any
    occurrence moved into it.
    """
    result = await db.execute(
        select(func.min(RecurringException.original_date), func.max(RecurringException.original_date))
        .where(RecurringException.exception_type == ExceptionType.MODIFIED)
        .where(RecurringException.modified_date >= window_start)
        .where(RecurringException.modified_date <= window_end)
    )
    earliest, latest = result.one()
    return min(window_start, earliest or window_start), max(window_end, latest or window_end)


async def _load_claims(db: AsyncSession, range_from: date, range_to: date) -> dict[InstanceKey, set[UUID]]:
    """Imported transactions holding a live match on each instance."""
    result = await db.execute(
        select(
            ReconciliationMatch.series_id,
            ReconciliationMatch.instance_date,
            ReconciliationMatch.imported_transaction_id,
        )
        .where(ReconciliationMatch.status != MatchStatus.REJECTED)
        .where(ReconciliationMatch.instance_date >= range_from)
        .where(ReconciliationMatch.instance_date <= range_to)
    )
    claims: dict[InstanceKey, set[UUID]] = defaultdict(set)
    for series_id, instance_date, transaction_id in result.tuples().all():
        claims[(series_id, instance_date)].add(transaction_id)
    return claims


async def _load_rejections(db: AsyncSession, transaction_ids: Sequence[UUID]) -> set[tuple[UUID, UUID, date]]:
    if not transaction_ids:
        return set()
    result = await db.execute(
        select(
            ReconciliationMatch.imported_transaction_id,
            ReconciliationMatch.series_id,
            ReconciliationMatch.instance_date,
        )
        .where(ReconciliationMatch.status == MatchStatus.REJECTED)
        .where(ReconciliationMatch.imported_transaction_id.in_(transaction_ids))
    )
    return set(result.tuples().all())


def _eligible(
    transaction: Transaction,
    instances: Iterable[ProjectedInstance],
    profile: ToleranceProfile,
    claims: dict[InstanceKey, set[UUID]],
    rejections: set[tuple[UUID, UUID, date]],
    claimed: set[InstanceKey] | None = None,
) -> list[ProjectedInstance]:
    window_start, window_end = candidate_window(transaction.txn_date, profile)
    eligible: list[ProjectedInstance] = []
    for instance in instances:
        if instance.kind != SeriesKind.TRANSACTION or instance.is_generated:
            continue
        if not window_start <= instance.effective_date <= window_end:
            continue
        if claims.get(instance.key, set()) - {transaction.id}:
            continue
        if (transaction.id, *instance.key) in rejections:
            continue
        if claimed is not None and instance.key in claimed:
            continue
        eligible.append(instance)
    return eligible


async def find_candidates(
    db: AsyncSession,
    transaction: Transaction,
    profile: ToleranceProfile,
) -> list[ProjectedInstance]:
    """Unrealized, unclaimed, unskipped instances of active transaction series due near the date."""
    range_from, range_to = await projection_range(db, *candidate_window(transaction.txn_date, profile))
    instances = await get_projected_instances(db, range_from, range_to, kind=SeriesKind.TRANSACTION)
    claims = await _load_claims(db, range_from, range_to)
    rejections = await _load_rejections(db, [transaction.id])
    return _eligible(transaction, instances, profile, claims, rejections)


# =============================================================================
# Matching workflow
# =============================================================================


@dataclass
class ReconciliationOutcome:
    transaction_id: UUID
    status: MatchStatus
    match: ReconciliationMatch | None = None
    candidate: MatchCandidate | None = None


@dataclass
class ReconciliationBatchResult:
    outcomes: list[ReconciliationOutcome] = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)
    cancelled: bool = False

    def count(self, status: MatchStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)


async def get_transaction(db: AsyncSession, transaction_id: UUID) -> Transaction:
    transaction = await db.get(Transaction, transaction_id)
    if transaction is None:
        raise NotFoundError("Transaction", transaction_id)
    return transaction


async def get_match(db: AsyncSession, match_id: UUID) -> ReconciliationMatch:
    match = await db.get(ReconciliationMatch, match_id)
    if match is None:
        raise NotFoundError("Reconciliation match", match_id)
    return match


async def _active_matches_for(db: AsyncSession, transaction_ids: Sequence[UUID]) -> dict[UUID, ReconciliationMatch]:
    if not transaction_ids:
        return {}
    result = await db.execute(
        select(ReconciliationMatch)
        .where(ReconciliationMatch.imported_transaction_id.in_(transaction_ids))
        .where(ReconciliationMatch.status != MatchStatus.REJECTED)
    )
    return {match.imported_transaction_id: match for match in result.scalars().all()}


async def _record_match(
    db: AsyncSession,
    transaction: Transaction,
    candidate: MatchCandidate,
) -> ReconciliationMatch:
    instance = candidate.instance
    status = candidate.status
    if status == MatchStatus.MATCHED:
        series = await get_series(db, instance.series_id)
        try:
            await link_to_instance(db, transaction, series, instance.scheduled_date)
        except (AlreadyRealizedError, ConflictError) as exc:
            # Realized meanwhile; keep the suggestion for review
            log_exception(
                logger,
                exc,
                "Auto-link failed, match left pending",
                level="warning",
                include_traceback=False,
                transaction_id=str(transaction.id),
                series_id=str(instance.series_id),
            )
            status = MatchStatus.PENDING

    match = ReconciliationMatch(
        imported_transaction_id=transaction.id,
        series_id=instance.series_id,
        instance_date=instance.scheduled_date,
        confidence_score=candidate.score,
        confidence_level=candidate.confidence_level,
        status=status,
        source=MatchSource.AUTO,
        amount_variance=candidate.amount_variance,
        date_offset_days=candidate.date_offset_days,
        description_similarity=candidate.breakdown["description"],
        score_breakdown=candidate.breakdown,
        resolved_at=datetime.now(UTC) if status == MatchStatus.MATCHED else None,
    )
    db.add(match)
    await db.flush()
    return match


async def _analyze_with_candidates(
    db: AsyncSession,
    transaction: Transaction,
    candidates: list[ProjectedInstance],
    profile: ToleranceProfile,
) -> ReconciliationOutcome:
    best = find_best_match(transaction, candidates, profile)
    if best is None:
        logger.info(
            "No recurring match",
            transaction_id=str(transaction.id),
            candidates=len(candidates),
            profile=profile.name,
        )
        return ReconciliationOutcome(transaction_id=transaction.id, status=MatchStatus.MISSING)

    match = await _record_match(db, transaction, best)
    logger.info(
        "Recurring match recorded",
        transaction_id=str(transaction.id),
        series_id=str(match.series_id),
        instance_date=match.instance_date.isoformat(),
        score=best.score,
        status=match.status.value,
    )
    return ReconciliationOutcome(
        transaction_id=transaction.id,
        status=match.status,
        match=match,
        candidate=best,
    )


async def analyze_transaction(
    db: AsyncSession,
    transaction_id: UUID,
    *,
    profile: ToleranceProfile,
) -> ReconciliationOutcome:
    """Match one imported transaction. A live match is returned unchanged."""
    transaction = await get_transaction(db, transaction_id)
    existing = (await _active_matches_for(db, [transaction.id])).get(transaction.id)
    if existing is not None:
        return ReconciliationOutcome(transaction_id=transaction.id, status=existing.status, match=existing)
    if transaction.recurring_series_id is not None:
        raise ValidationError(f"Transaction {transaction.id} is already tied to a recurring instance")

    candidates = await find_candidates(db, transaction, profile)
    return await _analyze_with_candidates(db, transaction, candidates, profile)


async def _unreconciled_imports(db: AsyncSession, account_id: UUID | None = None) -> list[Transaction]:
    live_match = exists().where(
        and_(
            ReconciliationMatch.imported_transaction_id == Transaction.id,
            ReconciliationMatch.status != MatchStatus.REJECTED,
        )
    )
    query = (
        select(Transaction)
        .where(Transaction.source == TransactionSource.IMPORT)
        .where(Transaction.recurring_series_id.is_(None))
        .where(~live_match)
    )
    if account_id is not None:
        query = query.where(Transaction.account_id == account_id)
    result = await db.execute(query.order_by(Transaction.txn_date, Transaction.id))
    return list(result.scalars().all())


async def reconcile_batch(
    db: AsyncSession,
    transaction_ids: Sequence[UUID] | None = None,
    *,
    profile: ToleranceProfile,
    account_id: UUID | None = None,
    stop_event: asyncio.Event | None = None,
) -> ReconciliationBatchResult:
    """Match a whole import.

    Without ``transaction_ids`` every imported transaction that is neither
    linked nor holding a live match is processed. Candidates are fetched once
    for the combined window; an instance claimed earlier in the batch is not
    offered again.
    """
    result = ReconciliationBatchResult()

    if transaction_ids is None:
        transactions = await _unreconciled_imports(db, account_id)
    else:
        rows = await db.execute(select(Transaction).where(Transaction.id.in_(transaction_ids)))
        by_id = {txn.id: txn for txn in rows.scalars().all()}
        for missing in dict.fromkeys(tid for tid in transaction_ids if tid not in by_id):
            result.failures.append(
                ItemFailure.from_error(NotFoundError("Transaction", missing), transaction_id=missing)
            )
        transactions = sorted(by_id.values(), key=lambda txn: (txn.txn_date, str(txn.id)))

    if not transactions:
        return result

    window_start = candidate_window(min(txn.txn_date for txn in transactions), profile)[0]
    window_end = candidate_window(max(txn.txn_date for txn in transactions), profile)[1]

    async with async_log_timing(
        "reconcile_batch",
        logger=logger,
        transactions=len(transactions),
        profile=profile.name,
    ) as timing:
        range_from, range_to = await projection_range(db, window_start, window_end)
        instances = await get_projected_instances(db, range_from, range_to, kind=SeriesKind.TRANSACTION)
        claims = await _load_claims(db, range_from, range_to)
        txn_ids = [txn.id for txn in transactions]
        rejections = await _load_rejections(db, txn_ids)
        live = await _active_matches_for(db, txn_ids)
        claimed: set[InstanceKey] = set()

        for transaction in transactions:
            if stop_event is not None and stop_event.is_set():
                result.cancelled = True
                break
            existing = live.get(transaction.id)
            if existing is not None:
                result.outcomes.append(
                    ReconciliationOutcome(transaction_id=transaction.id, status=existing.status, match=existing)
                )
                continue
            try:
                if transaction.recurring_series_id is not None:
                    raise ValidationError(f"Transaction {transaction.id} is already tied to a recurring instance")
                candidates = _eligible(transaction, instances, profile, claims, rejections, claimed)
                outcome = await _analyze_with_candidates(db, transaction, candidates, profile)
            except EngineError as exc:
                log_exception(
                    logger,
                    exc,
                    "Reconciliation item failed",
                    level="warning",
                    include_traceback=False,
                    transaction_id=str(transaction.id),
                )
                result.failures.append(ItemFailure.from_error(exc, transaction_id=transaction.id))
                continue
            if outcome.match is not None:
                claimed.add((outcome.match.series_id, outcome.match.instance_date))
            result.outcomes.append(outcome)

        timing["matched"] = result.count(MatchStatus.MATCHED)
        timing["pending"] = result.count(MatchStatus.PENDING)
        timing["missing"] = result.count(MatchStatus.MISSING)
        timing["failures"] = len(result.failures)
    return result


async def create_manual_link(
    db: AsyncSession,
    transaction_id: UUID,
    series_id: UUID,
    instance_date: date,
    *,
    remember_description: bool = False,
) -> ReconciliationMatch:
    """Link a transaction to an instance without scoring (Source=Manual).

    Pending suggestions for the same transaction or instance are rejected.
    With ``remember_description`` the transaction's description is learned as
    an import pattern on the series.
    """
    transaction = await get_transaction(db, transaction_id)
    series = await get_series(db, series_id)
    if series.kind != SeriesKind.TRANSACTION:
        raise ValidationError("Only transaction series can be linked to imported transactions")
    if not is_scheduled(series.pattern, series.start_date, series.end_date, instance_date):
        raise ValidationError(f"{instance_date.isoformat()} is not a scheduled occurrence of this series")
    exc = await get_exception(db, series.id, instance_date)
    if exc is not None and exc.is_skipped:
        raise ValidationError(f"{instance_date.isoformat()} is skipped")

    result = await db.execute(
        select(ReconciliationMatch)
        .where(ReconciliationMatch.status != MatchStatus.REJECTED)
        .where(
            or_(
                ReconciliationMatch.imported_transaction_id == transaction.id,
                and_(
                    ReconciliationMatch.series_id == series.id,
                    ReconciliationMatch.instance_date == instance_date,
                ),
            )
        )
    )
    live = list(result.scalars().all())
    for match in live:
        if match.status != MatchStatus.MATCHED:
            continue
        if (match.imported_transaction_id, match.series_id, match.instance_date) == (
            transaction.id,
            series.id,
            instance_date,
        ):
            return match
        if match.imported_transaction_id == transaction.id:
            raise ValidationError(f"Transaction {transaction.id} is already matched; unlink it first")
        raise AlreadyRealizedError(series.id, instance_date, [match.imported_transaction_id])

    now = datetime.now(UTC)
    for match in live:
        match.status = MatchStatus.REJECTED
        match.resolved_at = now
    if live:
        await db.flush()

    await link_to_instance(db, transaction, series, instance_date)

    modified = exc if exc is not None and not exc.is_skipped else None
    expected_amount = resolve_value(None, modified and modified.modified_amount, series.amount)
    effective_date = resolve_value(None, modified and modified.modified_date, instance_date)
    expected_description = resolve_value(None, modified and modified.modified_description, series.description)

    match = ReconciliationMatch(
        imported_transaction_id=transaction.id,
        series_id=series.id,
        instance_date=instance_date,
        confidence_score=1.0,
        confidence_level=ConfidenceLevel.HIGH,
        status=MatchStatus.MATCHED,
        source=MatchSource.MANUAL,
        amount_variance=abs(expected_amount) - abs(transaction.amount),
        date_offset_days=(transaction.txn_date - effective_date).days,
        description_similarity=score_description(
            transaction.description, expected_description, series.import_patterns or ()
        ),
        score_breakdown={},
        resolved_at=now,
    )
    db.add(match)
    await db.flush()

    if remember_description and transaction.description:
        await learn_import_pattern(db, series.id, transaction.description)

    logger.info(
        "Manual link created",
        transaction_id=str(transaction.id),
        series_id=str(series.id),
        instance_date=instance_date.isoformat(),
    )
    return match


async def accept_match(db: AsyncSession, match_id: UUID) -> ReconciliationMatch:
    """Confirm a pending match and link the transaction to its instance."""
    match = await get_match(db, match_id)
    if match.status != MatchStatus.PENDING:
        raise ValidationError(f"Only pending matches can be accepted (match is {match.status.value})")
    transaction = await get_transaction(db, match.imported_transaction_id)
    series = await get_series(db, match.series_id)
    await link_to_instance(db, transaction, series, match.instance_date)
    match.status = MatchStatus.MATCHED
    match.resolved_at = datetime.now(UTC)
    await db.flush()
    logger.info("Match accepted", match_id=str(match.id))
    return match


async def reject_match(db: AsyncSession, match_id: UUID) -> ReconciliationMatch:
    """Reject a pending match; the pair is not suggested again."""
    match = await get_match(db, match_id)
    if match.status != MatchStatus.PENDING:
        raise ValidationError(f"Only pending matches can be rejected (match is {match.status.value})")
    match.status = MatchStatus.REJECTED
    match.resolved_at = datetime.now(UTC)
    await db.flush()
    logger.info("Match rejected", match_id=str(match.id))
    return match


async def unlink_match(db: AsyncSession, match_id: UUID) -> None:
    """Remove a match (Auto or Manual) and return the instance to unmatched."""
    match = await get_match(db, match_id)
    if match.status == MatchStatus.MATCHED:
        transaction = await db.get(Transaction, match.imported_transaction_id)
        if transaction is not None and (
            transaction.recurring_series_id,
            transaction.recurring_instance_date,
        ) == (match.series_id, match.instance_date):
            await unlink_from_instance(db, transaction)
    series_id, instance_date = match.series_id, match.instance_date
    await db.delete(match)
    await db.flush()
    logger.info(
        "Match unlinked",
        match_id=str(match_id),
        series_id=str(series_id),
        instance_date=instance_date.isoformat(),
    )


async def list_matches(
    db: AsyncSession,
    *,
    status: MatchStatus | None = None,
    series_id: UUID | None = None,
    transaction_id: UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[ReconciliationMatch], int]:
    query = select(ReconciliationMatch)
    if status is not None:
        query = query.where(ReconciliationMatch.status == status)
    if series_id is not None:
        query = query.where(ReconciliationMatch.series_id == series_id)
    if transaction_id is not None:
        query = query.where(ReconciliationMatch.imported_transaction_id == transaction_id)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await db.execute(
        query.order_by(ReconciliationMatch.created_at.desc(), ReconciliationMatch.id).limit(limit).offset(offset)
    )
    return list(result.scalars().all()), total


# =============================================================================
# Period status report
# =============================================================================


@dataclass
class InstanceStatus:
    instance: ProjectedInstance
    status: MatchStatus
    match_id: UUID | None = None


@dataclass
class ReconciliationStatusReport:
    period_start: date
    period_end: date
    items: list[InstanceStatus]

    @property
    def counts(self) -> dict[str, int]:
        counter = Counter(item.status.value for item in self.items)
        return {
            status.value: counter.get(status.value, 0)
            for status in (MatchStatus.MATCHED, MatchStatus.PENDING, MatchStatus.MISSING, MatchStatus.SKIPPED)
        }


async def get_reconciliation_status(
    db: AsyncSession,
    year: int,
    month: int,
    *,
    account_id: UUID | None = None,
) -> ReconciliationStatusReport:
    """Status of every scheduled instance in a calendar month."""
    if not 1 <= month <= 12:
        raise ValidationError(f"month must be 1-12, got {month}")
    period_start = date(year, month, 1)
    period_end = clamp_day(year, month, 31)

    instances = await get_projected_instances(
        db, period_start, period_end, account_id=account_id, include_skipped=True
    )
    result = await db.execute(
        select(ReconciliationMatch.id, ReconciliationMatch.series_id, ReconciliationMatch.instance_date)
        .where(ReconciliationMatch.status == MatchStatus.PENDING)
        .where(ReconciliationMatch.instance_date >= period_start)
        .where(ReconciliationMatch.instance_date <= period_end)
    )
    pending = {(series_id, instance_date): match_id for match_id, series_id, instance_date in result.tuples().all()}

    items: list[InstanceStatus] = []
    for instance in instances:
        if instance.is_skipped:
            items.append(InstanceStatus(instance, MatchStatus.SKIPPED))
        elif instance.is_generated:
            items.append(InstanceStatus(instance, MatchStatus.MATCHED))
        elif instance.key in pending:
            items.append(InstanceStatus(instance, MatchStatus.PENDING, pending[instance.key]))
        else:
            items.append(InstanceStatus(instance, MatchStatus.MISSING))
    return ReconciliationStatusReport(period_start=period_start, period_end=period_end, items=items)
