"""Royalty statements from daily aggregates, and scheduled payment creation."""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from stardust_dsp.application.event_publisher import EventPublisher, NullEventPublisher
from stardust_dsp.application.ports import DocumentStore, Filter
from stardust_dsp.application.reporting.usage import ANALYTICS_DAILY
from stardust_dsp.domain.events import StatementGenerated
from stardust_dsp.domain.models import (
    Distribution,
    DistributionStatus,
    RoyaltyMethod,
    RoyaltyStatement,
    StatementStatus,
)
from stardust_dsp.domain.policies import DEFAULT_ROYALTY_POLICY, RoyaltyPolicy
from stardust_dsp.errors import DocumentNotFoundError, InvalidRequestError, StatementLockedError
from stardust_dsp.periods import ReportingPeriod, resolve_period
from stardust_dsp.utils.timestamps import utc_now

LOGGER = logging.getLogger(__name__)

DSP_REVENUE = "dsp_revenue"
STATEMENTS = "royalty_statements"
PAYMENTS = "payments"
TRACKS = "tracks"

HELD_REASON = "Below minimum threshold"


@dataclass(slots=True)
class StreamingData:
    total_streams: float = 0.0
    worldwide_streams: float = 0.0
    track_streams: Counter = field(default_factory=Counter)
    dsp_streams: Counter = field(default_factory=Counter)
    user_streams: dict[str, Counter] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RevenueSummary:
    total: float
    platform_fees: float
    net: float
    by_dsp: dict[str, float]
    source: str
    territory_share: float = 1.0


@dataclass(slots=True)
class RightsHolder:
    id: str
    name: str | None
    holder_type: str
    # track id -> (master share %, publishing share %)
    tracks: dict[str, list[float]] = field(default_factory=dict)


@dataclass(slots=True)
class _Accumulator:
    holder: RightsHolder
    streams: float = 0.0
    amount: float = 0.0


def parse_method(method: RoyaltyMethod | str) -> RoyaltyMethod:
    try:
        return RoyaltyMethod(method)
    except ValueError as exc:
        raise InvalidRequestError("invalid_method", f"Unknown calculation method: {method}") from exc


@dataclass
class RoyaltyEngine:
    """Computes per-holder distributions for a period and stores a draft statement."""

    store: DocumentStore
    policy: RoyaltyPolicy = DEFAULT_ROYALTY_POLICY
    event_publisher: EventPublisher = NullEventPublisher()
    clock: Callable[[], datetime] = utc_now

    def calculate(
        self,
        period: str,
        territory: str | None = None,
        method: RoyaltyMethod | str = RoyaltyMethod.PRO_RATA,
        generated_by: str | None = None,
    ) -> RoyaltyStatement:
        resolved = resolve_period(period)
        method = parse_method(method)
        territory = territory or "worldwide"
        LOGGER.info(
            "royalty_calculation_started",
            extra={"period": period, "territory": territory, "method": method.value},
        )

        streaming = self.fetch_streaming(resolved, territory)
        revenue = self.fetch_revenue(resolved, streaming)
        holders = self.fetch_rights_holders()

        if method is RoyaltyMethod.PRO_RATA:
            distributions = self.pro_rata(streaming, revenue.net, holders)
        elif method is RoyaltyMethod.USER_CENTRIC:
            distributions = self.user_centric(streaming, revenue.net, holders)
        else:
            distributions = self.hybrid(streaming, revenue.net, holders)
        distributions = self.apply_threshold(distributions)

        now = self.clock()
        statement = RoyaltyStatement(
            statement_id=f"STMT_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:6]}",
            period=period,
            start_date=resolved.start_date,
            end_date=resolved.end_date,
            territory=territory,
            method=method,
            total_revenue=revenue.total,
            platform_fees=revenue.platform_fees,
            net_revenue=revenue.net,
            distributions=distributions,
            generated_by=generated_by,
            generated_at=now.isoformat(),
            revenue_source=revenue.source,
        )
        self.store.set(STATEMENTS, statement.statement_id, statement.to_document())
        LOGGER.info(
            "royalty_statement_generated",
            extra={
                "statement_id": statement.statement_id,
                "net_revenue": revenue.net,
                "total_distributed": statement.total_distributed,
                "holder_count": len(distributions),
            },
        )
        self.event_publisher.publish(
            StatementGenerated(
                correlation_id=statement.statement_id,
                payload_summary={
                    "period": period,
                    "method": method.value,
                    "net_revenue": revenue.net,
                    "total_distributed": statement.total_distributed,
                    "total_held": statement.total_held,
                },
            )
        )
        return statement

    def fetch_streaming(self, period: ReportingPeriod, territory: str) -> StreamingData:
        """Sum aggregate plays per track; a territory narrows to that country's plays.

        DSP and listener counts of a narrowed aggregate are scaled by the
        country's share of its plays, unless the aggregate carries per-country
        listener counts.
        """

        data = StreamingData()
        narrowed = territory.lower() != "worldwide"
        documents = self.store.query(
            ANALYTICS_DAILY,
            [Filter("date", ">=", period.start_date), Filter("date", "<=", period.end_date)],
        )
        for item in documents:
            record = item.data
            all_plays = float(record.get("plays") or 0)
            data.worldwide_streams += all_plays
            plays = all_plays
            listener_plays = record.get("listenerPlays") or {}
            ratio = 1.0
            if narrowed:
                plays = float((record.get("countries") or {}).get(territory) or 0)
                if plays <= 0:
                    continue
                ratio = plays / all_plays if all_plays else 1.0
                by_country = record.get("countryListenerPlays")
                if by_country is not None:
                    listener_plays = by_country.get(territory) or {}
                else:
                    listener_plays = {user_id: count * ratio for user_id, count in listener_plays.items()}
            track_id = record.get("trackId")
            data.total_streams += plays
            if track_id:
                data.track_streams[track_id] += plays
            for dsp, count in (record.get("dspPlays") or {}).items():
                data.dsp_streams[dsp] += count * ratio
            if track_id:
                for user_id, count in listener_plays.items():
                    if count > 0:
                        data.user_streams.setdefault(user_id, Counter())[track_id] += count
        return data

    def fetch_revenue(self, period: ReportingPeriod, streaming: StreamingData) -> RevenueSummary:
        """Recorded DSP revenue for the exact period, else an estimate from the rate table.

        Recorded revenue is worldwide, so a territory statement takes the
        territory's share of the period's streams.
        """

        rows = self.store.query(
            DSP_REVENUE,
            [
                Filter("period.startDate", "==", period.start_date),
                Filter("period.endDate", "==", period.end_date),
            ],
        )
        by_dsp: dict[str, float] = {}
        share = 1.0
        if rows:
            source = "recorded"
            if streaming.worldwide_streams > 0:
                share = min(streaming.total_streams / streaming.worldwide_streams, 1.0)
            for item in rows:
                dsp = item.data.get("dsp") or "unknown"
                by_dsp[dsp] = by_dsp.get(dsp, 0.0) + float(item.data.get("amount") or 0.0) * share
        else:
            source = "estimated"
            attributed = 0.0
            for dsp, plays in streaming.dsp_streams.items():
                by_dsp[dsp] = plays * self.policy.rate_for(dsp)
                attributed += plays
            unattributed = max(streaming.total_streams - attributed, 0.0)
            if unattributed:
                by_dsp["default"] = unattributed * self.policy.default_rate
            LOGGER.info("royalty_revenue_estimated", extra={"streams": streaming.total_streams})

        total = sum(by_dsp.values())
        fees = total * self.policy.platform_fee_rate
        return RevenueSummary(
            total=total,
            platform_fees=fees,
            net=total - fees,
            by_dsp=by_dsp,
            source=source,
            territory_share=share,
        )

    def fetch_rights_holders(self) -> dict[str, RightsHolder]:
        holders: dict[str, RightsHolder] = {}
        for item in self.store.query(TRACKS, [Filter("status", "==", "active")]):
            track = item.data
            for slot, key, default_type in ((0, "masterRights", "label"), (1, "publishingRights", "publisher")):
                entries = track.get(key) or []
                total_share = sum(float(entry.get("share") or 100) for entry in entries)
                # over-allocated share tables are scaled down to 100%
                scale = 100 / total_share if total_share > 100 else 1.0
                for entry in entries:
                    holder = holders.get(entry["id"])
                    if holder is None:
                        holder = holders[entry["id"]] = RightsHolder(
                            id=entry["id"],
                            name=entry.get("name"),
                            holder_type=entry.get("type") or default_type,
                        )
                    shares = holder.tracks.setdefault(item.key, [0.0, 0.0])
                    shares[slot] += float(entry.get("share") or 100) * scale
        return holders

    def _weighted(self, shares: list[float]) -> float:
        master, publishing = shares
        return master / 100 * self.policy.master_split + publishing / 100 * self.policy.publishing_split

    def pro_rata(self, streaming: StreamingData, net: float, holders: dict[str, RightsHolder]) -> list[Distribution]:
        results: list[Distribution] = []
        total = streaming.total_streams
        if total <= 0:
            return results
        for holder in holders.values():
            holder_streams = sum(
                streaming.track_streams.get(track_id, 0) * self._weighted(shares)
                for track_id, shares in holder.tracks.items()
            )
            if holder_streams <= 0:
                continue
            amount = holder_streams / total * net
            results.append(self._distribution(holder, holder_streams, amount, total))
        return _sorted(results)

    def user_centric(self, streaming: StreamingData, net: float, holders: dict[str, RightsHolder]) -> list[Distribution]:
        if not streaming.user_streams:
            return []
        per_listener = net / len(streaming.user_streams)
        by_track: dict[str, list[RightsHolder]] = {}
        for holder in holders.values():
            for track_id in holder.tracks:
                by_track.setdefault(track_id, []).append(holder)

        totals: dict[str, _Accumulator] = {}
        for tracks in streaming.user_streams.values():
            listener_plays = sum(tracks.values())
            if listener_plays <= 0:
                continue
            for track_id, plays in tracks.items():
                track_revenue = per_listener * plays / listener_plays
                for holder in by_track.get(track_id, []):
                    accumulator = totals.setdefault(holder.id, _Accumulator(holder))
                    accumulator.streams += plays
                    accumulator.amount += track_revenue * self._weighted(holder.tracks[track_id])

        total_plays = sum(sum(tracks.values()) for tracks in streaming.user_streams.values())
        results = [
            self._distribution(item.holder, item.streams, item.amount, total_plays)
            for item in totals.values()
            if item.amount > 0
        ]
        return _sorted(results)

    def hybrid(self, streaming: StreamingData, net: float, holders: dict[str, RightsHolder]) -> list[Distribution]:
        merged: dict[str, Distribution] = {}
        for part in (self.pro_rata(streaming, net / 2, holders), self.user_centric(streaming, net / 2, holders)):
            for item in part:
                current = merged.get(item.rights_holder_id)
                if current is None:
                    merged[item.rights_holder_id] = item
                    continue
                current.streams += item.streams
                current.gross_amount += item.gross_amount
                current.net_amount += item.net_amount
        total = streaming.total_streams
        for item in merged.values():
            item.share_percentage = round(item.streams / total * 100, 2) if total else 0.0
        return _sorted(list(merged.values()))

    def apply_threshold(self, distributions: list[Distribution]) -> list[Distribution]:
        for item in distributions:
            if item.net_amount < self.policy.minimum_payment:
                item.status = DistributionStatus.HELD
                item.held_amount = item.net_amount
                item.held_reason = HELD_REASON
                item.net_amount = 0.0
        return distributions

    @staticmethod
    def _distribution(holder: RightsHolder, streams: float, amount: float, total: float) -> Distribution:
        return Distribution(
            rights_holder_id=holder.id,
            name=holder.name,
            holder_type=holder.holder_type,
            streams=round(streams, 4),
            share_percentage=round(streams / total * 100, 2) if total else 0.0,
            gross_amount=amount,
            net_amount=amount,
            track_count=len(holder.tracks),
        )


def _sorted(distributions: list[Distribution]) -> list[Distribution]:
    return sorted(distributions, key=lambda item: item.net_amount, reverse=True)


@dataclass
class StatementRepository:
    store: DocumentStore

    def get(self, statement_id: str) -> RoyaltyStatement:
        document = self.store.get(STATEMENTS, statement_id)
        if document is None:
            raise DocumentNotFoundError(STATEMENTS, statement_id)
        return RoyaltyStatement.from_document(document)

    def save(self, statement: RoyaltyStatement, fields: dict[str, Any] | None = None) -> None:
        """Persist ``statement``; once stored as paid it can no longer change."""

        current = self.store.get(STATEMENTS, statement.statement_id)
        if current and current.get("status") == StatementStatus.PAID.value:
            raise StatementLockedError(f"statement {statement.statement_id} is paid and locked")
        document = statement.to_document()
        document.update(fields or {})
        self.store.set(STATEMENTS, statement.statement_id, document, merge=True)

    def approve(self, statement_id: str) -> RoyaltyStatement:
        statement = self.get(statement_id)
        if statement.status is StatementStatus.PAID:
            raise StatementLockedError(f"statement {statement_id} is paid and locked")
        statement.status = StatementStatus.APPROVED
        self.save(statement)
        LOGGER.info("royalty_statement_approved", extra={"statement_id": statement_id})
        return statement


@dataclass
class PaymentProcessor:
    """Schedules payments for approved statements; unpaid entries wait for the next run."""

    store: DocumentStore
    policy: RoyaltyPolicy = DEFAULT_ROYALTY_POLICY
    clock: Callable[[], datetime] = utc_now

    def process_approved(self) -> list[dict[str, Any]]:
        statements = StatementRepository(self.store)
        results: list[dict[str, Any]] = []
        approved = self.store.query(STATEMENTS, [Filter("status", "==", StatementStatus.APPROVED.value)])
        for item in approved:
            if item.data.get("paymentStatus") == "completed":
                continue
            statement = RoyaltyStatement.from_document(item.data)
            for distribution in statement.distributions:
                if distribution.status is not DistributionStatus.PENDING or distribution.net_amount <= 0:
                    continue
                try:
                    payment_id = self._create_payment(statement, distribution)
                except Exception as error:  # noqa: BLE001
                    LOGGER.error(
                        "payment_creation_failed",
                        extra={
                            "statement_id": statement.statement_id,
                            "rights_holder_id": distribution.rights_holder_id,
                            "error": str(error),
                        },
                    )
                    results.append(
                        {"rightsHolderId": distribution.rights_holder_id, "status": "failed", "error": str(error)}
                    )
                    continue
                distribution.status = DistributionStatus.PAID
                distribution.payment_id = payment_id
                results.append(
                    {
                        "rightsHolderId": distribution.rights_holder_id,
                        "amount": distribution.net_amount,
                        "paymentId": payment_id,
                        "status": "scheduled",
                    }
                )

            outstanding = any(
                entry.status is DistributionStatus.PENDING and entry.net_amount > 0
                for entry in statement.distributions
            )
            statement.payment_status = "processing" if outstanding else "completed"
            if not outstanding:
                statement.status = StatementStatus.PAID
            statements.save(statement, {"paymentProcessedAt": self.clock().isoformat()})

        LOGGER.info("royalty_payments_processed", extra={"payment_count": len(results)})
        return results

    def _create_payment(self, statement: RoyaltyStatement, distribution: Distribution) -> str:
        now = self.clock()
        payment_id = f"PAY_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"
        self.store.set(
            PAYMENTS,
            payment_id,
            {
                "paymentId": payment_id,
                "statementId": statement.statement_id,
                "rightsHolderId": distribution.rights_holder_id,
                "amount": distribution.net_amount,
                "currency": self.policy.currency,
                "method": "bank_transfer",
                "status": "scheduled",
                "scheduledDate": (now + timedelta(days=self.policy.payment_delay_days)).isoformat(),
                "createdAt": now.isoformat(),
            },
        )
        return payment_id
