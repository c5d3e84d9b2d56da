"""Play tracking, daily aggregates, usage reports and play cleanup."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from stardust_dsp.application.event_publisher import EventPublisher, NullEventPublisher
from stardust_dsp.application.ports import BATCH_WRITE_LIMIT, ArrayUnion, DocumentStore, Filter, Increment
from stardust_dsp.domain.events import PlayCompleted, PlayRecorded, UsageAggregated
from stardust_dsp.domain.models import PlayEvent
from stardust_dsp.errors import DocumentNotFoundError, InvalidRequestError, PlayCompletedError
from stardust_dsp.utils.timestamps import utc_now

LOGGER = logging.getLogger(__name__)

PLAYS = "plays"
ANALYTICS_DAILY = "analytics_daily"
AGGREGATION_RUNS = "aggregationRuns"
TRACKS = "tracks"
RELEASES = "releases"
ARTISTS = "artists"

COMPLETION_PERCENTAGE = 95

TOP_TRACKS = 50
TOP_RELEASES = 20
TOP_ARTISTS = 20


@dataclass(slots=True)
class _DailyBucket:
    date: str
    track_id: str
    release_id: str | None = None
    artist_id: str | None = None
    plays: int = 0
    completions: int = 0
    duration: float = 0.0
    listeners: Counter = field(default_factory=Counter)
    countries: Counter = field(default_factory=Counter)
    country_listeners: dict[str, Counter] = field(default_factory=dict)
    dsp_plays: Counter = field(default_factory=Counter)
    hours: list[int] = field(default_factory=lambda: [0] * 24)

    def add(self, play: PlayEvent) -> None:
        self.plays += 1
        self.release_id = self.release_id or play.release_id
        self.artist_id = self.artist_id or play.artist_id
        if play.completed:
            self.completions += 1
        self.duration += play.duration
        if play.user_id:
            self.listeners[play.user_id] += 1
        if play.country:
            self.countries[play.country] += 1
            if play.user_id:
                self.country_listeners.setdefault(play.country, Counter())[play.user_id] += 1
        if play.dsp:
            self.dsp_plays[play.dsp.lower()] += 1
        if play.hour is not None and 0 <= play.hour < 24:
            self.hours[play.hour] += 1

    def merged_with(self, existing: dict[str, Any] | None, now: str) -> dict[str, Any]:
        """Fold this window's counts into an aggregate document already on disk."""

        existing = existing or {}
        listeners = Counter(existing.get("listenerPlays") or {})
        listeners.update(self.listeners)
        countries = Counter(existing.get("countries") or {})
        countries.update(self.countries)
        country_listeners = {
            country: Counter(counts) for country, counts in (existing.get("countryListenerPlays") or {}).items()
        }
        for country, counts in self.country_listeners.items():
            country_listeners.setdefault(country, Counter()).update(counts)
        dsp_plays = Counter(existing.get("dspPlays") or {})
        dsp_plays.update(self.dsp_plays)
        hours = list(existing.get("hours") or [0] * 24)
        hours = [current + added for current, added in zip(hours, self.hours)]
        return {
            "date": self.date,
            "trackId": self.track_id,
            "releaseId": existing.get("releaseId") or self.release_id,
            "artistId": existing.get("artistId") or self.artist_id,
            "plays": int(existing.get("plays") or 0) + self.plays,
            "completions": int(existing.get("completions") or 0) + self.completions,
            "duration": float(existing.get("duration") or 0.0) + self.duration,
            "listenerPlays": dict(listeners),
            "uniqueListeners": len(listeners),
            "uniqueListenersList": sorted(listeners),
            "countries": dict(countries),
            "primaryCountry": countries.most_common(1)[0][0] if countries else None,
            "countryListenerPlays": {country: dict(counts) for country, counts in country_listeners.items()},
            "dspPlays": dict(dsp_plays),
            "hours": hours,
            "updatedAt": now,
        }


def _window_key(start: datetime, end: datetime) -> str:
    return f"{start:%Y-%m-%dT%H}_{end:%Y-%m-%dT%H}"


@dataclass
class UsageAggregator:
    store: DocumentStore
    event_publisher: EventPublisher = NullEventPublisher()
    clock: Callable[[], datetime] = utc_now
    batch_limit: int = BATCH_WRITE_LIMIT

    def aggregate_window(self, window_end: datetime | None = None, window_hours: int = 1) -> dict[str, Any]:
        """Fold plays in ``[end - window_hours, end)`` into ``analytics_daily``.

        The window is truncated to whole hours and recorded in
        ``aggregationRuns`` so a rerun of the same window adds nothing.
        """

        end = (window_end or self.clock()).replace(minute=0, second=0, microsecond=0)
        start = end - timedelta(hours=window_hours)
        window = _window_key(start, end)
        if self.store.get(AGGREGATION_RUNS, window) is not None:
            LOGGER.info("usage_window_already_aggregated", extra={"window": window})
            return {"window": window, "plays": 0, "aggregated": 0, "batches": 0, "skipped": True}

        plays = self.store.query(
            PLAYS,
            [
                Filter("timestamp", ">=", start.isoformat()),
                Filter("timestamp", "<", end.isoformat()),
            ],
        )
        buckets: dict[str, _DailyBucket] = {}
        for item in plays:
            play = PlayEvent.from_document(item.key, item.data)
            key = f"{play.date}_{play.track_id}"
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = _DailyBucket(date=play.date, track_id=play.track_id)
            bucket.add(play)

        now = self.clock().isoformat()
        batches = 0
        batch = self.store.batch()
        pending = 0
        for key, bucket in buckets.items():
            batch.set(ANALYTICS_DAILY, key, bucket.merged_with(self.store.get(ANALYTICS_DAILY, key), now))
            pending += 1
            if pending >= self.batch_limit:
                batch.commit()
                batches += 1
                batch = self.store.batch()
                pending = 0
        if pending:
            batch.commit()
            batches += 1

        self.store.set(
            AGGREGATION_RUNS,
            window,
            {"start": start.isoformat(), "end": end.isoformat(), "plays": len(plays), "aggregated": len(buckets), "completedAt": now},
        )
        LOGGER.info(
            "usage_aggregated",
            extra={"window": window, "plays": len(plays), "aggregated": len(buckets), "batches": batches},
        )
        self.event_publisher.publish(
            UsageAggregated(
                correlation_id=window,
                payload_summary={"plays": len(plays), "aggregated": len(buckets), "batches": batches},
            )
        )
        return {"window": window, "plays": len(plays), "aggregated": len(buckets), "batches": batches, "skipped": False}

    def cleanup_old_plays(self, max_age_days: int = 30, limit: int = BATCH_WRITE_LIMIT) -> int:
        """Delete incomplete play events older than ``max_age_days``."""

        cutoff = (self.clock() - timedelta(days=max_age_days)).isoformat()
        stale = self.store.query(
            PLAYS,
            [Filter("timestamp", "<", cutoff), Filter("completed", "==", False)],
            limit=limit,
        )
        if not stale:
            return 0
        batch = self.store.batch()
        for item in stale:
            batch.delete(PLAYS, item.key)
        deleted = batch.commit()
        LOGGER.info("old_plays_deleted", extra={"deleted": deleted, "cutoff": cutoff})
        return deleted


@dataclass
class PlayTracker:
    """Writes play events and keeps the live counters on tracks, releases and artists."""

    store: DocumentStore
    event_publisher: EventPublisher = NullEventPublisher()
    clock: Callable[[], datetime] = utc_now

    def record_play(
        self,
        track_id: str,
        release_id: str,
        user_id: str,
        *,
        country: str | None = None,
        dsp: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> str:
        """Append a play event and bump the catalog play counters; returns the play id."""

        if not track_id or not release_id:
            raise InvalidRequestError("invalid_play", "Track ID and Release ID are required")
        if not user_id:
            raise InvalidRequestError("invalid_play", "User ID is required")
        track = self.store.get(TRACKS, track_id)
        if track is None:
            raise DocumentNotFoundError(TRACKS, track_id)

        now = self.clock()
        stamp = now.isoformat()
        artist_id = track.get("artistId")
        play_id = self.store.add(
            PLAYS,
            {
                "context": dict(context or {}),
                "trackId": track_id,
                "releaseId": release_id,
                "artistId": artist_id,
                "userId": user_id,
                "timestamp": stamp,
                "date": now.date().isoformat(),
                "hour": now.hour,
                "dayOfWeek": now.isoweekday() % 7,
                "month": now.month,
                "year": now.year,
                "country": country,
                "dsp": dsp,
                "completed": False,
                "duration": 0.0,
                "percentage": 0.0,
            },
        )

        batch = self.store.batch()
        batch.update(
            TRACKS,
            track_id,
            {"stats.playCount": Increment(1), "stats.monthlyPlays": Increment(1), "stats.lastPlayed": stamp},
        )
        if self.store.get(RELEASES, release_id) is not None:
            batch.update(RELEASES, release_id, {"stats.playCount": Increment(1), "stats.lastPlayed": stamp})
        if artist_id and self.store.get(ARTISTS, artist_id) is not None:
            batch.update(
                ARTISTS,
                artist_id,
                {"stats.playCount": Increment(1), "stats.monthlyListeners": ArrayUnion((user_id,))},
            )
        batch.commit()

        LOGGER.info("play_recorded", extra={"play_id": play_id, "track_id": track_id, "release_id": release_id})
        self.event_publisher.publish(
            PlayRecorded(correlation_id=play_id, payload_summary={"trackId": track_id, "releaseId": release_id})
        )
        return play_id

    def update_play_progress(
        self,
        play_id: str,
        duration: float,
        percentage: float,
        completed: bool = False,
    ) -> dict[str, Any]:
        """Record listening progress. At the completion threshold the play is closed to further edits."""

        if duration < 0 or not 0 <= percentage <= 100:
            raise InvalidRequestError("invalid_progress", "Duration must be non-negative and percentage within 0-100")
        play = self.store.get(PLAYS, play_id)
        if play is None:
            raise DocumentNotFoundError(PLAYS, play_id)
        if play.get("completed"):
            raise PlayCompletedError(f"Play {play_id} is already completed")

        done = bool(completed) or percentage >= COMPLETION_PERCENTAGE
        fields = {
            "duration": float(duration),
            "percentage": float(percentage),
            "completed": done,
            "lastUpdate": self.clock().isoformat(),
        }
        batch = self.store.batch()
        batch.update(PLAYS, play_id, fields)
        track_id = play.get("trackId")
        if done and track_id and self.store.get(TRACKS, track_id) is not None:
            batch.update(TRACKS, track_id, {"stats.completions": Increment(1)})
        batch.commit()

        if done:
            LOGGER.info("play_completed", extra={"play_id": play_id, "track_id": track_id})
            self.event_publisher.publish(
                PlayCompleted(correlation_id=play_id, payload_summary={"trackId": track_id, "duration": float(duration)})
            )
        return {"playId": play_id, **fields}


def _ranked(counts: Counter, limit: int) -> list[dict[str, Any]]:
    return [{"id": key, "plays": plays} for key, plays in counts.most_common(limit)]


def get_usage_report(
    store: DocumentStore,
    start_date: str,
    end_date: str,
    territory: str | None = None,
    report_type: str = "usage",
) -> dict[str, Any]:
    """Summarise ``analytics_daily`` between two ISO dates (inclusive)."""

    filters = [Filter("date", ">=", start_date), Filter("date", "<=", end_date)]
    if territory and territory.lower() != "worldwide":
        filters.append(Filter("primaryCountry", "==", territory))
    documents = [item.data for item in store.query(ANALYTICS_DAILY, filters)]

    listeners: set[str] = set()
    tracks: Counter = Counter()
    releases: Counter = Counter()
    artists: Counter = Counter()
    countries: Counter = Counter()
    hourly = [0] * 24
    daily: dict[str, dict[str, Any]] = {}
    total_plays = 0
    total_duration = 0.0
    completions = 0

    for data in documents:
        plays = int(data.get("plays") or 0)
        total_plays += plays
        total_duration += float(data.get("duration") or 0.0)
        completions += int(data.get("completions") or 0)
        day_listeners = set(data.get("uniqueListenersList") or [])
        listeners.update(day_listeners)
        if data.get("trackId"):
            tracks[data["trackId"]] += plays
        if data.get("releaseId"):
            releases[data["releaseId"]] += plays
        if data.get("artistId"):
            artists[data["artistId"]] += plays

        day = daily.setdefault(data["date"], {"plays": 0, "duration": 0.0, "listeners": set()})
        day["plays"] += plays
        day["duration"] += float(data.get("duration") or 0.0)
        day["listeners"].update(day_listeners)

        for hour, count in enumerate(data.get("hours") or []):
            if hour < 24:
                hourly[hour] += count
        countries.update(data.get("countries") or {})

    return {
        "reportType": report_type,
        "period": {"startDate": start_date, "endDate": end_date},
        "territory": territory or "worldwide",
        "totalPlays": total_plays,
        "uniqueListeners": len(listeners),
        "totalDuration": total_duration,
        "topTracks": _ranked(tracks, TOP_TRACKS),
        "topReleases": _ranked(releases, TOP_RELEASES),
        "topArtists": _ranked(artists, TOP_ARTISTS),
        "dailyBreakdown": {
            date: {"plays": day["plays"], "duration": day["duration"], "listeners": len(day["listeners"])}
            for date, day in sorted(daily.items())
        },
        "hourlyDistribution": hourly,
        "countryBreakdown": dict(countries),
        "completionRate": round(completions / total_plays * 100, 2) if total_plays else 0.0,
    }
