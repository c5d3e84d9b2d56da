"""Processing stage: write catalog entities for every release in a validated message."""

from __future__ import annotations

import hashlib
import logging
import traceback
from dataclasses import dataclass
from typing import Any, Callable

from stardust_dsp.application.deliveries import DeliveryRepository, ErrorReporter
from stardust_dsp.application.event_publisher import EventPublisher, NullEventPublisher
from stardust_dsp.application.outcome import StageOutcome
from stardust_dsp.application.ports import ArrayUnion, DocumentStore, Increment, MessageQueue, ObjectStore
from stardust_dsp.domain.catalog import ArtworkSet, ReleaseRecord, TrackRecord, artist_slug
from stardust_dsp.domain.events import ReleasesProcessed, StageFailed
from stardust_dsp.domain.jobs import AcknowledgmentJob, ErrorNotification, ProcessingJob, TranscodeJob
from stardust_dsp.domain.models import Delivery, MessageType, ProcessingStatus
from stardust_dsp.domain.policies import DEFAULT_ARTWORK_POLICY, ArtworkPolicy
from stardust_dsp.domain.release_graph import Image, Release, ReleaseGraph, SoundRecording
from stardust_dsp.durations import parse_duration
from stardust_dsp.errors import StardustError
from stardust_dsp.utils.timestamps import utc_now_iso

LOGGER = logging.getLogger(__name__)

RELEASES = "releases"
TRACKS = "tracks"
ARTISTS = "artists"
ALBUMS = "albums"
DELIVERY_HISTORY = "deliveryHistory"

UNKNOWN_ARTIST = "Unknown Artist"
PUBLISHING_ROLES = frozenset({"Composer", "Lyricist", "ComposerLyricist", "Author"})

_RUNNABLE = frozenset({ProcessingStatus.VALIDATED, ProcessingStatus.PROCESSING_RELEASES})


def release_id_for(delivery_id: str, release: Release, index: int) -> str:
    """GRid, then UPC, then a digest of the delivery and release reference."""

    if release.grid:
        return release.grid
    if release.icpn:
        return f"UPC_{release.icpn}"
    reference = release.release_reference or str(index)
    digest = hashlib.sha1(f"{delivery_id}:{reference}".encode("utf-8")).hexdigest()
    return f"GR{digest[:12].upper()}"


def track_id_for(release_id: str, recording: SoundRecording, position: int) -> str:
    if recording.isrc:
        return f"ISRC_{recording.isrc}"
    return f"{release_id}_TRACK_{position}"


def _copyright_documents(lines: list[Any]) -> list[dict[str, Any]]:
    return [{"type": line.kind, "text": line.text, "year": line.year} for line in lines]


@dataclass
class ReleaseProcessor:
    store: DocumentStore
    deliveries: DeliveryRepository
    objects: ObjectStore
    queue: MessageQueue
    errors: ErrorReporter
    cdn_base_url: str
    artwork_policy: ArtworkPolicy = DEFAULT_ARTWORK_POLICY
    event_publisher: EventPublisher = NullEventPublisher()
    clock: Callable[[], str] = utc_now_iso

    def handle(self, payload: dict[str, Any]) -> StageOutcome:
        job = ProcessingJob.from_payload(payload)
        delivery = self.deliveries.find(job.delivery_id)
        if delivery is None:
            return StageOutcome.terminal(job.delivery_id, "delivery record not found")
        if delivery.status not in _RUNNABLE:
            LOGGER.info("processing_skipped", extra={"delivery_id": job.delivery_id, "status": delivery.status.value})
            return StageOutcome.skipped(job.delivery_id, f"delivery already {delivery.status.value}")

        self.deliveries.transition(job.delivery_id, ProcessingStatus.PROCESSING_RELEASES)
        warnings: list[str] = []
        try:
            graph = ReleaseGraph.model_validate(job.release_data)
            processed = self._process_graph(graph, delivery, job, warnings)
            self._record_history(delivery, graph, processed)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("processing_failed", extra={"delivery_id": job.delivery_id})
            message = str(exc) or type(exc).__name__
            self.deliveries.fail(
                job.delivery_id,
                ProcessingStatus.PROCESSING_FAILED,
                message,
                traceback.format_exc(),
            )
            self.errors.report(ErrorNotification(job.delivery_id, "processing_failed", message))
            self.event_publisher.publish(
                StageFailed(correlation_id=job.delivery_id, payload_summary={"stage": "process", "error": message})
            )
            return StageOutcome.terminal(job.delivery_id, message)

        track_count = sum(int(item["trackCount"]) for item in processed)
        self.deliveries.transition(
            job.delivery_id,
            ProcessingStatus.COMPLETED,
            {
                "processing.releaseCount": len(processed),
                "processing.trackCount": track_count,
                "processing.warnings": delivery.processing.warnings + warnings,
                "processing.releases": processed,
                "processing.error": None,
            },
        )
        self.queue.publish(AcknowledgmentJob.topic, AcknowledgmentJob(job.delivery_id, processed).to_payload())
        self.event_publisher.publish(
            ReleasesProcessed(
                correlation_id=job.delivery_id,
                payload_summary={
                    "release_count": len(processed),
                    "track_count": track_count,
                    "message_type": graph.message_type,
                },
            )
        )
        return StageOutcome.completed(job.delivery_id, releases=processed, warnings=warnings)

    def on_exhausted(self, payload: dict[str, Any], detail: str) -> None:
        delivery_id = payload["deliveryId"]
        self.deliveries.fail(delivery_id, ProcessingStatus.PROCESSING_FAILED, detail)
        self.errors.report(ErrorNotification(delivery_id, "processing_failed", detail))

    def _process_graph(
        self,
        graph: ReleaseGraph,
        delivery: Delivery,
        job: ProcessingJob,
        warnings: list[str],
    ) -> list[dict[str, Any]]:
        processed: list[dict[str, Any]] = []
        for index, release in enumerate(graph.releases):
            release_id = release_id_for(delivery.id, release, index)
            if graph.message_type == MessageType.TAKEDOWN.value:
                entry = self._take_down(release_id, release, delivery, warnings)
            else:
                entry = self._process_release(release_id, release, graph, delivery, job, warnings)
            if entry is not None:
                processed.append(entry)
        if not processed:
            raise StardustError("No releases could be processed from this delivery")
        return processed

    def _take_down(
        self,
        release_id: str,
        release: Release,
        delivery: Delivery,
        warnings: list[str],
    ) -> dict[str, Any] | None:
        existing = self.store.get(RELEASES, release_id)
        if existing is None:
            warnings.append(f"Takedown for unknown release {release_id}")
            return None
        now = self.clock()
        self.store.update(
            RELEASES,
            release_id,
            {
                "status": "taken_down",
                "ingestion.takedownAt": now,
                "ingestion.takedownDeliveryId": delivery.id,
                "updatedAt": now,
            },
        )
        for track_id in existing.get("trackIds") or []:
            if self.store.get(TRACKS, track_id) is not None:
                self.store.update(TRACKS, track_id, {"status": "taken_down", "updatedAt": now})
        LOGGER.info("release_taken_down", extra={"release_id": release_id, "delivery_id": delivery.id})
        metadata = existing.get("metadata") or {}
        return {
            "releaseId": release_id,
            "title": metadata.get("title") or release.title,
            "artist": metadata.get("displayArtist") or release.display_artist,
            "trackCount": 0,
            "action": "takedown",
        }

    def _process_release(
        self,
        release_id: str,
        release: Release,
        graph: ReleaseGraph,
        delivery: Delivery,
        job: ProcessingJob,
        warnings: list[str],
    ) -> dict[str, Any] | None:
        title = release.title or release.first_territory_value("title")
        if not title:
            warnings.append(f"Release {release.release_reference or release_id} has no title and was skipped")
            return None
        artist = release.display_artist or release.first_territory_value("display_artist") or UNKNOWN_ARTIST
        label = release.label or release.first_territory_value("label") or "Independent"
        existing = self.store.get(RELEASES, release_id)
        now = self.clock()

        record = ReleaseRecord(
            id=release_id,
            title=title,
            display_artist=artist,
            label=label,
            release_date=(
                release.original_release_date
                or release.release_date
                or release.first_territory_value("release_date")
            ),
            genres=release.genres or release.first_territory_value("genres") or [],
            copyright=_copyright_documents(release.copyright),
            catalog_number=release.catalog_number,
            release_type=release.release_type,
            upc=release.icpn,
            grid=release.grid,
            sender=delivery.sender,
            territories=release.territories,
            start_date=release.start_date,
            end_date=release.end_date,
            delivery_id=delivery.id,
            ern_version=job.ern_version,
            message_type=graph.message_type,
            release_reference=release.release_reference,
        )
        document = record.to_document()
        document["updatedAt"] = now
        if existing is None:
            document["createdAt"] = now
            document["stats"] = {"playCount": 0, "saveCount": 0}
        # assets and trackIds are filled in once tracks and artwork are written
        document.pop("assets")
        document.pop("trackIds")
        self.store.set(RELEASES, release_id, document, merge=True)

        tracks = [
            self._process_track(release_id, record, recording, position, job, warnings)
            for position, recording in enumerate(release.sound_recordings, 1)
        ]
        track_ids = [track.id for track in tracks]
        cover, additional = self._artwork(release_id, release.images, job.delivery_path)
        record.cover_art = cover
        record.additional_art = additional
        record.track_ids = track_ids

        self._upsert_artists(release_id, artist, tracks, record.genres)
        self._write_album(record, tracks)

        self.store.update(
            RELEASES,
            release_id,
            {
                "assets": {"coverArt": cover.to_document(), "additionalArt": additional},
                "trackIds": track_ids,
                "metadata.totalTracks": len(track_ids),
                "status": "active",
                "ingestion.completedAt": self.clock(),
                "ingestion.deliveryHistory": ArrayUnion((delivery.id,)),
            },
        )
        for track_id in track_ids:
            self.store.update(TRACKS, track_id, {"status": "active"})

        if existing is None:
            action = "create"
        elif graph.message_type == MessageType.UPDATE.value:
            action = "update"
        else:
            action = "overwrite"
        LOGGER.info(
            "release_processed",
            extra={"release_id": release_id, "delivery_id": delivery.id, "track_count": len(track_ids), "action": action},
        )
        return {
            "releaseId": release_id,
            "title": title,
            "artist": artist,
            "trackCount": len(track_ids),
            "action": action,
        }

    def _process_track(
        self,
        release_id: str,
        release: ReleaseRecord,
        recording: SoundRecording,
        position: int,
        job: ProcessingJob,
        warnings: list[str],
    ) -> TrackRecord:
        track_id = track_id_for(release_id, recording, position)
        artist = recording.display_artist or release.display_artist
        if recording.file_name:
            source_path = f"{job.delivery_path}/{recording.file_name}"
        else:
            source_path = f"audio/original/{track_id}/audio.mp3"
        contributors = [{"name": item.name, "role": item.role} for item in recording.contributors]

        track = TrackRecord(
            id=track_id,
            release_id=release_id,
            isrc=recording.isrc,
            title=recording.title or "Unknown Track",
            display_artist=artist,
            duration=parse_duration(recording.duration, warnings),
            track_number=recording.sequence_number or position,
            disc_number=recording.disc_number,
            contributors=contributors,
            genres=recording.genres or release.genres,
            language=recording.language,
            explicit=recording.explicit,
            source_path=source_path,
            audio_format=recording.codec or "MP3",
            bitrate=recording.bitrate,
            sample_rate=recording.sample_rate,
            md5=recording.md5,
            hls_url=f"{self.cdn_base_url}/hls/{track_id}/master.m3u8",
            dash_url=f"{self.cdn_base_url}/dash/{track_id}/manifest.mpd",
            copyright=_copyright_documents(recording.copyright) or list(release.copyright),
            territories=recording.territories or release.territories,
            master_rights=[
                {"id": artist_slug(release.label), "name": release.label, "type": "label", "share": 100}
            ],
            publishing_rights=_publishing_rights(recording),
        )
        document = track.to_document()
        now = self.clock()
        document["updatedAt"] = now
        if self.store.get(TRACKS, track_id) is None:
            document["createdAt"] = now
            document["stats"] = {"playCount": 0, "saveCount": 0}
        self.store.set(TRACKS, track_id, document, merge=True)

        self.queue.publish(
            TranscodeJob.topic,
            TranscodeJob(
                track_id=track_id,
                release_id=release_id,
                source_path=source_path,
                delivery_id=job.delivery_id,
            ).to_payload(),
        )
        return track

    def _artwork(
        self,
        release_id: str,
        images: list[Image],
        delivery_path: str,
    ) -> tuple[ArtworkSet, list[dict[str, Any]]]:
        front = next((image for image in images if image.is_front_cover), None)
        if front is None:
            front = next((image for image in images if image.looks_like_cover), None)

        additional: list[dict[str, Any]] = []
        cover: ArtworkSet | None = None
        for image in images:
            if image.file_name:
                key = f"{delivery_path}/{image.file_name}"
            else:
                key = self.artwork_policy.artwork_key(release_id, image.image_type)
            if image is front:
                cover = self._artwork_set(key, image.image_type, image.md5)
                continue
            additional.append(
                {
                    "type": image.image_type,
                    "url": self.objects.public_url(key),
                    "width": image.width,
                    "height": image.height,
                    "format": image.codec,
                    "md5Hash": image.md5,
                }
            )
        if cover is None:
            LOGGER.info("artwork_placeholder_used", extra={"release_id": release_id})
            cover = self._artwork_set(self.artwork_policy.placeholder_key, "FrontCoverImage", None, placeholder=True)
        return cover, additional

    def _artwork_set(self, key: str, image_type: str, md5: str | None, placeholder: bool = False) -> ArtworkSet:
        variants = {label: self.objects.public_url(path) for label, path in self.artwork_policy.variant_keys(key).items()}
        return ArtworkSet(
            url=self.objects.public_url(key),
            small=variants["small"],
            medium=variants["medium"],
            large=variants["large"],
            image_type=image_type,
            md5=md5,
            placeholder=placeholder,
        )

    def _upsert_artists(self, release_id: str, release_artist: str, tracks: list[TrackRecord], genres: list[str]) -> None:
        by_artist: dict[str, list[str]] = {}
        if release_artist != UNKNOWN_ARTIST:
            by_artist.setdefault(release_artist, [])
        for track in tracks:
            if track.display_artist and track.display_artist != UNKNOWN_ARTIST:
                by_artist.setdefault(track.display_artist, []).append(track.id)

        now = self.clock()
        for name, track_ids in by_artist.items():
            artist_id = artist_slug(name)
            existing = self.store.get(ARTISTS, artist_id)
            if existing is None:
                self.store.set(
                    ARTISTS,
                    artist_id,
                    {
                        "id": artist_id,
                        "name": name,
                        "sortName": name.lower(),
                        "releases": [release_id],
                        "trackIds": list(track_ids),
                        "profile": {"genres": list(genres)},
                        "stats": {"releaseCount": 1, "trackCount": len(track_ids)},
                        "verified": False,
                        "createdAt": now,
                        "updatedAt": now,
                    },
                )
                continue

            fields: dict[str, Any] = {
                "releases": ArrayUnion((release_id,)),
                "trackIds": ArrayUnion(tuple(track_ids)),
                "updatedAt": now,
            }
            if release_id not in (existing.get("releases") or []):
                fields["stats.releaseCount"] = Increment(1)
            self.store.update(ARTISTS, artist_id, fields)
            merged = self.store.get(ARTISTS, artist_id) or {}
            self.store.update(ARTISTS, artist_id, {"stats.trackCount": len(merged.get("trackIds") or [])})

    def _write_album(self, release: ReleaseRecord, tracks: list[TrackRecord]) -> None:
        self.store.set(
            ALBUMS,
            release.id,
            {
                "id": release.id,
                "releaseId": release.id,
                "metadata": {
                    "title": release.title,
                    "displayArtist": release.display_artist,
                    "type": release.release_type,
                    "releaseDate": release.release_date,
                    "label": release.label,
                    "upc": release.upc,
                    "genre": list(release.genres),
                },
                "artwork": {
                    "cover": release.cover_art.to_document() if release.cover_art else None,
                    "additional": list(release.additional_art),
                },
                "trackIds": [track.id for track in tracks],
                "trackCount": len(tracks),
                "totalDuration": sum(track.duration for track in tracks),
                "updatedAt": self.clock(),
            },
            merge=True,
        )

    def _record_history(self, delivery: Delivery, graph: ReleaseGraph, processed: list[dict[str, Any]]) -> None:
        self.store.set(
            DELIVERY_HISTORY,
            delivery.id,
            {
                "deliveryId": delivery.id,
                "distributorId": delivery.sender,
                "messageId": graph.header.message_id,
                "messageType": graph.message_type,
                "releaseIds": [item["releaseId"] for item in processed],
                "releaseCount": len(processed),
                "trackCount": sum(int(item["trackCount"]) for item in processed),
                "processedAt": self.clock(),
            },
        )


def _publishing_rights(recording: SoundRecording) -> list[dict[str, Any]]:
    writers = [item for item in recording.contributors if item.role in PUBLISHING_ROLES]
    if not writers:
        return []
    share = round(100 / len(writers), 4)
    return [
        {"id": artist_slug(item.name), "name": item.name, "type": "publisher", "role": item.role, "share": share}
        for item in writers
    ]
