"""Durable catalog records written by the release processor."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any


def artist_slug(name: str) -> str:
    """Derive a stable artist id from a display name."""

    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:50] or "unknown-artist"


@dataclass(slots=True)
class ArtworkSet:
    """Cover art URL with synthesized size variants."""

    url: str
    small: str
    medium: str
    large: str
    image_type: str = "FrontCoverImage"
    md5: str | None = None
    placeholder: bool = False

    def to_document(self) -> dict[str, Any]:
        return {
            "type": self.image_type,
            "url": self.url,
            "md5Hash": self.md5,
            "placeholder": self.placeholder,
            "sizes": {"small": self.small, "medium": self.medium, "large": self.large},
        }


@dataclass(slots=True)
class ReleaseRecord:
    id: str
    title: str
    display_artist: str
    label: str
    release_date: str | None
    genres: list[str]
    copyright: list[dict[str, Any]]
    catalog_number: str | None
    release_type: str
    upc: str | None
    grid: str | None
    sender: str
    territories: list[str]
    start_date: str | None
    end_date: str | None
    delivery_id: str
    ern_version: str | None
    message_type: str
    release_reference: str | None = None
    status: str = "processing"
    track_ids: list[str] = field(default_factory=list)
    cover_art: ArtworkSet | None = None
    additional_art: list[dict[str, Any]] = field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "upc": self.upc,
            "grid": self.grid,
            "releaseReference": self.release_reference,
            "sender": self.sender,
            "metadata": {
                "title": self.title,
                "displayArtist": self.display_artist,
                "label": self.label,
                "releaseDate": self.release_date,
                "genre": list(self.genres),
                "copyright": list(self.copyright),
                "releaseType": self.release_type,
                "catalogNumber": self.catalog_number,
                "totalTracks": len(self.track_ids),
            },
            "availability": {
                "territories": list(self.territories),
                "startDate": self.start_date,
                "endDate": self.end_date,
                "tier": "all",
            },
            "ingestion": {
                "deliveryId": self.delivery_id,
                "ernVersion": self.ern_version,
                "messageType": self.message_type,
            },
            "assets": {
                "coverArt": self.cover_art.to_document() if self.cover_art else None,
                "additionalArt": list(self.additional_art),
            },
            "trackIds": list(self.track_ids),
            "status": self.status,
        }


@dataclass(slots=True)
class TrackRecord:
    id: str
    release_id: str
    isrc: str | None
    title: str
    display_artist: str
    duration: int
    track_number: int
    disc_number: int
    contributors: list[dict[str, str]]
    genres: list[str]
    language: str | None
    explicit: bool
    source_path: str | None
    audio_format: str
    bitrate: int | None
    sample_rate: int | None
    md5: str | None
    hls_url: str
    dash_url: str
    copyright: list[dict[str, Any]]
    territories: list[str]
    master_rights: list[dict[str, Any]] = field(default_factory=list)
    publishing_rights: list[dict[str, Any]] = field(default_factory=list)
    status: str = "processing"

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "releaseId": self.release_id,
            "isrc": self.isrc,
            "title": self.title,
            "artist": self.display_artist,
            "artistId": artist_slug(self.display_artist),
            "duration": self.duration,
            "metadata": {
                "title": self.title,
                "displayArtist": self.display_artist,
                "duration": self.duration,
                "trackNumber": self.track_number,
                "discNumber": self.disc_number,
                "contributors": list(self.contributors),
                "genre": list(self.genres),
                "language": self.language,
                "explicit": self.explicit,
            },
            "audio": {
                "original": self.source_path,
                "format": self.audio_format,
                "bitrate": self.bitrate,
                "sampleRate": self.sample_rate,
                "md5Hash": self.md5,
                "streams": {"hls": self.hls_url, "dash": self.dash_url},
            },
            "rights": {
                "copyright": list(self.copyright),
                "territories": list(self.territories),
            },
            "masterRights": list(self.master_rights),
            "publishingRights": list(self.publishing_rights),
            "status": self.status,
        }
