"""Canonical release graph produced from one ERN message."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _GraphModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class Party(_GraphModel):
    party_id: str | None = None
    name: str | None = None


class MessageHeader(_GraphModel):
    message_id: str | None = None
    created_at: str | None = None
    sender: Party = Field(default_factory=Party)
    recipient: Party = Field(default_factory=Party)
    control_type: str | None = None
    profile: str | None = None


class CopyrightLine(_GraphModel):
    kind: str
    text: str
    year: int | None = None

    @field_validator("kind")
    @classmethod
    def _validate_kind(cls, value: str) -> str:
        if value not in {"C", "P"}:
            raise ValueError("copyright kind must be 'C' or 'P'")
        return value


class Contributor(_GraphModel):
    name: str
    role: str = "Performer"


class TerritoryDetails(_GraphModel):
    territory_codes: list[str] = Field(default_factory=list)
    title: str | None = None
    display_artist: str | None = None
    label: str | None = None
    genres: list[str] = Field(default_factory=list)
    release_date: str | None = None


class SoundRecording(_GraphModel):
    resource_reference: str | None = None
    isrc: str | None = None
    title: str | None = None
    display_artist: str | None = None
    duration: str | None = None
    sequence_number: int | None = None
    disc_number: int = 1
    contributors: list[Contributor] = Field(default_factory=list)
    genres: list[str] = Field(default_factory=list)
    language: str | None = None
    explicit: bool = False
    copyright: list[CopyrightLine] = Field(default_factory=list)
    territories: list[str] = Field(default_factory=list)
    file_name: str | None = None
    codec: str | None = None
    bitrate: int | None = None
    sample_rate: int | None = None
    md5: str | None = None


class Image(_GraphModel):
    resource_reference: str | None = None
    image_type: str = "Unknown"
    file_name: str | None = None
    width: int | None = None
    height: int | None = None
    codec: str | None = None
    md5: str | None = None

    @property
    def is_front_cover(self) -> bool:
        return self.image_type.lower() == "frontcoverimage"

    @property
    def looks_like_cover(self) -> bool:
        return "cover" in self.image_type.lower()


class Release(_GraphModel):
    release_reference: str | None = None
    grid: str | None = None
    icpn: str | None = None
    catalog_number: str | None = None
    release_type: str = "Album"
    title: str | None = None
    display_artist: str | None = None
    label: str | None = None
    genres: list[str] = Field(default_factory=list)
    release_date: str | None = None
    original_release_date: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    copyright: list[CopyrightLine] = Field(default_factory=list)
    territory_details: list[TerritoryDetails] = Field(default_factory=list)
    resource_references: list[str] = Field(default_factory=list)
    update_indicator: str | None = None
    sound_recordings: list[SoundRecording] = Field(default_factory=list)
    images: list[Image] = Field(default_factory=list)

    @property
    def territories(self) -> list[str]:
        codes = [code for details in self.territory_details for code in details.territory_codes]
        return codes or ["Worldwide"]

    def first_territory_value(self, attribute: str) -> Any:
        for details in self.territory_details:
            value = getattr(details, attribute)
            if value:
                return value
        return None


class ReleaseGraph(_GraphModel):
    """Typed view of an ERN message: header plus one or more releases."""

    header: MessageHeader
    message_type: str = "NewRelease"
    releases: list[Release] = Field(min_length=1)

    @property
    def track_count(self) -> int:
        return sum(len(release.sound_recordings) for release in self.releases)
