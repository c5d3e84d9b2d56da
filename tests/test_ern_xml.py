from __future__ import annotations

import pytest

from conftest import COVERLESS_ERN, GRID, ISRC, SINGLE_TRACK_ERN, TAKEDOWN_ERN

from stardust_dsp.ern_xml import parse_ern, sanitize_xml
from stardust_dsp.errors import ErnParseError


def test_parse_ern4_release_graph() -> None:
    parsed = parse_ern(SINGLE_TRACK_ERN)

    assert parsed.root_name == "NewReleaseMessage"
    assert parsed.version == "ERN-4.3"
    assert parsed.profile == "CommonReleaseProfile"
    assert parsed.message_type == "NewRelease"

    header = parsed.graph.header
    assert header.message_id == "MSG-001"
    assert header.sender.party_id == "PADPIDA2014021301F"
    assert header.sender.name == "Nebula Records"

    release = parsed.graph.releases[0]
    assert release.grid == GRID
    assert release.icpn == "0123456789012"
    assert release.title == "Orbit & Ash"
    assert release.release_type == "Single"
    assert release.territories == ["Worldwide"]

    recording = release.sound_recordings[0]
    assert recording.isrc == ISRC
    assert recording.duration == "PT3M25S"
    assert recording.file_name == "resources/orbit.flac"
    assert [(item.name, item.role) for item in recording.contributors] == [("Ada Stone", "Composer")]
    assert release.images[0].is_front_cover


def test_parse_accepts_bytes_with_bom() -> None:
    parsed = parse_ern(b"\xef\xbb\xbf" + COVERLESS_ERN.encode("utf-8"))

    assert parsed.version == "ERN-3.8.2"
    assert parsed.profile == "AudioAlbumMusicOnly"
    assert parsed.graph.releases[0].images == []


def test_default_namespace_and_takedown_detection() -> None:
    parsed = parse_ern(TAKEDOWN_ERN)

    assert parsed.version == "ERN-4.3"
    assert parsed.message_type == "Takedown"


def test_message_standard_wins_over_namespace() -> None:
    xml = SINGLE_TRACK_ERN.replace(
        "<MessageId>MSG-001</MessageId>",
        "<MessageId>MSG-001</MessageId><MessageStandard>ern-4.1</MessageStandard>"
        "<MessageControlType>TestMessage</MessageControlType>",
    )

    parsed = parse_ern(xml)

    assert parsed.version == "ERN-4.1"
    assert parsed.profile == "TestMessage"


def test_update_indicator_marks_update_message() -> None:
    xml = SINGLE_TRACK_ERN.replace(
        "<ReleaseReference>R0</ReleaseReference>",
        "<ReleaseReference>R0</ReleaseReference><UpdateIndicator>UpdateMessage</UpdateIndicator>",
    )

    assert parse_ern(xml).message_type == "Update"


def test_track_release_dropped_when_main_release_present() -> None:
    xml = SINGLE_TRACK_ERN.replace(
        "</ReleaseList>",
        "<Release><ReleaseReference>R1</ReleaseReference><ReleaseId><ICPN>1111</ICPN></ReleaseId>"
        "<ReferenceTitle><TitleText>Orbit</TitleText></ReferenceTitle>"
        "<ReleaseType>TrackRelease</ReleaseType></Release></ReleaseList>",
    )

    releases = parse_ern(xml).graph.releases

    assert [release.release_reference for release in releases] == ["R0"]


def test_party_list_resolves_display_artist_reference() -> None:
    xml = COVERLESS_ERN.replace(
        "<ResourceList>",
        "<PartyList><Party><PartyReference>P1</PartyReference>"
        "<PartyName><FullName>Kepler Choir</FullName></PartyName></Party></PartyList><ResourceList>",
    ).replace(
        "<DisplayArtistName>Kepler Choir</DisplayArtistName>",
        "<DisplayArtist><ArtistPartyReference>P1</ArtistPartyReference></DisplayArtist>",
    )

    assert parse_ern(xml).graph.releases[0].display_artist == "Kepler Choir"


def test_sanitize_escapes_bare_ampersands_and_strips_prefixes() -> None:
    cleaned = sanitize_xml("<ern:Title>Rock & Roll &amp; Blues &#38; Soul</ern:Title>")

    assert cleaned == "<Title>Rock &amp; Roll &amp; Blues &#38; Soul</Title>"


@pytest.mark.parametrize(
    "content, message",
    [
        ("", "empty"),
        ("<NewReleaseMessage><MessageHeader>", "Malformed"),
        ("<NewReleaseMessage/>", "no content"),
        (
            "<NewReleaseMessage><MessageHeader><MessageId>X</MessageId></MessageHeader></NewReleaseMessage>",
            "release graph",
        ),
    ],
)
def test_unparseable_manifests_raise(content: str, message: str) -> None:
    with pytest.raises(ErnParseError, match=message):
        parse_ern(content)


@pytest.mark.parametrize(
    "doctype",
    [
        '<!DOCTYPE lolz [<!ENTITY lol "lol"><!ENTITY lol2 "&lol;&lol;&lol;&lol;&lol;&lol;&lol;&lol;">]>',
        '<!DOCTYPE r [<!ENTITY xxe SYSTEM "file:///etc/passwd">]>',
    ],
)
def test_entity_declarations_are_refused(doctype: str) -> None:
    manifest = doctype + "<NewReleaseMessage><MessageHeader><MessageId>&lol2;</MessageId></MessageHeader></NewReleaseMessage>"

    with pytest.raises(ErnParseError, match="forbidden construct"):
        parse_ern(manifest)


def test_out_of_range_numbers_are_dropped() -> None:
    manifest = SINGLE_TRACK_ERN.replace(
        "<Duration>PT3M25S</Duration>", "<Duration>PT3M25S</Duration><SequenceNumber>1e999</SequenceNumber>", 1
    )

    recording = parse_ern(manifest).graph.releases[0].sound_recordings[0]

    assert recording.sequence_number is None
