"""ERN manifest parsing: raw XML to a loose tree to a validated release graph."""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any

from defusedxml import DefusedXmlException
from defusedxml import ElementTree as SafeET
from pydantic import ValidationError

from stardust_dsp.domain.models import MessageType
from stardust_dsp.domain.release_graph import (
    Contributor,
    CopyrightLine,
    Image,
    MessageHeader,
    Party,
    Release,
    ReleaseGraph,
    SoundRecording,
    TerritoryDetails,
)
from stardust_dsp.errors import ErnParseError

LOGGER = logging.getLogger(__name__)

DEFAULT_ERN_VERSION = "ERN-3.8.2"
ERN4_DEFAULT_PROFILE = "CommonReleaseProfile"
ERN3_DEFAULT_PROFILE = "AudioAlbumMusicOnly"

_BARE_AMPERSAND = re.compile(r"&(?!(?:amp|lt|gt|quot|apos|#\d+|#x[0-9a-fA-F]+);)")
_ELEMENT_PREFIX = re.compile(r"<(/?)[A-Za-z_][\w.-]*:(?=[A-Za-z_])")
_ERN_NAMESPACE = re.compile(r"xmlns(?::[\w.-]+)?\s*=\s*[\"']http://ddex\.net/xml/ern/(\d+)[\"']")
_SCHEMA_VERSION = re.compile(r"ern/(\d+)", re.IGNORECASE)

Node = dict[str, Any]


@dataclass(frozen=True, slots=True)
class ParsedErn:
    """Result of parsing one manifest."""

    graph: ReleaseGraph
    version: str
    profile: str
    root_name: str

    @property
    def message_type(self) -> str:
        return self.graph.message_type


def sanitize_xml(xml_text: str) -> str:
    """Escape stray ampersands and drop namespace prefixes from element names."""

    cleaned = _BARE_AMPERSAND.sub("&amp;", xml_text)
    return _ELEMENT_PREFIX.sub(r"<\1", cleaned)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].rsplit(":", 1)[-1]


def _element_to_node(element: ET.Element) -> Any:
    children = list(element)
    attributes = {f"@{_local(name)}": value for name, value in element.attrib.items()}
    text = (element.text or "").strip()
    if not children and not attributes:
        return text
    node: Node = dict(attributes)
    if text:
        node["#text"] = text
    for child in children:
        key = _local(child.tag)
        value = _element_to_node(child)
        if key not in node:
            node[key] = value
        elif isinstance(node[key], list):
            node[key].append(value)
        else:
            node[key] = [node[key], value]
    return node


def parse_loose_tree(xml_text: str) -> tuple[str, Node]:
    """Parse XML into ``(root_name, tree)`` with prefixes stripped and repeats as lists."""

    try:
        root = SafeET.fromstring(sanitize_xml(xml_text))
    except ET.ParseError as exc:
        raise ErnParseError(f"Malformed ERN XML: {exc}") from exc
    except DefusedXmlException as exc:
        raise ErnParseError(f"Malformed ERN XML: forbidden construct ({type(exc).__name__})") from exc
    tree = _element_to_node(root)
    if not isinstance(tree, dict):
        raise ErnParseError("ERN root element has no content")
    return _local(root.tag), tree


def _as_list(value: Any) -> list[Any]:
    if value is None or value == "":
        return []
    return value if isinstance(value, list) else [value]


def _text(value: Any) -> str | None:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("#text")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _path(node: Any, *keys: str) -> Any:
    current = node
    for key in keys:
        if isinstance(current, list):
            current = current[0] if current else None
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _first_text(node: Any, *paths: tuple[str, ...]) -> str | None:
    for path in paths:
        value = _text(_path(node, *path))
        if value:
            return value
    return None


def _collect(node: Any, key: str) -> list[Any]:
    """All values stored under ``key`` anywhere below ``node``, in document order."""

    found: list[Any] = []
    if isinstance(node, list):
        for item in node:
            found.extend(_collect(item, key))
    elif isinstance(node, dict):
        for name, value in node.items():
            if name == key:
                found.extend(_as_list(value))
            else:
                found.extend(_collect(value, key))
    return found


def _int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(float(value))
    except (ValueError, OverflowError):
        return None


def _version_from_digits(digits: str) -> str:
    return "ERN-" + ".".join(digits)


def detect_ern_version(xml_text: str, tree: Node) -> str:
    """Explicit standard field, schema version, namespace, root heuristics, then the default."""

    standard = _first_text(tree, ("MessageHeader", "MessageStandard"), ("MessageStandard",))
    if standard:
        if standard.upper().startswith("ERN-"):
            return standard.upper()
        match = _SCHEMA_VERSION.search(standard)
        if match:
            return _version_from_digits(match.group(1))

    schema_version = _text(tree.get("@MessageSchemaVersionId"))
    if schema_version:
        match = _SCHEMA_VERSION.search(schema_version)
        if match:
            return _version_from_digits(match.group(1))

    namespace = _ERN_NAMESPACE.search(xml_text)
    if namespace:
        return _version_from_digits(namespace.group(1))

    if "PartyList" in tree:
        return "ERN-4.3"
    LOGGER.warning("ern_version_defaulted", extra={"ern_version": DEFAULT_ERN_VERSION})
    return DEFAULT_ERN_VERSION


def detect_ern_profile(tree: Node, ern_version: str) -> str:
    header = tree.get("MessageHeader")
    profile = _first_text(header, ("MessageProfile",), ("MessageControlType",))
    if profile:
        return profile
    if ern_version.startswith("ERN-4"):
        return ERN4_DEFAULT_PROFILE
    return ERN3_DEFAULT_PROFILE


def detect_message_type(root_name: str, tree: Node) -> str:
    for deal in _collect(tree.get("DealList"), "DealTerms"):
        if (_text(_path(deal, "TakeDown")) or "").lower() == "true":
            return MessageType.TAKEDOWN.value

    releases = _as_list(_path(tree, "ReleaseList", "Release"))
    indicator = _text(_path(releases[0], "UpdateIndicator")) if releases else None
    indicator = indicator or _text(tree.get("UpdateIndicator"))
    if indicator == "OriginalMessage":
        return MessageType.NEW_RELEASE.value
    if indicator:
        return MessageType.UPDATE.value

    upper_root = root_name.upper()
    if "PURGE" in upper_root or "TAKEDOWN" in upper_root:
        return MessageType.TAKEDOWN.value
    return MessageType.NEW_RELEASE.value


class _GraphBuilder:
    """Map a loose ERN tree onto the canonical release graph."""

    def __init__(self, tree: Node) -> None:
        self.tree = tree
        self.parties = {
            _text(party.get("PartyReference")): _first_text(party, ("PartyName", "FullName"), ("PartyName",))
            for party in _as_list(_path(tree, "PartyList", "Party"))
            if isinstance(party, dict) and _text(party.get("PartyReference"))
        }

    def _party_name(self, node: Any) -> str | None:
        name = _first_text(
            node,
            ("PartyName", "FullName"),
            ("Name",),
            ("PartyName",),
        )
        if name:
            return name
        reference = _first_text(node, ("ArtistPartyReference",), ("ContributorPartyReference",), ("PartyReference",))
        if reference:
            return self.parties.get(reference)
        return _text(node)

    def header(self) -> MessageHeader:
        header = self.tree.get("MessageHeader") or {}
        return MessageHeader(
            message_id=_first_text(header, ("MessageId",)),
            created_at=_first_text(header, ("MessageCreatedDateTime",)),
            sender=Party(
                party_id=_first_text(header, ("MessageSender", "PartyId")),
                name=_first_text(header, ("MessageSender", "PartyName", "FullName"), ("MessageSender", "PartyName")),
            ),
            recipient=Party(
                party_id=_first_text(header, ("MessageRecipient", "PartyId")),
                name=_first_text(
                    header, ("MessageRecipient", "PartyName", "FullName"), ("MessageRecipient", "PartyName")
                ),
            ),
            control_type=_first_text(header, ("MessageControlType",)),
            profile=_first_text(header, ("MessageProfile",)),
        )

    def _copyright(self, *nodes: Any) -> list[CopyrightLine]:
        lines: list[CopyrightLine] = []
        for node in nodes:
            for kind, key, text_key in (("C", "CLine", "CLineText"), ("P", "PLine", "PLineText")):
                for line in _as_list(_path(node, key)):
                    text = _first_text(line, (text_key,)) or _text(line)
                    if text:
                        lines.append(CopyrightLine(kind=kind, text=text, year=_int(_first_text(line, ("Year",)))))
            if lines:
                break
        return lines

    def _genres(self, *nodes: Any) -> list[str]:
        for node in nodes:
            genres = [
                text
                for genre in _as_list(_path(node, "Genre"))
                if (text := _first_text(genre, ("GenreText",)) or _text(genre))
            ]
            if genres:
                return genres
        return []

    def _technical(self, node: Any, *keys: str) -> Any:
        for key in keys:
            details = _path(node, key)
            if details:
                return details[0] if isinstance(details, list) else details
        return {}

    def _md5(self, technical: Any) -> str | None:
        for hash_node in _collect(technical, "HashSum"):
            if not isinstance(hash_node, dict):
                continue
            algorithm = _first_text(hash_node, ("HashSumAlgorithmType",), ("Algorithm",))
            value = _first_text(hash_node, ("HashSum",), ("HashSumValue",)) or _text(hash_node)
            if value and (algorithm or "MD5").upper() == "MD5":
                return value
        return None

    def sound_recording(self, node: Node) -> SoundRecording:
        details = _as_list(node.get("SoundRecordingDetailsByTerritory"))
        technical = self._technical(node, "TechnicalDetails", "TechnicalSoundRecordingDetails")
        if not technical and details:
            technical = self._technical(details[0], "TechnicalSoundRecordingDetails")

        contributors: list[Contributor] = []
        for source in [node, *details]:
            for key, role_key in (
                ("Contributor", "Role"),
                ("ResourceContributor", "ResourceContributorRole"),
                ("IndirectResourceContributor", "IndirectResourceContributorRole"),
            ):
                for contributor in _as_list(_path(source, key)):
                    name = self._party_name(contributor)
                    if name:
                        role = _first_text(contributor, (role_key,), ("Role",)) or "Performer"
                        contributors.append(Contributor(name=name, role=role))

        display_artist = _first_text(node, ("DisplayArtistName",))
        for source in [node, *details]:
            if display_artist:
                break
            artist_node = _path(source, "DisplayArtist")
            if artist_node:
                display_artist = self._party_name(_as_list(artist_node)[0])
        if not display_artist:
            main = next((c for c in contributors if c.role == "MainArtist"), None)
            display_artist = main.name if main else None

        first_detail = details[0] if details else {}
        return SoundRecording(
            resource_reference=_first_text(node, ("ResourceReference",)),
            isrc=_first_text(
                node,
                ("SoundRecordingId", "ISRC"),
                ("ResourceId", "ISRC"),
                ("SoundRecordingEdition", "ResourceId", "ISRC"),
            ),
            title=_first_text(
                node,
                ("DisplayTitleText",),
                ("ReferenceTitle", "TitleText"),
                ("DisplayTitle", "TitleText"),
                ("Title", "TitleText"),
            )
            or _first_text(first_detail, ("Title", "TitleText"), ("DisplayTitleText",)),
            display_artist=display_artist,
            duration=_first_text(node, ("Duration",)),
            sequence_number=_int(_first_text(node, ("SequenceNumber",))),
            disc_number=_int(_first_text(node, ("DiscNumber",))) or 1,
            contributors=contributors,
            genres=self._genres(node, *details),
            language=_first_text(node, ("LanguageOfPerformance",)),
            explicit=(_first_text(node, ("ParentalWarningType",)) or _first_text(first_detail, ("ParentalWarningType",)))
            == "Explicit",
            copyright=self._copyright(node, *details),
            territories=[code for detail in details for code in (_text(c) for c in _as_list(_path(detail, "TerritoryCode"))) if code],
            file_name=_first_text(technical, ("File", "FileName"), ("File", "URI"), ("FileName",)),
            codec=_first_text(technical, ("AudioCodecType",)),
            bitrate=_int(_first_text(technical, ("BitRate",))),
            sample_rate=_int(_first_text(technical, ("SamplingRate",))),
            md5=self._md5(technical),
        )

    def image(self, node: Node) -> Image:
        details = _as_list(node.get("ImageDetailsByTerritory"))
        technical = self._technical(node, "TechnicalDetails", "TechnicalImageDetails")
        if not technical and details:
            technical = self._technical(details[0], "TechnicalImageDetails")
        return Image(
            resource_reference=_first_text(node, ("ResourceReference",)),
            image_type=_first_text(node, ("ImageType",)) or "Unknown",
            file_name=_first_text(technical, ("File", "FileName"), ("File", "URI"), ("FileName",)),
            width=_int(_first_text(technical, ("ImageWidth",))),
            height=_int(_first_text(technical, ("ImageHeight",))),
            codec=_first_text(technical, ("ImageCodecType",)),
            md5=self._md5(technical),
        )

    def _deal_window(self, release_reference: str | None) -> tuple[str | None, str | None, list[str]]:
        for release_deal in _as_list(_path(self.tree, "DealList", "ReleaseDeal")):
            references = [_text(ref) for ref in _as_list(_path(release_deal, "DealReleaseReference"))]
            if release_reference and release_reference not in references:
                continue
            for terms in _collect(release_deal, "DealTerms"):
                start = _first_text(terms, ("ValidityPeriod", "StartDate"), ("ValidityPeriod", "StartDateTime"))
                end = _first_text(terms, ("ValidityPeriod", "EndDate"), ("ValidityPeriod", "EndDateTime"))
                territories = [code for code in (_text(c) for c in _as_list(_path(terms, "TerritoryCode"))) if code]
                return start, end, territories
        return None, None, []

    def release(self, node: Node, recordings: list[SoundRecording], images: list[Image]) -> Release:
        details = _as_list(node.get("ReleaseDetailsByTerritory"))
        territory_details = [
            TerritoryDetails(
                territory_codes=[code for code in (_text(c) for c in _as_list(_path(detail, "TerritoryCode"))) if code],
                title=_first_text(detail, ("Title", "TitleText"), ("DisplayTitleText",)),
                display_artist=self._party_name(_as_list(_path(detail, "DisplayArtist"))[0])
                if _path(detail, "DisplayArtist")
                else _first_text(detail, ("DisplayArtistName",)),
                label=_first_text(detail, ("LabelName",)),
                genres=self._genres(detail),
                release_date=_first_text(detail, ("ReleaseDate",), ("OriginalReleaseDate",)),
            )
            for detail in details
            if isinstance(detail, dict)
        ]

        reference = _first_text(node, ("ReleaseReference",))
        deal_start, deal_end, deal_territories = self._deal_window(reference)
        if not any(details.territory_codes for details in territory_details) and deal_territories:
            territory_details.append(TerritoryDetails(territory_codes=deal_territories))

        resource_references = [
            text for text in (_text(ref) for ref in _collect(node, "ReleaseResourceReference")) if text
        ]
        if resource_references:
            wanted = set(resource_references)
            recordings = [item for item in recordings if item.resource_reference in wanted]
            images = [item for item in images if item.resource_reference in wanted]

        display_artist = _first_text(node, ("DisplayArtistName",))
        artist_node = _path(node, "DisplayArtist")
        if not display_artist and artist_node:
            display_artist = self._party_name(_as_list(artist_node)[0])

        return Release(
            release_reference=reference,
            grid=_first_text(node, ("ReleaseId", "GRid")),
            icpn=_first_text(node, ("ReleaseId", "ICPN")),
            catalog_number=_first_text(node, ("ReleaseId", "CatalogNumber"), ("CatalogNumber",)),
            release_type=_first_text(node, ("ReleaseType",)) or "Album",
            title=_first_text(
                node,
                ("DisplayTitleText",),
                ("ReferenceTitle", "TitleText"),
                ("DisplayTitle", "TitleText"),
                ("Title", "TitleText"),
            ),
            display_artist=display_artist,
            label=_first_text(node, ("LabelName",)),
            genres=self._genres(node),
            release_date=_first_text(node, ("ReleaseDate",), ("GlobalReleaseDate",)),
            original_release_date=_first_text(node, ("OriginalReleaseDate",), ("GlobalOriginalReleaseDate",)),
            start_date=_first_text(node, ("GlobalReleaseDate",)) or deal_start,
            end_date=_first_text(node, ("GlobalEndDate",)) or deal_end,
            copyright=self._copyright(node, *details),
            territory_details=territory_details,
            resource_references=resource_references,
            update_indicator=_first_text(node, ("UpdateIndicator",)),
            sound_recordings=recordings,
            images=images,
        )

    def releases(self) -> list[Release]:
        resource_list = self.tree.get("ResourceList") or {}
        recordings = [
            self.sound_recording(item) for item in _as_list(_path(resource_list, "SoundRecording")) if isinstance(item, dict)
        ]
        images = [self.image(item) for item in _as_list(_path(resource_list, "Image")) if isinstance(item, dict)]

        nodes = [item for item in _as_list(_path(self.tree, "ReleaseList", "Release")) if isinstance(item, dict)]
        main_nodes = [item for item in nodes if _first_text(item, ("ReleaseType",)) != "TrackRelease"]
        return [self.release(item, recordings, images) for item in (main_nodes or nodes)]


def build_release_graph(tree: Node, message_type: str) -> ReleaseGraph:
    builder = _GraphBuilder(tree)
    try:
        return ReleaseGraph(header=builder.header(), message_type=message_type, releases=builder.releases())
    except ValidationError as exc:
        raise ErnParseError(f"ERN message does not describe a release graph: {exc.errors()[0]['msg']}") from exc
    except OverflowError as exc:
        raise ErnParseError(f"Malformed ERN XML: numeric value out of range ({exc})") from exc


def parse_ern(xml_text: str | bytes) -> ParsedErn:
    """Parse a manifest and classify its version, profile and message type."""

    if isinstance(xml_text, bytes):
        try:
            xml_text = xml_text.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ErnParseError(f"Malformed ERN XML: not valid UTF-8 ({exc.reason} at byte {exc.start})") from exc
    if not xml_text.strip():
        raise ErnParseError("ERN manifest is empty")

    root_name, tree = parse_loose_tree(xml_text)
    version = detect_ern_version(xml_text, tree)
    profile = detect_ern_profile(tree, version)
    message_type = detect_message_type(root_name, tree)
    graph = build_release_graph(tree, message_type)
    LOGGER.info(
        "ern_parsed",
        extra={
            "root": root_name,
            "ern_version": version,
            "profile": profile,
            "message_type": message_type,
            "release_count": len(graph.releases),
            "track_count": graph.track_count,
        },
    )
    return ParsedErn(graph=graph, version=version, profile=profile, root_name=root_name)

