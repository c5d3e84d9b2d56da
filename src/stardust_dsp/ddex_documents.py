"""Rendering of outbound DDEX documents (acknowledgments and sales reports)."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Iterable

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'
DSR_NAMESPACE = "http://ddex.net/xml/dsr/30"


@dataclass(frozen=True, slots=True)
class PartyBlock:
    party_id: str
    name: str


@dataclass(frozen=True, slots=True)
class DsrLine:
    """One sales transaction row: a track's usage within the report period."""

    track_id: str
    release_id: str | None
    isrc: str | None
    title: str | None
    artist: str | None
    quantity: int
    gross_amount: float
    territories: dict[str, int] = field(default_factory=dict)


def _to_xml(root: ET.Element) -> str:
    ET.indent(root, space="  ")
    return XML_DECLARATION + ET.tostring(root, encoding="unicode")


def _add(parent: ET.Element, tag: str, value: Any) -> ET.Element:
    element = ET.SubElement(parent, tag)
    if value is not None:
        element.text = str(value)
    return element


def _party(parent: ET.Element, tag: str, party: PartyBlock) -> None:
    block = ET.SubElement(parent, tag)
    _add(block, "PartyId", party.party_id)
    _add(ET.SubElement(block, "PartyName"), "FullName", party.name)


def _message_header(root: ET.Element, message_id: str, created_at: str, sender: PartyBlock, recipient: PartyBlock) -> None:
    header = ET.SubElement(root, "MessageHeader")
    _add(header, "MessageId", message_id)
    _add(header, "MessageCreatedDateTime", created_at)
    _party(header, "MessageSender", sender)
    _party(header, "MessageRecipient", recipient)


def acknowledgment_message_id(original_message_id: str | None, timestamp_ms: int, *, error: bool = False) -> str:
    prefix = "ACK-ERROR" if error else "ACK"
    return f"{prefix}-{original_message_id or 'UNKNOWN'}-{timestamp_ms}"


def render_acknowledgment(
    *,
    message_id: str,
    created_at: str,
    sender: PartyBlock,
    recipient: PartyBlock,
    releases: Iterable[dict[str, Any]],
) -> str:
    """Acknowledge a processed delivery, one ``Release`` entry per processed release."""

    releases = list(releases)
    root = ET.Element("AcknowledgmentMessage")
    _message_header(root, message_id, created_at, sender, recipient)

    status = ET.SubElement(root, "AcknowledgmentStatus")
    _add(status, "Status", "Acknowledged")
    _add(status, "DateTime", created_at)

    processed = ET.SubElement(root, "ProcessedReleases")
    for release in releases:
        entry = ET.SubElement(processed, "Release")
        _add(entry, "ReleaseId", release.get("releaseId"))
        _add(entry, "Title", release.get("title"))
        _add(entry, "Artist", release.get("artist") or "Various Artists")
        _add(entry, "ProcessingStatus", "TakenDown" if release.get("action") == "takedown" else "Success")
        _add(entry, "TrackCount", release.get("trackCount", 0))
        _add(entry, "ProcessingDateTime", created_at)

    metrics = ET.SubElement(root, "ProcessingMetrics")
    _add(metrics, "TotalReleases", len(releases))
    _add(metrics, "TotalTracks", sum(int(release.get("trackCount") or 0) for release in releases))
    return _to_xml(root)


def render_error_acknowledgment(
    *,
    message_id: str,
    created_at: str,
    sender: PartyBlock,
    recipient: PartyBlock,
    error_message: str,
    error_code: str,
    errors: Iterable[str] = (),
) -> str:
    root = ET.Element("AcknowledgmentMessage")
    _message_header(root, message_id, created_at, sender, recipient)
    status = ET.SubElement(root, "AcknowledgmentStatus")
    _add(status, "Status", "ProcessingFailed")
    _add(status, "DateTime", created_at)
    _add(status, "ErrorMessage", error_message or "Unknown error occurred")
    _add(status, "ErrorCode", error_code)
    details = list(errors)
    if details:
        error_list = ET.SubElement(root, "Errors")
        for detail in details:
            _add(error_list, "Error", detail)
    return _to_xml(root)


def render_dsr(
    *,
    report_id: str,
    created_at: str,
    sender: PartyBlock,
    recipient: PartyBlock,
    start_date: str,
    end_date: str,
    territory: str,
    lines: Iterable[DsrLine],
    currency: str,
    unit_price: float,
    payable_rate: float,
) -> str:
    """Sales report for a period; payable amounts are gross less the platform fee."""

    lines = list(lines)
    root = ET.Element(
        "SalesReportMessage",
        {
            "xmlns": DSR_NAMESPACE,
            "MessageSchemaVersionId": "dsr/30",
            "LanguageAndScriptCode": "en",
        },
    )
    _message_header(root, report_id, created_at, sender, recipient)

    header = ET.SubElement(root, "SalesReportHeader")
    _add(header, "SalesReportId", report_id)
    period = ET.SubElement(header, "AccountingPeriod")
    _add(period, "StartDate", start_date)
    _add(period, "EndDate", end_date)
    _add(header, "ReportType", "SalesReport")
    _add(header, "ReportStatus", "Final")
    _add(header, "CurrencyCode", currency)

    body = ET.SubElement(root, "SalesReportBody")
    for line in lines:
        transaction = ET.SubElement(body, "SalesTransaction")
        _add(transaction, "TransactionId", f"TXN_{line.track_id}_{start_date}")
        _add(transaction, "ReleaseReference", line.release_id)
        _add(transaction, "ResourceReference", line.track_id)
        _add(transaction, "ISRC", line.isrc)
        _add(transaction, "Title", line.title)
        _add(transaction, "DisplayArtist", line.artist)
        _add(transaction, "UsageDate", end_date)
        _add(transaction, "Territory", territory)
        _add(transaction, "UseType", "OnDemandStream")
        _add(transaction, "Quantity", line.quantity)
        _add(transaction, "UnitPrice", unit_price)
        _add(transaction, "LineAmount", f"{line.gross_amount:.2f}")
        _add(transaction, "PayableAmount", f"{line.gross_amount * payable_rate:.2f}")

    total_gross = sum(line.gross_amount for line in lines)
    summary = ET.SubElement(root, "SalesReportSummary")
    _add(summary, "TotalQuantity", sum(line.quantity for line in lines))
    _add(summary, "TotalGrossAmount", f"{total_gross:.2f}")
    _add(summary, "TotalNetAmount", f"{total_gross * payable_rate:.2f}")
    return _to_xml(root)
