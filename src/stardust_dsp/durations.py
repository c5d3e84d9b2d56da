"""Duration parsing for ERN sound recordings."""

from __future__ import annotations

import logging
import re

LOGGER = logging.getLogger(__name__)

_ISO_DURATION = re.compile(r"^P(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)$", re.IGNORECASE)
_HMS = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2})$")
_MS = re.compile(r"^(\d+):(\d{1,2})$")
_SECONDS = re.compile(r"^\d+(?:\.\d+)?$")


def parse_duration(value: str | None, warnings: list[str] | None = None) -> int:
    """Return a duration in whole seconds.

    Accepts ISO-8601 ``PT#H#M#S``, ``HH:MM:SS``, ``MM:SS`` and bare seconds.
    Empty values are 0. Anything else is 0 and a warning is appended to
    ``warnings`` when a list is supplied.
    """

    if value is None:
        return 0
    text = str(value).strip()
    if not text:
        return 0

    iso = _ISO_DURATION.match(text)
    if iso and text.upper() not in {"P", "PT"}:
        hours, minutes, seconds = iso.groups()
        return round(int(hours or 0) * 3600 + int(minutes or 0) * 60 + float(seconds or 0))

    hms = _HMS.match(text)
    if hms:
        hours, minutes, seconds = (int(part) for part in hms.groups())
        return hours * 3600 + minutes * 60 + seconds

    ms = _MS.match(text)
    if ms:
        minutes, seconds = (int(part) for part in ms.groups())
        return minutes * 60 + seconds

    if _SECONDS.match(text):
        return round(float(text))

    message = f"Unknown duration format: {text}"
    LOGGER.warning("duration_unparsed", extra={"duration": text})
    if warnings is not None:
        warnings.append(message)
    return 0
