from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from typing import Any

from geopresence.core import settings

logger = logging.getLogger(__name__)

Position = tuple[float, float]


class PositionResolver:
    """
    Best-effort visitor coordinate from edge-provided request metadata.

    Guarantees:
    - No I/O; only reads the metadata mapping it is given
    - Never raises: missing, partial, non-numeric or out-of-range hints
      resolve to the fallback coordinate
    - Header lookup is case-insensitive
    """

    def __init__(
        self,
        *,
        latitude_keys: Sequence[str] | None = None,
        longitude_keys: Sequence[str] | None = None,
        fallback: Position | None = None,
    ):
        self.latitude_keys = [k.lower() for k in (latitude_keys or settings.LATITUDE_HEADERS)]
        self.longitude_keys = [k.lower() for k in (longitude_keys or settings.LONGITUDE_HEADERS)]
        self.fallback: Position = fallback or (settings.FALLBACK_LATITUDE, settings.FALLBACK_LONGITUDE)

    def resolve(self, origin_metadata: Mapping[str, Any] | None) -> Position:
        if not origin_metadata:
            return self.fallback

        try:
            lowered = {str(k).lower(): v for k, v in origin_metadata.items()}
        except Exception:
            logger.debug("Unreadable origin metadata: %r", origin_metadata)
            return self.fallback

        lat = self._first_number(lowered, self.latitude_keys)
        lng = self._first_number(lowered, self.longitude_keys)
        if lat is None or lng is None:
            logger.debug("No usable geolocation hints; using fallback %s", self.fallback)
            return self.fallback

        if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
            logger.debug("Geolocation out of range (%s, %s); using fallback", lat, lng)
            return self.fallback

        return (lat, lng)

    @staticmethod
    def _first_number(metadata: dict[str, Any], keys: list[str]) -> float | None:
        for key in keys:
            if key not in metadata:
                continue
            value = metadata[key]
            if isinstance(value, bool):
                return None
            if isinstance(value, bytes):
                value = value.decode("latin-1")
            try:
                number = float(value)
            except (TypeError, ValueError, OverflowError):
                return None
            if not math.isfinite(number):
                return None
            return number
        return None


_default_resolver: PositionResolver | None = None


def resolve(origin_metadata: Mapping[str, Any] | None) -> Position:
    """Module-level shortcut using settings-derived header names and fallback."""
    global _default_resolver
    if _default_resolver is None:
        _default_resolver = PositionResolver()
    return _default_resolver.resolve(origin_metadata)
