"""Domain value objects representing stable business policies."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

_DSP_RATES = MappingProxyType(
    {
        "spotify": 0.003,
        "apple": 0.0075,
        "youtube": 0.002,
        "amazon": 0.0045,
        "tidal": 0.0125,
    }
)


@dataclass(frozen=True, slots=True)
class RoyaltyPolicy:
    """Rates, splits and thresholds used by royalty calculation and payment."""

    policy_id: str
    minimum_payment: float = 10.0
    platform_fee_rate: float = 0.15
    master_split: float = 0.8
    payment_delay_days: int = 30
    currency: str = "USD"
    dsp_rates: Mapping[str, float] = field(default_factory=lambda: _DSP_RATES)
    default_rate: float = 0.004
    policy_version: str = "v1"

    @property
    def publishing_split(self) -> float:
        return 1.0 - self.master_split

    def rate_for(self, dsp: str | None) -> float:
        if not dsp:
            return self.default_rate
        return self.dsp_rates.get(dsp.lower(), self.default_rate)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff shared by queue redelivery and report retries."""

    policy_id: str
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0
    policy_version: str = "v1"

    def backoff_seconds(self, attempt: int) -> float:
        return self.backoff_base_seconds ** attempt

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts


@dataclass(frozen=True, slots=True)
class ArtworkPolicy:
    """Object keys for cover art, its size variants and the placeholder set."""

    policy_id: str
    placeholder_key: str = "images/placeholder.jpg"
    artwork_prefix: str = "images/artwork"
    size_labels: tuple[str, ...] = ("small", "medium", "large")
    policy_version: str = "v1"

    def artwork_key(self, release_id: str, image_type: str) -> str:
        return f"{self.artwork_prefix}/{release_id}/{image_type}.jpg"

    def variant_keys(self, key: str) -> dict[str, str]:
        stem = key.rsplit(".", 1)[0]
        return {label: f"{stem}-{label}.jpg" for label in self.size_labels}


DEFAULT_ROYALTY_POLICY = RoyaltyPolicy(policy_id="royalty-default", policy_version="v1")
DEFAULT_RETRY_POLICY = RetryPolicy(policy_id="retry-default", policy_version="v1")
DEFAULT_ARTWORK_POLICY = ArtworkPolicy(policy_id="artwork-default", policy_version="v1")
