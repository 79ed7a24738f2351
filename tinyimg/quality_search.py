"""Binary search for the lowest acceptable lossy quality.

:class:`QualitySearcher` narrows an inclusive pair of quality bounds by
re-encoding the reference at the midpoint and measuring how far the result
drifts from it.  Midpoints that drift more than ``eps`` raise the floor, the
rest lower the ceiling, so the ceiling always holds the lowest quality known
to be acceptable.  The searcher performs no I/O: the encoder and metric are
injected and default to the Pillow codec and the fuzz metric.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from . import config
from .codec import EncodeSettings, SourceImage, encode_candidate
from .errors import CodecFailure
from .metric import fuzz_difference

LOGGER = logging.getLogger(f"{config.LOGGER_NAME}.search")

Encoder = Callable[[SourceImage, int, EncodeSettings], Any]
Metric = Callable[[SourceImage, Any], float]
ProbeHook = Callable[[int, int, float], None]


@dataclass(frozen=True, slots=True)
class SearchBounds:
    """Inclusive quality range explored by the search."""

    minimum: int = config.MIN_QUALITY
    maximum: int = config.MAX_QUALITY

    def __post_init__(self) -> None:
        if not config.MIN_QUALITY <= self.minimum <= self.maximum <= config.MAX_QUALITY:
            raise ValueError(
                f"Bounds must satisfy {config.MIN_QUALITY} <= minimum <= maximum "
                f"<= {config.MAX_QUALITY}, got ({self.minimum}, {self.maximum})"
            )

    @property
    def gap(self) -> int:
        return self.maximum - self.minimum


@dataclass(frozen=True, slots=True)
class Probe:
    """One evaluated midpoint."""

    iteration: int
    quality: int
    diff: float
    accepted: bool


@dataclass(slots=True)
class SearchOutcome:
    """Result of a search together with every probe that led to it."""

    quality: int
    probes: list[Probe] = field(default_factory=list)

    @property
    def iterations(self) -> int:
        return len(self.probes)


class QualitySearcher:
    """Finds the lowest quality whose re-encoding stays within a tolerance."""

    def __init__(
        self,
        settings: EncodeSettings,
        bounds: Optional[SearchBounds] = None,
        *,
        encoder: Encoder = encode_candidate,
        metric: Metric = fuzz_difference,
        on_probe: Optional[ProbeHook] = None,
    ) -> None:
        self.settings = settings
        self.bounds = bounds or SearchBounds()
        self._encoder = encoder
        self._metric = metric
        self._on_probe = on_probe

    @staticmethod
    def max_iterations(bounds: SearchBounds) -> int:
        """Worst-case number of probes needed to close *bounds*."""
        if bounds.gap <= 1:
            return 0
        return math.ceil(math.log2(bounds.gap))

    def find_quality(self, original: SourceImage, eps: float) -> int:
        """
        Return the lowest quality in the bounds whose encoding of *original*
        differs from it by at most *eps*.

        Raises:
            ValueError: If *eps* is negative
            CodecFailure: If encoding or measuring a candidate fails
        """
        return self.search(original, eps).quality

    def search(self, original: SourceImage, eps: float) -> SearchOutcome:
        """Run the search and return the chosen quality with its probes."""
        if eps < 0:
            raise ValueError(f"Tolerance must be non-negative, got {eps}")

        low, high = self.bounds.minimum, self.bounds.maximum
        outcome = SearchOutcome(quality=high)

        while high - low > 1:
            middle = (high + low) // 2
            diff = self._measure(original, middle)
            accepted = diff <= eps
            probe = Probe(len(outcome.probes) + 1, middle, diff, accepted)
            outcome.probes.append(probe)
            self._report(probe)

            if accepted:
                high = middle
            else:
                low = middle

        # With no probe accepted the ceiling is returned unmeasured; this is
        # also the answer when the bounds are already closed.
        outcome.quality = high
        return outcome

    def _measure(self, original: SourceImage, quality: int) -> float:
        try:
            candidate = self._encoder(original, quality, self.settings)
            diff = float(self._metric(original, candidate))
        except CodecFailure:
            raise
        except Exception as exc:  # noqa: BLE001 - codec plugins raise arbitrary types
            raise CodecFailure(
                f"Candidate at quality {quality} failed: {exc}", stage="search"
            ) from exc
        if math.isnan(diff) or diff < 0:
            raise CodecFailure(f"Metric returned invalid difference {diff} at quality {quality}")
        return diff

    def _report(self, probe: Probe) -> None:
        LOGGER.debug(
            "probe %d: quality=%d diff=%.6f %s",
            probe.iteration,
            probe.quality,
            probe.diff,
            "accepted" if probe.accepted else "rejected",
        )
        if self._on_probe is not None:
            self._on_probe(probe.iteration, probe.quality, probe.diff)


def find_quality(
    original: SourceImage,
    eps: float = config.DEFAULT_EPS,
    settings: Optional[EncodeSettings] = None,
    **kwargs: Any,
) -> int:
    """Search with a one-off :class:`QualitySearcher`.

    *settings* defaults to re-encoding in the format *original* was decoded
    from.
    """
    searcher = QualitySearcher(settings or EncodeSettings(format=original.format), **kwargs)
    return searcher.find_quality(original, eps)
