import re
from typing import Any, List, Mapping, Optional, Sequence

from app.domain import plate_grammar
from app.domain.models import (
    Candidate,
    ExtractionResult,
    OcrObservation,
    PlateReading,
    RegionReading,
)

# =========================
# DOMAIN LOGIC (Pure Python)
# =========================

DEFAULT_MIN_LENGTH = 6
DEFAULT_DENYLIST = ("platesmania", "www.", ".com")

# Enhancement variants in the order they are produced; "focused" is the
# standard processing and wins near-ties.
VARIANT_ORDER = ("focused", "high_contrast", "edge_enhanced", "upscaled")
PRIMARY_VARIANT = "focused"

# Regions of interest in priority order; "full" is the uncropped image.
REGION_ORDER = ("vehicle", "full", "bottom_half")
DEFAULT_REGION = "full"

_DISALLOWED_RE = re.compile(r"[^A-Za-z0-9\-\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize(
    text: Optional[str],
    min_length: int = DEFAULT_MIN_LENGTH,
    denylist: Sequence[str] = DEFAULT_DENYLIST,
) -> str:
    """
    Canonical form of raw OCR text: uppercase letters, digits and dashes,
    no whitespace, watermark substrings removed.
    Returns "" when the text carries no signal (empty or too short).
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        raise TypeError(f"OCR text must be a string, got {type(text).__name__}")
    if len(text.strip()) < min_length:
        return ""

    # Watermarks go first; their dots would not survive the character filter
    cleaned = text
    for token in denylist:
        if token:
            cleaned = re.sub(re.escape(token), "", cleaned, flags=re.IGNORECASE)

    cleaned = _DISALLOWED_RE.sub("", cleaned)
    cleaned = _WHITESPACE_RE.sub("", cleaned)
    return cleaned.upper()


def find_candidates(
    text: Optional[str],
    min_length: int = DEFAULT_MIN_LENGTH,
    denylist: Sequence[str] = DEFAULT_DENYLIST,
) -> List[Candidate]:
    """Scored candidates for one raw text, in discovery order (not ranked)."""
    canonical = normalize(text, min_length, denylist)
    if not canonical:
        return []

    return [
        Candidate(plate=match, score=plate_grammar.score_plate(match))
        for _, match in plate_grammar.iter_matches(canonical)
    ]


def _as_observation(obs: Any) -> OcrObservation:
    if isinstance(obs, OcrObservation):
        return obs
    if isinstance(obs, Mapping):
        # Raises pydantic.ValidationError on missing/invalid fields
        return OcrObservation.model_validate(obs)
    raise TypeError(f"Expected OcrObservation or mapping, got {type(obs).__name__}")


def extract(
    observations: Sequence[Any],
    min_length: int = DEFAULT_MIN_LENGTH,
    denylist: Sequence[str] = DEFAULT_DENYLIST,
) -> ExtractionResult:
    """
    Pools candidates from every observation and ranks them by score.

    Ties keep discovery order: observation order first, then pattern
    priority, then position of the match in the text. A missing plate is
    an expected outcome and is reported as best_plate=None.
    """
    all_observations = [_as_observation(o) for o in observations]

    pooled: List[Candidate] = []
    for obs in all_observations:
        pooled.extend(find_candidates(obs.text, min_length, denylist))

    # sorted() is stable
    ranked = sorted(pooled, key=lambda c: -c.score)

    return ExtractionResult(
        best_plate=ranked[0].plate if ranked else None,
        candidates=ranked,
        all_observations=all_observations,
    )


# =========================
# OBSERVATION-LEVEL SELECTION
# =========================

def _order_index(order: Sequence[str], label: str) -> int:
    try:
        return order.index(label)
    except ValueError:
        return len(order)


def rank_variant_readings(
    readings: Sequence[PlateReading],
    tie_margin: float = 0.1,
    primary: str = PRIMARY_VARIANT,
    variant_order: Sequence[str] = VARIANT_ORDER,
) -> List[PlateReading]:
    """
    Readings that produced a plate, best first.

    Highest confidence wins, except that the primary variant is promoted
    when it is within tie_margin of the top. Order depends only on
    confidence and source, never on the order readings arrived in.
    """
    validated = [r for r in readings if r.has_plate]
    ordered = sorted(
        validated,
        key=lambda r: (-r.confidence, _order_index(variant_order, r.source), r.source),
    )
    if not ordered:
        return []

    top = ordered[0]
    for idx, reading in enumerate(ordered):
        if reading.source == primary and top.confidence - reading.confidence < tie_margin:
            if idx:
                ordered.insert(0, ordered.pop(idx))
            break
    return ordered


def order_regions(
    regions: Sequence[RegionReading],
    region_order: Sequence[str] = REGION_ORDER,
) -> List[RegionReading]:
    """Static region priority; unknown regions go last, by name."""
    return sorted(regions, key=lambda r: (_order_index(region_order, r.region), r.region))


def select_reading(
    regions: Sequence[RegionReading],
    min_confidence: float = 0.1,
    region_order: Sequence[str] = REGION_ORDER,
    default_region: str = DEFAULT_REGION,
) -> Optional[RegionReading]:
    """
    Picks the region whose plate is trusted, in static region priority:
    first plate with confidence above min_confidence, then any plate,
    then the default (uncropped) region even though it found nothing.
    """
    ordered = order_regions(regions, region_order)

    for region in ordered:
        if region.has_plate and region.best.confidence > min_confidence:
            return region
    for region in ordered:
        if region.has_plate:
            return region
    for region in ordered:
        if region.region == default_region:
            return region
    return ordered[0] if ordered else None
