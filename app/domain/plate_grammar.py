import re
from typing import Iterator, Tuple

# =========================
# PLATE GRAMMAR (shared by every OCR path)
# =========================

# Plate shapes in priority order. Candidates found by an earlier pattern
# win ties against later ones.
PLATE_PATTERNS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("LLL-DD-DD", re.compile(r"[A-Z]{3}-?\d{2}-?\d{2}")),
    ("LLL-DDD-L", re.compile(r"[A-Z]{3}-?\d{3}-?[A-Z]?")),
    ("LLL-DDD-", re.compile(r"[A-Z]{3}-?\d{3}-?")),
    ("LLL-DDDD", re.compile(r"[A-Z]{3}-?\d{4}")),
    ("LLLDDDD", re.compile(r"[A-Z]{3}\d{4}")),
    ("LLLDDLL", re.compile(r"[A-Z]{3}\d{2}[A-Z]{2}")),
    ("LL-DDD-LL", re.compile(r"[A-Z]{2}-?\d{3}-?[A-Z]{2}")),
    ("DD-LL-DDD", re.compile(r"\d{2}-?[A-Z]{2}-?\d{3}")),
    ("LL{2,3}DD{2,4}L?", re.compile(r"[A-Z]{2,3}\d{2,4}[A-Z]?")),
)

MIN_MATCH_LENGTH = 5
MAX_MATCH_LENGTH = 10

# Exact-format checks, first hit wins. Re-tested against the matched text,
# not the pattern that produced it.
BASE_SCORES: Tuple[Tuple["re.Pattern[str]", int], ...] = (
    (re.compile(r"[A-Z]{3}-?\d{2}-?\d{2}"), 100),
    (re.compile(r"[A-Z]{3}-?\d{3}-?[A-Z]"), 90),
    (re.compile(r"[A-Z]{3}-?\d{3}-?"), 85),
    (re.compile(r"[A-Z]{2}-?\d{3}-?[A-Z]{2}"), 85),
    (re.compile(r"[A-Z]{3}-?\d{4}"), 80),
    (re.compile(r"[A-Z]{2,3}\d{2,4}[A-Z]?"), 60),
)
FALLBACK_SCORE = 50

DASH_BONUS = 10
REPEATED_DIGITS_RE = re.compile(r"000|111|222|333|444|555|666|777|888|999")
REPEATED_DIGITS_PENALTY = 20
REPEATED_LETTERS_RE = re.compile(r"AAA|BBB|CCC")
REPEATED_LETTERS_PENALTY = 15


def iter_matches(canonical: str) -> Iterator[Tuple[str, str]]:
    """
    Yields (pattern_name, match) for every pattern, in priority order,
    left to right and non-overlapping within a pattern.
    Matches outside the accepted length window are dropped.
    """
    for name, pattern in PLATE_PATTERNS:
        for m in pattern.finditer(canonical):
            text = m.group(0)
            if MIN_MATCH_LENGTH <= len(text) <= MAX_MATCH_LENGTH:
                yield name, text


def base_score(plate: str) -> int:
    for rule, score in BASE_SCORES:
        if rule.fullmatch(plate):
            return score
    return FALLBACK_SCORE


def score_plate(plate: str) -> int:
    score = base_score(plate)

    if "-" in plate:
        score += DASH_BONUS
    if REPEATED_DIGITS_RE.search(plate):
        score -= REPEATED_DIGITS_PENALTY
    if REPEATED_LETTERS_RE.search(plate):
        score -= REPEATED_LETTERS_PENALTY

    return score
