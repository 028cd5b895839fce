"""Text normalization for note scanning.

Two forms are produced for every note:
- folded: NFKD-folded (accents and styled letters such as fullwidth or
  circled forms reduced to ASCII), lower-cased, whitespace collapsed. This is
  what a plainly written note needs ("pánico" -> "panico").
- adversarial: folded plus leetspeak decoding and removal of separators
  between single letters ("p.a.n.1.c.o").

Matching runs against both, since leetspeak decoding can damage an
honest note (a trailing "!" would become "i").
"""
import re
import unicodedata
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional


LEETSPEAK_MAP: Dict[str, str] = {
    "0": "o",
    "1": "i",
    "3": "e",
    "4": "a",
    "5": "s",
    "7": "t",
    "8": "b",
    "@": "a",
    "$": "s",
    "!": "i",
    "+": "t",
    "|": "l",
}

INVISIBLE_CHARS: FrozenSet[str] = frozenset({
    "\u200b",  # Zero-width space
    "\u200c",  # Zero-width non-joiner
    "\u200d",  # Zero-width joiner
    "\ufeff",  # Byte order mark
    "\u00ad",  # Soft hyphen
    "\u2060",  # Word joiner
})

# Spanish inverted punctuation carries no meaning for matching
STRIPPED_PUNCTUATION = str.maketrans({"¿": " ", "¡": " "})

# Runs of single letters joined by punctuation (k.i.l.l) or by spaces.
# Spaced runs need three letters so "y a veces" stays intact.
_SEPARATED_LETTERS = re.compile(r"(?<![a-z])[a-z](?:[.\-_]+[a-z](?![a-z]))+")
_SPACED_LETTERS = re.compile(r"(?<![a-z])[a-z](?:\s+[a-z](?![a-z])){2,}")
_NON_LETTERS = re.compile(r"[^a-z]")


@dataclass(frozen=True)
class NormalizedText:
    folded: str
    adversarial: str


def strip_invisible(text: str) -> str:
    return "".join(c for c in text if c not in INVISIBLE_CHARS)


def fold_accents(text: str) -> str:
    """Lower-case, drop combining marks and collapse whitespace."""
    decomposed = unicodedata.normalize("NFKD", text.translate(STRIPPED_PUNCTUATION))
    stripped = "".join(c for c in decomposed if unicodedata.category(c) != "Mn")
    return " ".join(stripped.lower().split())


def _join_separated_letters(text: str) -> str:
    def join(match: re.Match) -> str:
        return _NON_LETTERS.sub("", match.group(0))

    return _SPACED_LETTERS.sub(join, _SEPARATED_LETTERS.sub(join, text))


class TextNormalizer:
    """Produces the folded and adversarial forms of a note."""

    def normalize(self, text: Optional[str]) -> NormalizedText:
        if not text:
            return NormalizedText(folded="", adversarial="")

        visible = strip_invisible(text)
        folded = fold_accents(visible)

        adversarial = "".join(LEETSPEAK_MAP.get(c, c) for c in folded)
        adversarial = _join_separated_letters(adversarial)

        return NormalizedText(folded=folded, adversarial=" ".join(adversarial.split()))

    def fold(self, text: str) -> str:
        return fold_accents(strip_invisible(text))


_normalizer: Optional[TextNormalizer] = None


def get_normalizer() -> TextNormalizer:
    global _normalizer
    if _normalizer is None:
        _normalizer = TextNormalizer()
    return _normalizer
