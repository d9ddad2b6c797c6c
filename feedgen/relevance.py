"""Keyword relevance filter for gay men's health posts.

A post is relevant when its text contains one of the curated compound
phrases, or when it contains at least one health term together with at
least one identity term. Matching is case-insensitive substring
containment; there is no tokenisation, stemming or ranking.
"""

from dataclasses import dataclass
from typing import Iterable

DEFAULT_PHRASES = (
    "mens health",
    "men's health",
    "gay health",
    "gay men's health",
    "queer health",
    "lgbtq health",
    "lgbt health",
    "sexual health",
    "hiv prevention",
    "on prep",
    "prep for hiv",
    "prep clinic",
    "doxypep",
    "doxy-pep",
    "mpox vaccine",
)

DEFAULT_HEALTH_TERMS = (
    "health",
    "healthcare",
    "clinic",
    "doctor",
    "hiv",
    "#prep",
    "prep access",
    "prep prescription",
    "sexually transmitted",
    "sti test",
    "std test",
    "testing",
    "vaccine",
    "mpox",
    "wellness",
    "mental health",
    "therapy",
    "nutrition",
    "preventive care",
    "screening",
)

DEFAULT_IDENTITY_TERMS = (
    "gay",
    "queer",
    "lgbt",
    "msm",
    "bisexual",
    "same-sex",
    "men who have sex with men",
    "transgender",
    "trans men",
    "trans man",
    "trans people",
)


@dataclass(frozen=True)
class RelevanceMatch:
    """Which configured keywords a text matched."""

    phrases: tuple[str, ...] = ()
    health_terms: tuple[str, ...] = ()
    identity_terms: tuple[str, ...] = ()

    @property
    def relevant(self) -> bool:
        return bool(self.phrases) or (
            bool(self.health_terms) and bool(self.identity_terms)
        )


def _normalize(keywords: Iterable[str]) -> tuple[str, ...]:
    return tuple(k.casefold() for k in keywords if k and k.strip())


class RelevanceFilter:
    """Pure keyword filter deciding whether a post belongs in the feed."""

    def __init__(
        self,
        phrases: Iterable[str] = DEFAULT_PHRASES,
        health_terms: Iterable[str] = DEFAULT_HEALTH_TERMS,
        identity_terms: Iterable[str] = DEFAULT_IDENTITY_TERMS,
    ):
        self.phrases = _normalize(phrases)
        self.health_terms = _normalize(health_terms)
        self.identity_terms = _normalize(identity_terms)

    def matches(self, text: str | None) -> RelevanceMatch:
        """Return the keywords found in text.

        Args:
            text: Post text; None, empty or non-string values match nothing

        Returns:
            RelevanceMatch listing the matched phrases and terms
        """
        if not isinstance(text, str) or not text:
            return RelevanceMatch()

        folded = text.casefold()
        return RelevanceMatch(
            phrases=tuple(p for p in self.phrases if p in folded),
            health_terms=tuple(t for t in self.health_terms if t in folded),
            identity_terms=tuple(t for t in self.identity_terms if t in folded),
        )

    def is_relevant(self, text: str | None) -> bool:
        """Whether text belongs in the feed."""
        return self.matches(text).relevant


_default_filter = RelevanceFilter()


def is_relevant(text: str | None) -> bool:
    """Check text against the default keyword configuration."""
    return _default_filter.is_relevant(text)
