"""Strava club slug parsing.

Strava club slugs end with the numeric club id:
- "running-club-123456"             → "123456"
- "https://www.strava.com/clubs/running-club-123456" → "123456"
- "no-numeric-suffix"               → invalid

The parser returns a tagged result instead of raising so callers can decide
whether a bad slug is a validation error (link, preview) or something to log.
"""
import re
from dataclasses import dataclass
from typing import Optional

from app.core.exceptions import InvalidSlugFormat

# The club id is the trailing run of digits after the last hyphen
_CLUB_ID_SUFFIX = re.compile(r"-(\d+)$")


@dataclass(frozen=True)
class SlugParseResult:
    """Outcome of parsing a Strava slug: either an external id or an error."""
    slug: str
    external_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.external_id is not None

    def unwrap(self) -> str:
        """
        Return the external club id.

        Raises:
            InvalidSlugFormat: if parsing failed
        """
        if self.external_id is None:
            raise InvalidSlugFormat(self.slug, self.error)
        return self.external_id


def normalize_slug(raw: Optional[str]) -> str:
    """
    Reduce user input to a bare slug.

    Accepts a slug or a Strava club URL; query strings, fragments and a
    trailing slash are dropped and the last path segment is kept.

    Examples:
        >>> normalize_slug("  running-club-123456 ")
        'running-club-123456'
        >>> normalize_slug("https://www.strava.com/clubs/running-club-123456/?ref=x")
        'running-club-123456'
    """
    if not raw:
        return ""

    slug = raw.strip().split("?", 1)[0].split("#", 1)[0].rstrip("/")
    if "/" in slug:
        slug = slug.rsplit("/", 1)[1]
    return slug


def parse_strava_slug(raw: Optional[str]) -> SlugParseResult:
    """
    Extract the numeric Strava club id from a slug.

    Examples:
        >>> parse_strava_slug("running-club-123456").external_id
        '123456'
        >>> parse_strava_slug("no-numeric-suffix").ok
        False
    """
    slug = normalize_slug(raw)
    if not slug:
        return SlugParseResult(slug="", error="Strava slug is required")

    match = _CLUB_ID_SUFFIX.search(slug)
    if match is None:
        return SlugParseResult(slug=slug, error="Invalid slug format (expected: club-name-123456)")

    return SlugParseResult(slug=slug, external_id=match.group(1))
