"""
Link Discovery and URL Normalization

Finds candidate links in an email body and reduces them to a canonical,
duplicate-free list before any oracle sees them.

Design Considerations:
- Document order is preserved; it is the tie-breaker everywhere downstream
- Wrapper services (Outlook SafeLinks, Google redirects, Proofpoint) are
  unwrapped so the same destination collapses to one link
- Tracking parameters never distinguish two links
- Malformed markup yields an empty list, never an exception
"""

import logging
import re
from dataclasses import replace
from typing import Iterable, List, Optional, Pattern, Set
from urllib.parse import parse_qs, unquote, unquote_plus, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from inbox_extractor.email_processing.models import ExtractedLink

logger = logging.getLogger(__name__)

FOLLOWABLE_SCHEMES = ("http", "https")

# location = '...', location.href = '...', window.open('...'), location.assign('...')
ONCLICK_URL_PATTERN = re.compile(
    r"""(?:location(?:\.href)?\s*=\s*|(?:window\.)?open\s*\(\s*|location\.(?:assign|replace)\s*\(\s*)['"]([^'"]+)['"]""",
    re.IGNORECASE
)
BUTTON_CLASS_PATTERN = re.compile(r"button|btn|\bcta", re.IGNORECASE)

BARE_URL_PATTERN = re.compile(r"https?://[^\s<>'\"]+", re.IGNORECASE)
TRAILING_URL_PUNCTUATION = ".,;:!?)]'\""
MAX_TEXT_LABEL_CHARS = 100

GOOGLE_HOST_PATTERN = re.compile(r"^(?:www\.)?google\.[a-z.]+$")
PROOFPOINT_V3_PATTERN = re.compile(r"/v3/__(.+?)__;")

DEFAULT_PORTS = {"http": ":80", "https": ":443"}
MAX_UNWRAP_DEPTH = 5


def compile_button_pattern(pattern: Optional[str]) -> Optional[Pattern]:
    """
    Compile a user-supplied button text pattern case-insensitively.

    An invalid regular expression is matched literally instead.
    """
    if not pattern or not pattern.strip():
        return None
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning(f"Invalid button text pattern {pattern!r} ({e}), matching literally")
        return re.compile(re.escape(pattern), re.IGNORECASE)


class LinkExtractor:
    """Extracts followable links from email HTML in document order."""

    def extract(self, html: str, button_text_pattern: Optional[str] = None) -> List[ExtractedLink]:
        """
        Collect anchors and navigating buttons from an email body.

        Args:
            html: Email body markup
            button_text_pattern: Optional regex; matching link text marks a link button-like

        Returns:
            List of ExtractedLink in document order, possibly empty
        """
        if not html or not html.strip():
            return []

        pattern = compile_button_pattern(button_text_pattern)

        try:
            soup = BeautifulSoup(html, "html.parser")
            links = []
            for element in soup.find_all(["a", "button"]):
                link = self._link_from_element(element, pattern)
                if link is not None:
                    links.append(link)

            logger.debug(f"Extracted {len(links)} links from email body")
            return links

        except Exception as e:
            logger.warning(f"Link extraction failed on malformed markup: {e}")
            return []

    def extract_from_text(self, text: str, button_text_pattern: Optional[str] = None) -> List[ExtractedLink]:
        """
        Collect bare http(s) URLs from a plain-text body.

        The text before a URL on its own line becomes the link text, so
        "Apply here: https://..." still matches a button pattern.

        Returns:
            List of ExtractedLink in text order, possibly empty
        """
        if not text or not text.strip():
            return []

        pattern = compile_button_pattern(button_text_pattern)
        links = []
        for line in text.splitlines():
            start = 0
            for match in BARE_URL_PATTERN.finditer(line):
                url = match.group(0).rstrip(TRAILING_URL_PUNCTUATION)
                label = line[start:match.start()].strip(" \t:-<>([")[:MAX_TEXT_LABEL_CHARS]
                start = match.end()
                links.append(ExtractedLink(
                    url=url,
                    display_text=label,
                    is_button_like=bool(pattern and label and pattern.search(label))
                ))

        logger.debug(f"Extracted {len(links)} links from plain-text body")
        return links

    def _link_from_element(self, element, pattern: Optional[Pattern]) -> Optional[ExtractedLink]:
        text = element.get_text(" ", strip=True)

        if element.name == "button":
            onclick = element.get("onclick")
            if not onclick:
                return None
            match = ONCLICK_URL_PATTERN.search(onclick)
            if not match or not self._is_followable(match.group(1)):
                return None
            return ExtractedLink(url=match.group(1).strip(), display_text=text, is_button_like=True)

        href = element.get("href")
        if not href or not self._is_followable(href):
            return None
        if not text:
            text = element.get("title") or element.get("aria-label") or ""
            if not text:
                image = element.find("img", alt=True)
                text = image["alt"].strip() if image else ""

        return ExtractedLink(
            url=href.strip(),
            display_text=text,
            is_button_like=self._is_button_like(element, text, pattern)
        )

    @staticmethod
    def _is_followable(href: str) -> bool:
        href = href.strip()
        if not href or href.startswith("#"):
            return False
        scheme = href.split(":", 1)[0].lower() if ":" in href else ""
        return scheme in FOLLOWABLE_SCHEMES

    @staticmethod
    def _is_button_like(anchor, text: str, pattern: Optional[Pattern]) -> bool:
        if (anchor.get("role") or "").lower() == "button":
            return True
        if anchor.find_parent("button") is not None:
            return True

        # The anchor itself, or the cell/div styled as the button around it
        candidates = [anchor, anchor.parent, anchor.parent.parent if anchor.parent else None]
        for candidate in candidates:
            if candidate is None or not hasattr(candidate, "get"):
                continue
            classes = candidate.get("class") or []
            if isinstance(classes, str):
                classes = [classes]
            if any(BUTTON_CLASS_PATTERN.search(cls) for cls in classes):
                return True

        return bool(pattern and text and pattern.search(text))


class UrlNormalizer:
    """
    Canonicalizes URLs and removes duplicate links.

    normalize() is idempotent: normalizing an already normalized URL returns
    it unchanged.
    """

    TRACKING_PARAMS = frozenset({
        "gclid", "fbclid", "msclkid", "mc_cid", "mc_eid", "_hsenc", "_hsmi",
        "mkt_tok", "yclid", "igshid", "dclid", "trk", "trackingid", "refid"
    })
    TRACKING_PREFIXES = ("utm_",)

    def __init__(self, extra_tracking_params: Iterable[str] = ()):
        self.tracking_params = self.TRACKING_PARAMS | {p.lower() for p in extra_tracking_params}

    def normalize(self, url: str) -> str:
        """
        Return the canonical form of a URL.

        Unwraps redirect wrappers, lowercases scheme and host, removes
        default ports, tracking parameters, the fragment and a trailing slash.
        """
        url = (url or "").strip()
        try:
            url = self.unwrap(url)
            parts = urlsplit(url)
        except ValueError as e:
            logger.debug(f"Leaving unparseable URL as is: {url[:100]} ({e})")
            return url

        scheme = parts.scheme.lower()
        netloc = parts.netloc.lower()
        default_port = DEFAULT_PORTS.get(scheme)
        if default_port and netloc.endswith(default_port):
            netloc = netloc[:-len(default_port)]

        path = parts.path
        while path.endswith("/"):
            path = path[:-1]

        return urlunsplit((scheme, netloc, path, self._strip_tracking(parts.query), ""))

    def unwrap(self, url: str) -> str:
        """Follow known redirect wrappers to the destination URL."""
        for _ in range(MAX_UNWRAP_DEPTH):
            target = self._unwrap_once(url)
            if target is None or target == url:
                return url
            url = target.strip()
        return url

    def deduplicate(self, links: Iterable[ExtractedLink]) -> List[ExtractedLink]:
        """
        Collapse links sharing a normalized URL, keeping the first occurrence.

        Returned links carry normalized_url; the input objects are not modified.
        """
        seen: Set[str] = set()
        unique = []
        for link in links:
            normalized = link.normalized_url or self.normalize(link.url)
            if normalized in seen:
                continue
            seen.add(normalized)
            unique.append(link if link.normalized_url == normalized else replace(link, normalized_url=normalized))
        return unique

    def _unwrap_once(self, url: str) -> Optional[str]:
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
        query = parse_qs(parts.query)

        if host.endswith("safelinks.protection.outlook.com"):
            return self._first(query, "url")

        if GOOGLE_HOST_PATTERN.match(host) and parts.path == "/url":
            return self._first(query, "q") or self._first(query, "url")

        if host == "urldefense.proofpoint.com" and parts.path.startswith("/v2/url"):
            encoded = self._first(query, "u")
            if encoded:
                return unquote(encoded.replace("-", "%").replace("_", "/"))

        if host == "urldefense.com":
            match = PROOFPOINT_V3_PATTERN.search(url)
            if match:
                return match.group(1)

        return None

    @staticmethod
    def _first(query: dict, key: str) -> Optional[str]:
        values = query.get(key)
        return values[0] if values else None

    def _strip_tracking(self, query: str) -> str:
        if not query:
            return ""
        # Segments keep their original encoding, so a URL normalizes the same
        # way whether or not it carried tracking parameters
        kept = [
            segment for segment in query.split("&")
            if segment and not self._is_tracking(unquote_plus(segment.split("=", 1)[0]))
        ]
        return "&".join(kept)

    def _is_tracking(self, key: str) -> bool:
        key = key.lower()
        return key in self.tracking_params or key.startswith(self.TRACKING_PREFIXES)
