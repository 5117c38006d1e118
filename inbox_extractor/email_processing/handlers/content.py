"""
HTML to text conversion for email bodies and fetched pages.

Block-level elements become paragraph breaks so that downstream chunking can
split on blank lines. Conversion failures fall back to the raw input rather
than raising.
"""

import logging
import re
from typing import Iterable, Tuple

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

BLOCK_TAGS = (
    "p", "div", "br", "li", "tr", "table", "section", "article",
    "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "pre", "hr"
)
NON_CONTENT_TAGS = ("script", "style", "noscript", "template", "head")
PAGE_CHROME_TAGS = ("header", "footer", "nav", "aside", "form", "iframe")

_INLINE_WHITESPACE = re.compile(r"[ \t\r\f\v]+")
_EXCESS_BLANK_LINES = re.compile(r"\n\s*\n(\s*\n)+")


def html_to_text(content: str, strip_tags: Iterable[str] = NON_CONTENT_TAGS) -> str:
    """
    Convert HTML to readable plain text with paragraph breaks preserved.

    Args:
        content: HTML markup (plain text passes through mostly unchanged)
        strip_tags: Elements removed together with their content

    Returns:
        Plain text with blank lines between blocks
    """
    if not content:
        return ""
    try:
        soup = BeautifulSoup(content, "html.parser")

        for element in soup(list(strip_tags)):
            element.decompose()

        # Mark block boundaries before flattening
        for element in soup.find_all(BLOCK_TAGS):
            if element.name in ("br", "hr"):
                element.replace_with("\n")
            else:
                element.insert_before("\n\n")
                element.insert_after("\n\n")

        text = soup.get_text()
        lines = [_INLINE_WHITESPACE.sub(" ", line).strip() for line in text.splitlines()]
        text = "\n".join(lines)
        text = _EXCESS_BLANK_LINES.sub("\n\n", text)
        return text.strip()

    except Exception as e:
        logger.warning(f"HTML cleaning failed: {e}, returning original content")
        return content.strip()


def extract_main_content(html: str) -> Tuple[str, str]:
    """
    Extract the title and main readable text of a web page.

    Removes navigation, headers, footers and other page chrome, then prefers
    a <main> or <article> element when one exists.

    Returns:
        Tuple of (title, text)
    """
    try:
        soup = BeautifulSoup(html, "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else ""

        for element in soup(list(NON_CONTENT_TAGS + PAGE_CHROME_TAGS)):
            element.decompose()

        main = soup.find("main") or soup.find("article") or soup.body or soup
        return title, html_to_text(str(main))

    except Exception as e:
        logger.warning(f"Main content extraction failed: {e}")
        return "", html_to_text(html)
