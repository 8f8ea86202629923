"""Email body to plain text conversion using trafilatura with a tag-strip fallback."""

from __future__ import annotations

import html as html_lib
import logging
import re

import trafilatura

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


class BodyConverter:
    """Reduce an email body to the plain text the analysis stages work on."""

    def convert(self, plain_text: str | None, html: str | None) -> str:
        """Return the best plain-text rendition of an email body.

        Strategy:
        1. Prefer the text/plain part when present.
        2. Otherwise extract text from HTML via trafilatura (favor_recall=True for email layouts).
        3. If trafilatura returns nothing, strip tags from the HTML.

        Returns:
            Plain text, or an empty string when the body has no content.
        """
        if plain_text and plain_text.strip():
            return plain_text.strip()

        if not html:
            return ""

        result: str | None = None
        try:
            result = trafilatura.extract(
                html,
                output_format="txt",
                favor_recall=True,
                include_links=False,
                include_tables=True,
            )
        except Exception as e:
            logger.warning("Trafilatura extraction failed: %s", e)
            result = None

        if not result:
            result = self._strip_tags(html)

        return result.strip()

    @staticmethod
    def _strip_tags(html: str) -> str:
        text = html_lib.unescape(_TAG_RE.sub("", html))
        return _BLANK_LINES_RE.sub("\n\n", text)
