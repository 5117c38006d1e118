"""
Size Routing and Chunking

Decides whether a retrieved unit fits in a single extraction pass and, when
it does not, splits it into ordered chunks.

Design Considerations:
- The threshold is a character proxy for the oracle's context window
  (30,000 tokens at about 4 characters per token)
- Chunking is lossless: joining chunk texts in order reproduces the input
- Paragraph boundaries are preferred split points; only a paragraph larger
  than the chunk size is cut mid-text
"""

import logging
import re
from typing import List, Optional

from inbox_extractor.config.analyzer_config import ANALYZER_CONFIG
from inbox_extractor.email_processing.models import ContentChunk, RetrievedUnit

logger = logging.getLogger(__name__)

_PARAGRAPH_SEPARATOR = re.compile(r"(\n\s*\n)")


class ContentChunker:
    """Greedy paragraph packer producing chunks of at most chunk_size characters."""

    def __init__(self, chunk_size: Optional[int] = None):
        self.chunk_size = chunk_size or ANALYZER_CONFIG["size_router"]["chunk_size"]
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be positive")

    def split(self, text: str, source_id: str) -> List[ContentChunk]:
        """
        Split text into ordered chunks.

        Args:
            text: Unit content
            source_id: Identifier of the unit the chunks belong to

        Returns:
            Chunks whose texts concatenate back to the input exactly
        """
        pieces = self._paragraphs(text)
        chunks: List[str] = []
        current = ""

        for piece in pieces:
            if len(piece) > self.chunk_size:
                if current:
                    chunks.append(current)
                    current = ""
                chunks.extend(piece[i:i + self.chunk_size] for i in range(0, len(piece), self.chunk_size))
                continue

            if len(current) + len(piece) > self.chunk_size:
                chunks.append(current)
                current = piece
            else:
                current += piece

        if current:
            chunks.append(current)

        logger.debug(f"Split {len(text)} chars from {source_id} into {len(chunks)} chunks")
        return [ContentChunk(unit_source_id=source_id, index=i, text=chunk) for i, chunk in enumerate(chunks)]

    @staticmethod
    def _paragraphs(text: str) -> List[str]:
        # re.split with a capture group keeps the separators; each one is
        # attached to the paragraph before it
        parts = _PARAGRAPH_SEPARATOR.split(text)
        paragraphs = []
        for i in range(0, len(parts), 2):
            paragraph = parts[i] + (parts[i + 1] if i + 1 < len(parts) else "")
            if paragraph:
                paragraphs.append(paragraph)
        return paragraphs


class SizeRouter:
    """Routes a unit to the full-context path or the chunked path."""

    def __init__(self, safe_char_limit: Optional[int] = None, chunker: Optional[ContentChunker] = None):
        self.safe_char_limit = safe_char_limit or ANALYZER_CONFIG["size_router"]["safe_char_limit"]
        self.chunker = chunker or ContentChunker()

    def needs_chunking(self, content: str) -> bool:
        """True only when content is strictly longer than the safe limit."""
        return len(content) > self.safe_char_limit

    def route(self, unit: RetrievedUnit) -> Optional[List[ContentChunk]]:
        """
        Return None for the full-context path, or the chunks to analyze.

        The chunker is never invoked for content at or below the limit.
        """
        if not self.needs_chunking(unit.content):
            return None

        logger.info(
            f"Content from {unit.source_id} is {len(unit.content)} chars "
            f"(limit {self.safe_char_limit}), chunking"
        )
        return self.chunker.split(unit.content, unit.source_id)
