"""Diceword dictionary and mnemonic encoder.

This module provides:
- Dictionary: ordered list of distinct words with byte-to-word mapping
- DictionaryLoader: lazy, single-flight, cached loader for a word list
- Module-level helpers operating on the process-wide default loader

The byte-to-word mapping is display only. It is lossy and cannot be
inverted; it exists so humans can read opaque data aloud.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Sequence

import httpx

from peerpair.errors import DictionaryUnavailable

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_WORD_LIST",
    "Dictionary",
    "DictionaryLoader",
    "DictionaryUnavailable",
    "configure_dictionary",
    "fetch_word_list",
    "get_loader",
    "load_dictionary",
    "parse_word_list",
    "reset_dictionary",
    "validate_words",
    "words_from_bytes",
]

DEFAULT_WORD_LIST = Path(__file__).parent / "data" / "dicewords.txt"
FETCH_TIMEOUT = 10.0  # seconds


def parse_word_list(text: str) -> list[str]:
    """Parse a newline-separated word list.

    Blank lines and surrounding whitespace are ignored. Duplicates are
    dropped, keeping the first occurrence.

    Args:
        text: Raw word list content.

    Returns:
        Ordered list of distinct words.

    Raises:
        DictionaryUnavailable: If no usable words remain.
    """
    words: list[str] = []
    seen: set[str] = set()
    duplicates = 0
    for line in text.splitlines():
        word = line.strip()
        if not word:
            continue
        if word in seen:
            duplicates += 1
            continue
        seen.add(word)
        words.append(word)

    if duplicates:
        logger.warning(f"Dropped {duplicates} duplicate dicewords")
    if not words:
        raise DictionaryUnavailable("Dicewords dictionary contains no words")
    return words


class Dictionary:
    """Ordered sequence of distinct words.

    Attributes:
        words: The words, in dictionary order.
    """

    def __init__(self, words: Sequence[str]) -> None:
        """Initialize dictionary.

        Args:
            words: Non-empty sequence of distinct words.

        Raises:
            DictionaryUnavailable: If words is empty or has duplicates.
        """
        if not words:
            raise DictionaryUnavailable("Dicewords dictionary contains no words")
        self._words = tuple(words)
        self._lookup = frozenset(self._words)
        if len(self._lookup) != len(self._words):
            raise DictionaryUnavailable("Dicewords dictionary contains duplicate words")

    @property
    def words(self) -> tuple[str, ...]:
        return self._words

    def __len__(self) -> int:
        return len(self._words)

    def __contains__(self, word: object) -> bool:
        return word in self._lookup

    def word_for(self, value: int) -> str:
        """Map an integer onto a word (value modulo dictionary size)."""
        return self._words[value % len(self._words)]

    def words_from_bytes(self, data: bytes, count: int) -> list[str]:
        """Map bytes onto count words.

        Word i is chosen by the big-endian 16-bit value of bytes 2i and
        2i+1. Bytes past the end of data read as zero.

        Args:
            data: Source bytes.
            count: Number of words to produce.

        Returns:
            List of count words.
        """
        if count < 0:
            raise ValueError(f"Word count must be non-negative, got {count}")

        result = []
        for i in range(count):
            high = data[i * 2] if i * 2 < len(data) else 0
            low = data[i * 2 + 1] if i * 2 + 1 < len(data) else 0
            result.append(self.word_for((high << 8) | low))
        return result

    def validate_words(self, words: Iterable[str]) -> bool:
        """Check that every word is in the dictionary.

        Returns:
            True if all words are known (True for an empty input).
        """
        return all(word in self._lookup for word in words)


async def fetch_word_list(source: str) -> str:
    """Fetch raw word list content from a URL or a filesystem path."""
    if source.startswith(("http://", "https://")):
        async with httpx.AsyncClient(timeout=FETCH_TIMEOUT) as client:
            response = await client.get(source)
            response.raise_for_status()
            return response.text

    return await asyncio.to_thread(Path(source).expanduser().read_text, encoding="utf-8")


class DictionaryLoader:
    """Lazy, cached, single-flight dictionary loader.

    The first successful load is cached for the loader's lifetime.
    Concurrent callers arriving before that share one in-flight load.
    A failed load is not cached; the next call tries again.
    """

    def __init__(
        self,
        source: str | None = None,
        fetcher: Callable[[str], Awaitable[str]] | None = None,
    ) -> None:
        """Initialize loader.

        Args:
            source: Path or http(s) URL of the word list. None uses the
                bundled list.
            fetcher: Injectable fetch function for testing.
        """
        self.source = source
        self._fetcher = fetcher or fetch_word_list
        self._dictionary: Dictionary | None = None
        self._pending: asyncio.Future | None = None

    @property
    def is_loaded(self) -> bool:
        return self._dictionary is not None

    async def get(self) -> Dictionary:
        """Return the dictionary, loading it on first use.

        Raises:
            DictionaryUnavailable: If the word list cannot be loaded.
        """
        if self._dictionary is not None:
            return self._dictionary

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._load())
        pending = self._pending

        try:
            return await asyncio.shield(pending)
        finally:
            if pending.done() and self._pending is pending:
                self._pending = None

    async def _load(self) -> Dictionary:
        source = self.source or str(DEFAULT_WORD_LIST)
        try:
            text = await self._fetcher(source)
        except DictionaryUnavailable:
            raise
        except (OSError, UnicodeDecodeError, httpx.HTTPError) as e:
            logger.error(f"Failed to load dicewords from {source}: {e}")
            raise DictionaryUnavailable(
                f"Failed to load dicewords dictionary: {e}"
            ) from e

        dictionary = Dictionary(parse_word_list(text))
        self._dictionary = dictionary
        logger.info(f"Loaded {len(dictionary)} dicewords from {source}")
        return dictionary


# Process-wide loader shared by the token display layer and the SAS engine
_default_loader = DictionaryLoader()


def get_loader() -> DictionaryLoader:
    """Return the process-wide dictionary loader."""
    return _default_loader


def configure_dictionary(source: str | None) -> DictionaryLoader:
    """Point the process-wide loader at a word list source.

    Keeps the cached dictionary if the source is unchanged.
    """
    global _default_loader
    if source != _default_loader.source:
        _default_loader = DictionaryLoader(source)
    return _default_loader


def reset_dictionary() -> None:
    """Drop the cached dictionary. Used for testing."""
    global _default_loader
    _default_loader = DictionaryLoader()


async def load_dictionary() -> Dictionary:
    """Load (or return the cached) process-wide dictionary."""
    return await _default_loader.get()


async def words_from_bytes(
    data: bytes, count: int, dictionary: Dictionary | None = None
) -> list[str]:
    """Map bytes onto count words using the shared dictionary."""
    if dictionary is None:
        dictionary = await load_dictionary()
    return dictionary.words_from_bytes(data, count)


async def validate_words(
    words: Iterable[str], dictionary: Dictionary | None = None
) -> bool:
    """Check that every word exists in the shared dictionary."""
    if dictionary is None:
        dictionary = await load_dictionary()
    return dictionary.validate_words(words)
