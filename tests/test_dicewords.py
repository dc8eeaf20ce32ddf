"""Tests for diceword dictionary and mnemonic encoder."""

import asyncio

import httpx
import pytest

from peerpair.dicewords import (
    DEFAULT_WORD_LIST,
    Dictionary,
    DictionaryLoader,
    configure_dictionary,
    fetch_word_list,
    get_loader,
    load_dictionary,
    parse_word_list,
    validate_words,
    words_from_bytes,
)
from peerpair.errors import DictionaryUnavailable

from conftest import FIXTURE_WORDS


class TestParseWordList:
    """Tests for word list parsing."""

    def test_strips_whitespace_and_blank_lines(self):
        """Blank lines and surrounding whitespace are ignored."""
        assert parse_word_list("  apple \n\n banana\n\t\ncherry  \n") == [
            "apple",
            "banana",
            "cherry",
        ]

    def test_drops_duplicates_keeping_first(self):
        """Duplicate words are dropped, order preserved."""
        assert parse_word_list("b\na\nb\nc\na\n") == ["b", "a", "c"]

    def test_empty_list_is_unavailable(self):
        """Zero usable entries is a hard failure."""
        with pytest.raises(DictionaryUnavailable):
            parse_word_list("\n   \n\t\n")


class TestDictionary:
    """Tests for Dictionary."""

    def test_rejects_empty(self):
        """Empty dictionary cannot be constructed."""
        with pytest.raises(DictionaryUnavailable):
            Dictionary([])

    def test_rejects_duplicates(self):
        """Dictionary words must be distinct."""
        with pytest.raises(DictionaryUnavailable):
            Dictionary(["a", "b", "a"])

    def test_len_and_contains(self, dictionary):
        assert len(dictionary) == 16
        assert "fox" in dictionary
        assert "zebra" not in dictionary

    def test_words_from_bytes_big_endian_pairs(self, dictionary):
        """Each word uses two bytes, big-endian, modulo dictionary size."""
        # 0x0001 -> 1 (bee), 0x0002 -> 2 (cat), 0x0110 -> 272 % 16 = 0 (ant)
        data = bytes([0x00, 0x01, 0x00, 0x02, 0x01, 0x10])
        assert dictionary.words_from_bytes(data, 3) == ["bee", "cat", "ant"]

    def test_words_from_bytes_pads_missing_bytes_with_zero(self, dictionary):
        """Bytes past the end read as zero."""
        # word 0: 0x0102 = 258 % 16 = 2 (cat); word 1: 0x0300 = 768 % 16 = 0 (ant)
        assert dictionary.words_from_bytes(b"\x01\x02\x03", 2) == ["cat", "ant"]
        assert dictionary.words_from_bytes(b"", 3) == ["ant", "ant", "ant"]

    def test_words_from_bytes_exact_count(self, dictionary):
        assert len(dictionary.words_from_bytes(b"\xff" * 40, 8)) == 8
        assert dictionary.words_from_bytes(b"\xff" * 40, 0) == []

    def test_words_from_bytes_rejects_negative_count(self, dictionary):
        with pytest.raises(ValueError):
            dictionary.words_from_bytes(b"\x00", -1)

    def test_words_from_bytes_is_deterministic(self, dictionary):
        data = bytes(range(16))
        assert dictionary.words_from_bytes(data, 8) == dictionary.words_from_bytes(data, 8)

    def test_differing_bytes_give_differing_words(self):
        """Spot check: one flipped byte changes the rendering."""
        large = Dictionary([f"word{i}" for i in range(1000)])
        first = bytes(range(32))
        second = bytes(range(31)) + b"\xaa"

        assert large.words_from_bytes(first, 16) != large.words_from_bytes(second, 16)

    def test_validate_words(self, dictionary):
        """All words must be known; empty input is vacuously valid."""
        assert dictionary.validate_words(["ant", "pig"]) is True
        assert dictionary.validate_words(["ant", "zebra"]) is False
        assert dictionary.validate_words([]) is True


class TestDictionaryLoader:
    """Tests for the lazy single-flight loader."""

    async def test_loads_from_path(self, word_file):
        """Loader parses a word list from disk."""
        loader = DictionaryLoader(str(word_file))

        dictionary = await loader.get()

        assert list(dictionary.words) == FIXTURE_WORDS
        assert loader.is_loaded

    async def test_caches_after_first_load(self):
        """Word list is fetched once."""
        calls = []

        async def fetcher(source):
            calls.append(source)
            return "one\ntwo\n"

        loader = DictionaryLoader("words.txt", fetcher=fetcher)
        first = await loader.get()
        second = await loader.get()

        assert first is second
        assert calls == ["words.txt"]

    async def test_concurrent_callers_share_one_load(self):
        """Callers before the first load completes await the same fetch."""
        calls = []
        release = asyncio.Event()

        async def fetcher(source):
            calls.append(source)
            await release.wait()
            return "one\ntwo\n"

        loader = DictionaryLoader("words.txt", fetcher=fetcher)
        waiters = [asyncio.create_task(loader.get()) for _ in range(5)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*waiters)

        assert len(calls) == 1
        assert all(result is results[0] for result in results)

    async def test_failed_load_is_not_cached(self):
        """A failure is surfaced, and the next call retries."""
        attempts = []

        async def fetcher(source):
            attempts.append(source)
            if len(attempts) == 1:
                raise OSError("network down")
            return "one\n"

        loader = DictionaryLoader("words.txt", fetcher=fetcher)

        with pytest.raises(DictionaryUnavailable, match="network down"):
            await loader.get()
        assert not loader.is_loaded

        dictionary = await loader.get()
        assert dictionary.words == ("one",)
        assert len(attempts) == 2

    async def test_empty_word_list_is_unavailable(self):
        async def fetcher(source):
            return "\n\n"

        loader = DictionaryLoader("words.txt", fetcher=fetcher)

        with pytest.raises(DictionaryUnavailable):
            await loader.get()

    async def test_missing_file_is_unavailable(self, tmp_path):
        loader = DictionaryLoader(str(tmp_path / "missing.txt"))

        with pytest.raises(DictionaryUnavailable):
            await loader.get()

    async def test_http_errors_are_unavailable(self):
        async def fetcher(source):
            raise httpx.ConnectError("refused")

        loader = DictionaryLoader("https://example.org/words.txt", fetcher=fetcher)

        with pytest.raises(DictionaryUnavailable, match="refused"):
            await loader.get()

    async def test_default_source_is_bundled_list(self):
        """No source loads the word list shipped with the package."""
        dictionary = await DictionaryLoader().get()

        assert DEFAULT_WORD_LIST.exists()
        assert len(dictionary) > 256


class TestFetchWordList:
    """Tests for raw fetching."""

    async def test_reads_local_file(self, word_file):
        text = await fetch_word_list(str(word_file))
        assert "fox" in text

    async def test_fetches_url_with_httpx(self, monkeypatch):
        """http(s) sources are fetched with httpx."""

        def handler(request):
            assert request.url == "https://example.org/words.txt"
            return httpx.Response(200, text="alpha\nbeta\n")

        transport = httpx.MockTransport(handler)
        original = httpx.AsyncClient

        def client_factory(*args, **kwargs):
            kwargs["transport"] = transport
            return original(*args, **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", client_factory)

        text = await fetch_word_list("https://example.org/words.txt")

        assert text == "alpha\nbeta\n"

    async def test_http_status_error_raises(self, monkeypatch):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        original = httpx.AsyncClient

        def client_factory(*args, **kwargs):
            kwargs["transport"] = transport
            return original(*args, **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", client_factory)

        with pytest.raises(httpx.HTTPStatusError):
            await fetch_word_list("https://example.org/words.txt")


class TestSharedDictionary:
    """Tests for the process-wide helpers."""

    async def test_configure_points_at_source(self, word_file):
        loader = configure_dictionary(str(word_file))

        assert get_loader() is loader
        dictionary = await load_dictionary()
        assert list(dictionary.words) == FIXTURE_WORDS

    async def test_configure_same_source_keeps_cache(self, word_file):
        first = configure_dictionary(str(word_file))
        await load_dictionary()

        second = configure_dictionary(str(word_file))

        assert second is first
        assert second.is_loaded

    async def test_module_helpers_use_shared_dictionary(self, shared_dictionary):
        assert await words_from_bytes(b"\x00\x05", 1) == ["fox"]
        assert await validate_words(["fox", "owl"]) is True
        assert await validate_words(["fox", "zebra"]) is False

    async def test_explicit_dictionary_skips_loading(self, dictionary):
        """Passing a dictionary never touches the shared loader."""
        assert await words_from_bytes(b"\x00\x07", 1, dictionary) == ["hen"]
        assert not get_loader().is_loaded
