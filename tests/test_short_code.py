"""Tests for short code allocation and link creation."""

import asyncio
from uuid import uuid4

import pytest

from linkcast.core import short_code
from linkcast.core.errors import AllocationExhausted, CodeTaken, ValidationError
from linkcast.core.short_code import (
    ALPHABET,
    CODE_LENGTH,
    allocate,
    create_link,
    generate_code,
    validate_destination_url,
)
from linkcast.models.store import Store
from linkcast.models.tables import Link


class FakeLinkStore:
    """Set-backed stand-in for the Store's link methods."""

    def __init__(self, taken=(), lose_races: int = 0):
        self.codes = set(taken)
        self.lose_races = lose_races
        self.inserted = []

    async def code_exists(self, code):
        return code in self.codes

    async def insert_link(self, **values):
        code = values["short_code"]
        if self.lose_races:
            # Another writer grabs the code between check and insert
            self.lose_races -= 1
            self.codes.add(code)
            return None
        if code in self.codes:
            return None
        self.codes.add(code)
        link = Link(id=uuid4(), **values)
        self.inserted.append(link)
        return link


class TestGenerateCode:
    def test_length_and_alphabet(self):
        code = generate_code()
        assert len(code) == CODE_LENGTH
        assert all(c in ALPHABET for c in code)

    def test_alphabet_is_62_chars(self):
        assert len(set(ALPHABET)) == 62


class TestValidation:
    @pytest.mark.parametrize("url", [None, "", "   "])
    def test_missing_url(self, url):
        with pytest.raises(ValidationError) as exc:
            validate_destination_url(url)
        assert exc.value.message == "Missing original_url"

    @pytest.mark.parametrize("url", ["ftp://example.com", "example.com", "javascript:alert(1)"])
    def test_non_http_url_rejected(self, url):
        with pytest.raises(ValidationError) as exc:
            validate_destination_url(url)
        assert exc.value.message == "URL must start with http:// or https://"

    def test_url_is_stripped(self):
        assert validate_destination_url("  https://example.com/a  ") == "https://example.com/a"

    def test_overlong_url_rejected(self):
        with pytest.raises(ValidationError):
            validate_destination_url("https://example.com/" + "a" * 2048)


class TestAllocate:
    async def test_requested_code_free(self):
        store = FakeLinkStore()
        assert await allocate(store, "abc123") == "abc123"

    async def test_requested_code_taken(self):
        store = FakeLinkStore(taken={"abc123"})
        with pytest.raises(CodeTaken):
            await allocate(store, "abc123")

    async def test_codes_are_case_sensitive(self):
        store = FakeLinkStore(taken={"abc123"})
        assert await allocate(store, "ABC123") == "ABC123"

    @pytest.mark.parametrize("code", ["bad-code", "has space", "émoji", "a" * 33])
    async def test_invalid_requested_code(self, code):
        store = FakeLinkStore()
        with pytest.raises(ValidationError):
            await allocate(store, code)

    async def test_exhausted_after_max_attempts(self, monkeypatch):
        calls = []

        def always_same():
            calls.append(1)
            return "AAAAAA"

        monkeypatch.setattr(short_code, "generate_code", always_same)
        store = FakeLinkStore(taken={"AAAAAA"})
        with pytest.raises(AllocationExhausted):
            await allocate(store)
        assert len(calls) == short_code.MAX_ATTEMPTS


class TestCreateLink:
    async def test_ten_thousand_codes_are_unique(self):
        store = FakeLinkStore()
        for _ in range(10_000):
            await create_link(store, "https://example.com")
        codes = [link.short_code for link in store.inserted]
        assert len(codes) == 10_000
        assert len(set(codes)) == 10_000

    async def test_taken_requested_code_inserts_nothing(self):
        store = FakeLinkStore(taken={"abc123"})
        with pytest.raises(CodeTaken):
            await create_link(store, "https://example.com", requested_code="abc123")
        assert store.inserted == []

    async def test_lost_race_on_generated_code_retries(self):
        store = FakeLinkStore(lose_races=1)
        link = await create_link(store, "https://example.com")
        assert len(store.inserted) == 1
        assert link.short_code in store.codes

    async def test_lost_race_on_requested_code_is_taken(self):
        store = FakeLinkStore(lose_races=1)
        with pytest.raises(CodeTaken):
            await create_link(store, "https://example.com", requested_code="abc123")
        assert store.inserted == []

    async def test_negative_delay_rejected(self):
        store = FakeLinkStore()
        with pytest.raises(ValidationError):
            await create_link(store, "https://example.com", redirect_delay=-1)

    async def test_new_link_starts_with_empty_ledger(self):
        store = FakeLinkStore()
        link = await create_link(store, "https://example.com", is_affiliate=True, title="Deal")
        assert link.total_clicks == 0
        assert link.estimated_revenue == 0
        assert link.is_active is True
        assert link.is_affiliate is True


class TestCreateLinkDatabase:
    async def test_duplicate_requested_code(self, store):
        await create_link(store, "https://example.com/a", requested_code="abc123")
        with pytest.raises(CodeTaken):
            await create_link(store, "https://example.com/b", requested_code="abc123")

    async def test_unique_index_settles_insert_race(self, session_maker):
        async def insert(url):
            async with session_maker() as session:
                return await Store(session).insert_link(short_code="race01", original_url=url)

        results = await asyncio.gather(
            insert("https://example.com/1"),
            insert("https://example.com/2"),
        )
        winners = [r for r in results if r is not None]
        assert len(winners) == 1

        async with session_maker() as session:
            link = await Store(session).get_link_by_code("race01")
        assert link.original_url == winners[0].original_url
