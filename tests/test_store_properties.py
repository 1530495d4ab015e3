"""
Tests for the relational Store: rate limit administration, profiles and
lifecycle errors.
"""

import asyncio
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from hypothesis import given, settings, strategies as st

from namelens.exceptions import PersistenceError, ValidationError
from namelens.models import Profile, RateLimitState
from namelens.profiles import BUILTIN_PROFILES, find_builtin_profile, resolve_profile
from namelens.store import RateLimitQuery, Store


START = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

ENDPOINTS = [
    "api.github.com",
    "rdap.nic.io",
    "rdap.verisign.com",
    "whois.nic.io",
    "whois.verisign-grs.com",
]


def run_with_store(body):
    """Run `body(store)` against a migrated store on a temporary SQLite file."""

    async def runner(db_path):
        async with Store(f"sqlite:///{db_path}") as store:
            await store.migrate()
            return await body(store)

    with tempfile.TemporaryDirectory() as tmp:
        return asyncio.run(runner(Path(tmp) / "nested" / "namelens.db"))


async def seed_rate_limits(store, endpoints=ENDPOINTS):
    for i, endpoint in enumerate(endpoints):
        await store.update_rate_limit(
            endpoint,
            RateLimitState(request_count=i + 1, window_start=START),
        )


class TestRateLimitRows:
    """Per-endpoint state persistence."""

    def test_unknown_endpoint_has_no_state(self):
        async def body(store):
            return await store.get_rate_limit("never.seen")

        assert run_with_store(body) is None

    def test_state_round_trip(self):
        state = RateLimitState(
            request_count=7,
            window_start=START,
            backoff_until=START + timedelta(seconds=30),
            last_429_at=START,
        )

        async def body(store):
            await store.update_rate_limit("pypi.org", state)
            return await store.get_rate_limit("pypi.org")

        loaded = run_with_store(body)
        assert loaded.request_count == 7
        assert loaded.window_start.timestamp() == pytest.approx(START.timestamp())
        assert loaded.backoff_until.timestamp() == pytest.approx(START.timestamp() + 30)
        assert loaded.last_429_at.tzinfo is not None

    def test_missing_optional_fields_stay_none(self):
        async def body(store):
            await store.update_rate_limit("pypi.org", RateLimitState(request_count=1, window_start=START))
            return await store.get_rate_limit("pypi.org")

        loaded = run_with_store(body)
        assert loaded.backoff_until is None
        assert loaded.last_429_at is None

    @pytest.mark.parametrize("endpoint", ["", "   "])
    def test_blank_endpoint_rejected(self, endpoint):
        async def body(store):
            with pytest.raises(ValidationError):
                await store.update_rate_limit(endpoint, RateLimitState(window_start=START))
            with pytest.raises(ValidationError):
                await store.get_rate_limit(endpoint)

        run_with_store(body)


class TestRateLimitAdmin:
    """List, count and reset by all, endpoint or prefix."""

    def test_list_all_sorted(self):
        async def body(store):
            await seed_rate_limits(store, list(reversed(ENDPOINTS)))
            return await store.list_rate_limits(RateLimitQuery(all=True))

        entries = run_with_store(body)
        assert [e.endpoint for e in entries] == sorted(ENDPOINTS)

    def test_prefix_selects_matching_endpoints(self):
        async def body(store):
            await seed_rate_limits(store)
            listed = await store.list_rate_limits(RateLimitQuery(prefix="whois."))
            counted = await store.count_rate_limits(RateLimitQuery(prefix="whois."))
            removed = await store.reset_rate_limits(RateLimitQuery(prefix="whois."))
            remaining = await store.count_rate_limits(RateLimitQuery(all=True))
            return listed, counted, removed, remaining

        listed, counted, removed, remaining = run_with_store(body)
        assert [e.endpoint for e in listed] == ["whois.nic.io", "whois.verisign-grs.com"]
        assert counted == 2
        assert removed == 2
        assert remaining == len(ENDPOINTS) - 2

    def test_prefix_wildcards_are_literal(self):
        async def body(store):
            await seed_rate_limits(
                store, ["a%b.example", "abc.example", "a_c.example", "a\\d.example"]
            )
            percent = await store.count_rate_limits(RateLimitQuery(prefix="a%"))
            underscore = await store.count_rate_limits(RateLimitQuery(prefix="a_"))
            backslash = await store.count_rate_limits(RateLimitQuery(prefix="a\\"))
            return percent, underscore, backslash

        assert run_with_store(body) == (1, 1, 1)

    @given(prefix=st.sampled_from(["whois.", "rdap.", "api.", "nothing.", "w", " whois. "]))
    @settings(max_examples=6, deadline=None)
    def test_prefix_count_matches_listing(self, prefix):
        async def body(store):
            await seed_rate_limits(store)
            query = RateLimitQuery(prefix=prefix)
            return (
                [e.endpoint for e in await store.list_rate_limits(query)],
                await store.count_rate_limits(query),
            )

        listed, counted = run_with_store(body)
        expected = [e for e in sorted(ENDPOINTS) if e.startswith(prefix.strip())]
        assert listed == expected
        assert counted == len(expected)

    def test_reset_single_endpoint(self):
        async def body(store):
            await seed_rate_limits(store)
            removed = await store.reset_rate_limits(RateLimitQuery(endpoint="rdap.nic.io"))
            missing = await store.get_rate_limit("rdap.nic.io")
            return removed, missing, await store.count_rate_limits(RateLimitQuery(all=True))

        removed, missing, remaining = run_with_store(body)
        assert removed == 1
        assert missing is None
        assert remaining == len(ENDPOINTS) - 1

    def test_reset_all(self):
        async def body(store):
            await seed_rate_limits(store)
            removed = await store.reset_rate_limits(RateLimitQuery(all=True))
            return removed, await store.list_rate_limits(RateLimitQuery(all=True))

        removed, remaining = run_with_store(body)
        assert removed == len(ENDPOINTS)
        assert remaining == []

    @given(prefix=st.sampled_from(["", "  "]), endpoint=st.sampled_from(["", "   "]))
    @settings(max_examples=4)
    def test_query_without_selector_is_invalid(self, prefix, endpoint):
        query = RateLimitQuery(endpoint=endpoint, prefix=prefix)
        with pytest.raises(ValidationError) as excinfo:
            query.validate()
        assert excinfo.value.code == "invalid_query"

    def test_store_rejects_invalid_query(self):
        async def body(store):
            await seed_rate_limits(store)
            with pytest.raises(ValidationError):
                await store.reset_rate_limits(RateLimitQuery())
            return await store.count_rate_limits(RateLimitQuery(all=True))

        assert run_with_store(body) == len(ENDPOINTS)


class TestProfiles:
    """Stored and built-in profiles."""

    def test_upsert_and_get(self):
        profile = Profile(name="mine", tlds=["com", "ai"], registries=["pypi"], description="x")

        async def body(store):
            await store.upsert_profile(profile)
            return await store.get_profile("mine")

        record = run_with_store(body)
        assert record.profile == profile
        assert record.is_builtin is False
        assert record.updated_at is not None

    def test_seed_builtin_profiles(self):
        async def body(store):
            await store.seed_builtin_profiles()
            return await store.list_profiles()

        records = run_with_store(body)
        assert [r.profile.name for r in records] == sorted(p.name for p in BUILTIN_PROFILES)
        assert all(r.is_builtin for r in records)

    def test_delete_profile(self):
        async def body(store):
            await store.upsert_profile(Profile(name="gone", tlds=["com"]))
            deleted = await store.delete_profile("gone")
            again = await store.delete_profile("gone")
            return deleted, again, await store.get_profile("gone")

        assert run_with_store(body) == (True, False, None)

    def test_stored_profile_shadows_builtin(self):
        custom = Profile(name="minimal", tlds=["dev"])

        async def body(store):
            await store.upsert_profile(custom)
            return await resolve_profile("minimal", store)

        assert run_with_store(body).tlds == ["dev"]

    def test_resolve_falls_back_to_builtin(self):
        async def body(store):
            return await resolve_profile("Startup", store)

        profile = run_with_store(body)
        assert profile.name == "startup"
        assert profile.tlds == ["com", "io", "dev", "app"]

    def test_unknown_profile_rejected(self):
        with pytest.raises(ValidationError) as excinfo:
            asyncio.run(resolve_profile("nope"))
        assert excinfo.value.code == "unknown_profile"

    def test_builtin_lookup_returns_copy(self):
        profile = find_builtin_profile("developer")
        profile.tlds.append("zz")
        assert "zz" not in find_builtin_profile("developer").tlds
        assert find_builtin_profile("  ") is None


class TestLifecycle:
    """Connection state."""

    def test_use_before_connect_fails(self):
        store = Store("sqlite:///unused.db")
        with pytest.raises(PersistenceError) as excinfo:
            asyncio.run(store.get_rate_limit("pypi.org"))
        assert excinfo.value.code == "not_initialized"
        assert store.is_connected is False

    def test_sqlite_directory_created(self):
        async def run(db_path):
            async with Store(f"sqlite:///{db_path}") as store:
                await store.migrate()
                await store.migrate()
                return store.is_connected

        with tempfile.TemporaryDirectory() as tmp:
            db_path = Path(tmp) / "a" / "b" / "namelens.db"
            connected = asyncio.run(run(db_path))
            assert connected is True
            assert db_path.exists()
