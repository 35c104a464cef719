"""Tests for the identity store and resolver."""

import asyncio

import pytest


class TestIdentityStore:
    """Test the SQLite identity store."""

    def test_get_unknown_returns_none(self, tmp_path):
        """Test looking up an unlinked user."""
        from jira_bridge.identity import IdentityStore

        store = IdentityStore(tmp_path / "links.sqlite")
        assert store.get("U123") is None

    def test_upsert_replaces(self, tmp_path):
        """Test linking the same user twice keeps only the second account."""
        from jira_bridge.identity import IdentityStore
        from jira_bridge.models import IdentityMapping

        store = IdentityStore(tmp_path / "links.sqlite")
        store.upsert(IdentityMapping("U123", "acc-x", "x@example.com"))
        store.upsert(IdentityMapping("U123", "acc-y", None))

        mapping = store.get("U123")
        assert mapping.tracker_account_id == "acc-y"
        assert mapping.tracker_email is None
        assert len(store.all()) == 1

    def test_delete(self, tmp_path):
        """Test unlinking reports whether a row was removed."""
        from jira_bridge.identity import IdentityStore
        from jira_bridge.models import IdentityMapping

        store = IdentityStore(tmp_path / "links.sqlite")
        store.upsert(IdentityMapping("U123", "acc-x"))

        assert store.delete("U123") is True
        assert store.delete("U123") is False
        assert store.get("U123") is None

    def test_persists_across_instances(self, tmp_path):
        """Test mappings survive reopening the database file."""
        from jira_bridge.identity import IdentityStore
        from jira_bridge.models import IdentityMapping

        path = tmp_path / "nested" / "links.sqlite"
        IdentityStore(path).upsert(IdentityMapping("U1", "acc-1", "a@example.com"))

        mapping = IdentityStore(path).get("U1")
        assert mapping.tracker_email == "a@example.com"

    def test_in_memory_store(self):
        """Test ':memory:' keeps data across calls."""
        from jira_bridge.identity import IdentityStore
        from jira_bridge.models import IdentityMapping

        store = IdentityStore(":memory:")
        store.upsert(IdentityMapping("U1", "acc-1"))
        assert store.get("U1").tracker_account_id == "acc-1"
        assert [m.chat_user_id for m in store.all()] == ["U1"]
        store.close()


class TestIdentityResolver:
    """Test the async resolver."""

    @pytest.mark.asyncio
    async def test_link_then_resolve(self, tmp_path):
        """Test link A->X then A->Y resolves to Y."""
        from jira_bridge.identity import IdentityResolver, IdentityStore

        resolver = IdentityResolver(IdentityStore(tmp_path / "links.sqlite"))
        await resolver.link("A", "X", "x@example.com")
        await resolver.link("A", "Y", "y@example.com")

        mapping = await resolver.resolve("A")
        assert mapping.tracker_account_id == "Y"
        assert mapping.tracker_email == "y@example.com"

    @pytest.mark.asyncio
    async def test_resolve_unlinked(self, tmp_path):
        """Test resolving an unlinked user returns None."""
        from jira_bridge.identity import IdentityResolver, IdentityStore

        resolver = IdentityResolver(IdentityStore(tmp_path / "links.sqlite"))
        assert await resolver.resolve("nobody") is None

    @pytest.mark.asyncio
    async def test_concurrent_links_leave_one_row(self, tmp_path):
        """Test concurrent links for one user end with exactly one mapping."""
        from jira_bridge.identity import IdentityResolver, IdentityStore

        store = IdentityStore(tmp_path / "links.sqlite")
        resolver = IdentityResolver(store)

        await asyncio.gather(*[
            resolver.link("A", f"acc-{i}", None) for i in range(10)
        ])

        rows = store.all()
        assert len(rows) == 1
        assert rows[0].tracker_account_id in {f"acc-{i}" for i in range(10)}

    @pytest.mark.asyncio
    async def test_second_link_wins(self, tmp_path):
        """Test the later of two completed links is the one resolved."""
        from jira_bridge.identity import IdentityResolver, IdentityStore

        store = IdentityStore(tmp_path / "links.sqlite")
        resolver = IdentityResolver(store)

        await resolver.link("A", "X", "x@example.com")
        await resolver.link("A", "Y", "y@example.com")

        mapping = await resolver.resolve("A")
        assert mapping.tracker_account_id == "Y"
        assert mapping.tracker_email == "y@example.com"
        assert [m.tracker_account_id for m in store.all()] == ["Y"]

    @pytest.mark.asyncio
    async def test_concurrent_links_resolve_last_committed(self, tmp_path):
        """Test racing links resolve to whichever account was committed last."""
        from jira_bridge.identity import IdentityResolver, IdentityStore

        store = IdentityStore(tmp_path / "links.sqlite")
        resolver = IdentityResolver(store)

        committed = []
        upsert = store.upsert

        def recording_upsert(mapping):
            with store._lock:
                upsert(mapping)
                committed.append(mapping.tracker_account_id)

        store.upsert = recording_upsert

        await asyncio.gather(*[
            resolver.link("A", f"acc-{i}", None) for i in range(10)
        ])

        assert len(committed) == 10
        mapping = await resolver.resolve("A")
        assert mapping.tracker_account_id == committed[-1]
        assert [m.tracker_account_id for m in store.all()] == [committed[-1]]

    @pytest.mark.asyncio
    async def test_unlink(self, tmp_path):
        """Test unlinking through the resolver."""
        from jira_bridge.identity import IdentityResolver, IdentityStore

        resolver = IdentityResolver(IdentityStore(tmp_path / "links.sqlite"))
        await resolver.link("A", "X", None)

        assert await resolver.unlink("A") is True
        assert await resolver.resolve("A") is None
        assert await resolver.unlink("A") is False
