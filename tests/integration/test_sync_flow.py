# =============================================================================
# tests/integration/test_sync_flow.py
# Integration Tests: service, orchestrator and SQLite store together
# =============================================================================

import pytest

from shoppe_core.config import SyncSettings
from shoppe_core.errors import ConfigurationError, OfflineError
from shoppe_core.offline import ConnectionManager, create_data_service


@pytest.fixture
def settings(tmp_path):
    return SyncSettings(db_path=tmp_path / "local_data" / "shoppe_cache.db")


@pytest.fixture
def service(settings, remote, probe, clock, cashier):
    """Service built through create_data_service with an in-memory remote"""
    built = create_data_service(
        settings=settings,
        remote=remote,
        probe=probe,
        clock=clock,
        current_user=cashier,
    )
    yield built
    built.store.close()


class TestFirstLaunch:
    """Empty cache: first read goes to the remote once"""

    @pytest.mark.asyncio
    async def test_empty_cache_fetches_once(self, service, remote):
        """First read fetches from the remote, the second is served from SQLite"""
        assert not service.has_customers_cache("cignal")

        customers = await service.get_customers("cignal")
        again = await service.get_customers("cignal")

        assert [c["id"] for c in customers] == ["c1", "c2", "c3"]
        assert again == customers
        assert remote.fetch_count("customers_cignal") == 1
        assert service.has_customers_cache("cignal")
        assert service.store.db_path.exists()


class TestStaleCache:
    """Cache older than the window is refreshed by a full sync"""

    @pytest.mark.asyncio
    async def test_full_sync_refreshes_stale_partition(self, service, remote, clock):
        """Full sync refreshes stale partition"""
        await service.force_full_sync()
        first_sync = service.store.last_synced_at("cignal")
        remote.collections["customers_cignal"].append({"id": "c4", "name": "Added elsewhere"})

        clock.advance(minutes=6)
        assert service.needs_sync("cignal")

        await service.force_full_sync()

        assert service.store.last_synced_at("cignal") == first_sync + 6 * 60 * 1000
        assert not service.needs_sync("cignal")
        assert "c4" in [c["id"] for c in await service.get_customers("cignal")]
        assert remote.fetch_count("customers_cignal") == 2


class TestRestart:
    """Snapshots outlive the process"""

    @pytest.mark.asyncio
    async def test_second_session_reads_cache_without_network(
        self, settings, sample_cignal_customers, make_remote, make_probe
    ):
        """Second session reads cache without network"""
        first_remote = make_remote({"customers_cignal": sample_cignal_customers})
        first = create_data_service(settings=settings, remote=first_remote, probe=make_probe())
        await first.get_customers("cignal")
        await first.close()

        second_remote = make_remote()
        second = create_data_service(settings=settings, remote=second_remote, probe=make_probe(online=False))
        customers = await second.get_customers("cignal")
        await second.close()

        assert len(customers) == 3
        assert second_remote.fetch_calls == []


class TestOfflineSession:
    """Offline: reads from cache, writes refused, nothing sent"""

    @pytest.mark.asyncio
    async def test_offline_then_back_online(self, service, remote, probe):
        """Writes are refused offline and accepted again once back online"""
        await service.get_customers("cignal")
        probe.online = False

        with pytest.raises(OfflineError):
            await service.add_customer("cignal", {"name": "Walk-in"})
        assert await service.force_full_sync() == 0
        assert len(await service.get_customers("cignal")) == 3
        assert remote.create_calls == []

        probe.online = True
        created = await service.add_customer("cignal", {"name": "Walk-in"})

        customers = await service.get_customers("cignal")
        assert customers[0]["id"] == created["id"]
        assert len(remote.create_calls) == 1


class TestComposition:
    """create_data_service wiring"""

    def test_requires_remote_credentials(self, settings, probe):
        """No remote client and no Supabase credentials is a configuration error"""
        with pytest.raises(ConfigurationError):
            create_data_service(settings=settings, probe=probe)

    def test_default_probe_is_connection_manager(self, settings, remote):
        """Default probe is connection manager"""
        built = create_data_service(settings=settings, remote=remote)

        assert isinstance(built.probe, ConnectionManager)
        assert built.orchestrator.on_connection_change in built.probe._callbacks
        built.store.close()

    @pytest.mark.asyncio
    async def test_start_monitors_connection_and_syncs(self, settings, remote, monkeypatch):
        """start() runs the connection monitor and the first full sync"""
        built = create_data_service(settings=settings, remote=remote)
        monkeypatch.setattr(built.probe, "_check_internet", lambda: True)
        monkeypatch.setattr(built.probe, "_check_backend", lambda: True)

        task = await built.start()
        await task

        assert built.probe._monitor_task is not None
        assert not built.probe._monitor_task.done()
        assert built.has_customers_cache("cignal")
        assert remote.fetch_count("customers_cignal") == 1
        await built.close()
        assert built.probe._monitor_task is None
