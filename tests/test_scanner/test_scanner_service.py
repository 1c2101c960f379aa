"""Unit tests for the batch scanner.

Test Strategy:
1. A server answering either query is online and upserted
2. A silent server only has its liveness recorded
3. Per-address failures never abort the batch
4. A sweep fired while the same kind is running is skipped
5. Storage retries run off the event loop
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from server_scout.core.errors import PersistenceError, QueryTimeout
from server_scout.repositories.gateway import PersistenceGateway
from server_scout.services.classification.results import ClassificationResult, ResultKind
from server_scout.services.classification.ensemble import ServerClassification
from server_scout.services.query.codec import PlayerInfo
from server_scout.services.query.prober import ProbeResult
from server_scout.services.scanner import ScannerService, server_record


def _classification(is_regional: bool) -> ServerClassification:
    return ServerClassification(
        gamemode=ClassificationResult(ResultKind.RULE_BASED, "darkrp", 0.9, False, "Rule-based match: darkrp"),
        regional=ClassificationResult(ResultKind.COMBINED, is_regional, 0.8 if is_regional else 0.1, False, ""),
    )


@pytest.fixture
def gateway():
    gateway = MagicMock()
    gateway.upsert_server = MagicMock(return_value=1)
    gateway.insert_snapshot = MagicMock(return_value=1)
    gateway.mark_server_seen = MagicMock(return_value=True)
    gateway.regional_addresses = MagicMock(return_value=[])
    return gateway


@pytest.fixture
def classifier():
    classifier = MagicMock()
    classifier.classify_and_store = MagicMock(return_value=_classification(True))
    return classifier


@pytest.fixture
def prober():
    prober = MagicMock()
    prober.timeout = 5.0
    prober.probe = AsyncMock(side_effect=lambda address: ProbeResult(address=address, info_error="QueryTimeout"))
    return prober


def _scanner(gateway, classifier, prober, adapters=(), **kwargs):
    return ScannerService(gateway, classifier, prober, adapters, sleep=AsyncMock(), **kwargs)


class TestServerRecord:
    """Test suite for mapping probe results to server rows."""

    def test_without_info_only_address(self):
        """Should carry only the address when no info reply arrived."""
        result = ProbeResult(address="10.0.0.1:27015", players=[])
        assert server_record(result) == {"ip": "10.0.0.1", "port": 27015}

    def test_with_info(self, server_info):
        """Should map the info reply onto server columns."""
        record = server_record(ProbeResult(address="10.0.0.1:27015", info=server_info))

        assert record["name"] == "[PL] DarkRP Polska"
        assert record["tags"] == "gm:darkrp gmc:rp polska"
        assert record["game_dir"] == "garrysmod"
        assert record["secure"] is True
        assert record["os"] == "l"


class TestProbeAddress:
    """Test suite for per-address handling."""

    @pytest.mark.asyncio
    async def test_players_only_is_online(self, gateway, classifier, prober):
        """Should upsert a server whose info query timed out but players answered."""
        prober.probe.side_effect = None
        prober.probe.return_value = ProbeResult(
            address="10.0.0.1:27015",
            players=[PlayerInfo(0, "Kowalski", 3, 60.0)],
            info_error="QueryTimeout: no reply",
        )
        scanner = _scanner(gateway, classifier, prober)

        assert await scanner.probe_address("10.0.0.1:27015") == "online"

        gateway.upsert_server.assert_called_once_with({"ip": "10.0.0.1", "port": 27015})
        classifier.classify_and_store.assert_not_called()
        snapshot = gateway.insert_snapshot.call_args[0][1]
        assert snapshot["player_count"] == 1

    @pytest.mark.asyncio
    async def test_online_with_info_is_classified(self, gateway, classifier, prober, server_info):
        """Should classify, snapshot and track a regional server."""
        prober.probe.side_effect = None
        prober.probe.return_value = ProbeResult(address="10.0.0.1:27015", info=server_info, latency_ms=42)
        scanner = _scanner(gateway, classifier, prober)

        await scanner.probe_address("10.0.0.1:27015")

        classifier.classify_and_store.assert_called_once_with(
            1, "[PL] DarkRP Polska", "gm:darkrp gmc:rp polska", "rp_downtown_v4c"
        )
        snapshot = gateway.insert_snapshot.call_args[0][1]
        assert snapshot["gamemode"] == "darkrp"
        assert snapshot["is_regional"] is True
        assert snapshot["ping_ms"] == 42
        assert "10.0.0.1:27015" in scanner.regional_servers

    @pytest.mark.asyncio
    async def test_regional_server_removed_when_negative(self, gateway, classifier, prober, server_info):
        """Should drop an address from the regional set when re-classified negative."""
        prober.probe.side_effect = None
        prober.probe.return_value = ProbeResult(address="10.0.0.1:27015", info=server_info)
        classifier.classify_and_store.return_value = _classification(False)
        scanner = _scanner(gateway, classifier, prober)
        scanner.regional_servers = {"10.0.0.1:27015"}

        await scanner.probe_address("10.0.0.1:27015")

        assert scanner.regional_servers == set()

    @pytest.mark.asyncio
    async def test_offline_marks_seen(self, gateway, classifier, prober):
        """Should only record a failed probe for a silent server."""
        scanner = _scanner(gateway, classifier, prober, offline_after=3)

        assert await scanner.probe_address("10.0.0.1:27015") == "offline"

        gateway.mark_server_seen.assert_called_once_with("10.0.0.1", 27015, 3)
        gateway.upsert_server.assert_not_called()
        gateway.insert_snapshot.assert_not_called()


class TestScanBatch:
    """Test suite for batched scanning."""

    @pytest.mark.asyncio
    async def test_failure_does_not_abort_batch(self, gateway, classifier, prober):
        """Should count a failing address and keep scanning the rest."""
        results = {
            "10.0.0.1:27015": ProbeResult(address="10.0.0.1:27015", players=[]),
            "10.0.0.2:27015": QueryTimeout("socket exploded"),
            "10.0.0.3:27015": ProbeResult(address="10.0.0.3:27015"),
        }

        async def probe(address):
            outcome = results[address]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        prober.probe.side_effect = probe
        gateway.upsert_server.side_effect = PersistenceError("db down")
        scanner = _scanner(gateway, classifier, prober)

        counts = await scanner.scan_batch(list(results))

        assert counts == {"online": 0, "offline": 1, "failed": 2}
        assert scanner.get_stats()["failed_servers"] == 2

    @pytest.mark.asyncio
    async def test_batches_and_pauses(self, gateway, classifier, prober):
        """Should split into batches and pause between them only."""
        sleep = AsyncMock()
        scanner = ScannerService(gateway, classifier, prober, max_concurrent_queries=2, batch_pause=1.5, sleep=sleep)

        await scanner.scan_batch([f"10.0.0.{i}:27015" for i in range(5)])

        assert prober.probe.await_count == 5
        assert sleep.await_count == 2
        sleep.assert_awaited_with(1.5)


class TestSweeps:
    """Test suite for full and hot sweeps."""

    @pytest.mark.asyncio
    async def test_full_sweep_uses_discovery(self, gateway, classifier, prober):
        """Should probe every discovered candidate once."""
        adapter = MagicMock(discover=AsyncMock(return_value={"10.0.0.1:27015", "10.0.0.2:27015"}))
        scanner = _scanner(gateway, classifier, prober, adapters=[adapter])

        result = await scanner.full_sweep()

        assert result["addresses"] == 2
        assert result["offline"] == 2
        assert scanner.get_stats()["sweeps"] == 1

    @pytest.mark.asyncio
    async def test_overlapping_sweep_skipped(self, gateway, classifier, prober):
        """Should skip a full sweep fired while another is still running."""
        release = asyncio.Event()

        async def slow_discover():
            await release.wait()
            return {"10.0.0.1:27015"}

        adapter = MagicMock(discover=slow_discover)
        scanner = _scanner(gateway, classifier, prober, adapters=[adapter])

        first = asyncio.create_task(scanner.full_sweep())
        await asyncio.sleep(0)
        assert scanner.is_scanning() is True

        assert await scanner.full_sweep() is None

        release.set()
        assert (await first)["addresses"] == 1
        assert scanner.get_stats()["skipped_sweeps"] == 1
        assert prober.probe.await_count == 1

    @pytest.mark.asyncio
    async def test_hot_sweep_probes_regional_set(self, gateway, classifier, prober):
        """Should re-probe only the seeded regional servers."""
        gateway.regional_addresses.return_value = ["10.0.0.7:27015"]
        scanner = _scanner(gateway, classifier, prober)
        scanner.initialize()

        result = await scanner.hot_sweep()

        prober.probe.assert_awaited_once_with("10.0.0.7:27015")
        assert result["kind"] == "hot"

    def test_initialize_survives_persistence_error(self, gateway, classifier, prober):
        """Should start with an empty regional set when the lookup fails."""
        gateway.regional_addresses.side_effect = PersistenceError("db down")
        scanner = _scanner(gateway, classifier, prober)
        scanner.initialize()
        assert scanner.regional_servers == set()

    def test_tunables(self, gateway, classifier, prober):
        """Should update batch size and query timeout, rejecting bad values."""
        scanner = _scanner(gateway, classifier, prober)
        scanner.set_max_concurrent_queries(10)
        scanner.set_query_timeout(2.5)

        assert scanner.get_stats()["max_concurrent_queries"] == 10
        assert prober.timeout == 2.5
        with pytest.raises(ValueError):
            scanner.set_max_concurrent_queries(0)


class TestEventLoopResponsiveness:
    """Test suite for storage work running on the executor."""

    def _locked_database(self, database, failures):
        calls = {"count": 0}
        real_scope = database.session_scope

        @contextmanager
        def session_scope():
            calls["count"] += 1
            if calls["count"] <= failures:
                raise OperationalError("UPDATE servers", {}, Exception("database is locked"))
            with real_scope() as db:
                yield db

        database.session_scope = session_scope
        return calls

    @pytest.mark.asyncio
    async def test_retrying_write_does_not_block_loop(self, database, classifier, prober):
        """Should keep other coroutines running while a write backs off and retries."""
        calls = self._locked_database(database, failures=2)
        gateway = PersistenceGateway(database, retry_attempts=3, retry_base_delay=0.1)
        ticks = 0

        async def heartbeat():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.01)
                ticks += 1

        with ThreadPoolExecutor(max_workers=1) as executor:
            scanner = _scanner(gateway, classifier, prober, executor=executor)
            task = asyncio.create_task(heartbeat())
            try:
                outcome = await scanner.probe_address("10.0.0.1:27015")
            finally:
                task.cancel()

        assert outcome == "offline"
        assert calls["count"] == 3
        # Two back-offs of 0.1s and 0.2s; a blocked loop would tick at most once
        assert ticks >= 10
