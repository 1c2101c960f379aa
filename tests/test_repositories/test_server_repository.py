"""Unit tests for server, snapshot and player repositories."""
from datetime import timedelta

from server_scout.models import Player, Server, ServerSnapshot
from server_scout.repositories.player_repository import PlayerRepository
from server_scout.repositories.server_repository import ServerRepository


class TestServerRepository:
    """Test suite for server upserts and liveness."""

    # Upsert
    # ─────────────────────────────────────────────────────────────

    def test_upsert_twice_keeps_one_row(self, database, fixed_now):
        """Should keep one row per address with the latest values and the first first_seen."""
        later = fixed_now + timedelta(minutes=10)

        with database.session_scope() as db:
            ServerRepository(db).upsert({"ip": "10.0.0.1", "port": 27015, "name": "Old", "map": "gm_flatgrass"}, now=fixed_now)
        with database.session_scope() as db:
            ServerRepository(db).upsert({"ip": "10.0.0.1", "port": 27015, "name": "New", "map": "rp_downtown"}, now=later)

        with database.session_scope() as db:
            rows = db.query(Server).all()
            assert len(rows) == 1
            assert rows[0].name == "New"
            assert rows[0].map == "rp_downtown"
            assert rows[0].first_seen == fixed_now
            assert rows[0].last_seen == later

    def test_upsert_without_info_keeps_fields(self, database):
        """Should refresh liveness without blanking stored descriptive fields."""
        with database.session_scope() as db:
            ServerRepository(db).upsert({"ip": "10.0.0.1", "port": 27015, "name": "Named", "map": "ttt_67thway"})
        with database.session_scope() as db:
            ServerRepository(db).upsert({"ip": "10.0.0.1", "port": 27015})

        with database.session_scope() as db:
            server = ServerRepository(db).find_by_address("10.0.0.1", 27015)
            assert server.name == "Named"
            assert server.map == "ttt_67thway"

    def test_new_server_without_name_is_unknown(self, database):
        """Should name a server first seen without info 'Unknown'."""
        with database.session_scope() as db:
            server = ServerRepository(db).upsert({"ip": "10.0.0.9", "port": 27015})
            assert server.name == "Unknown"
            assert server.is_active is True
            assert ServerRepository(db).find_by_id(server.id) is server

    # Failed probes
    # ─────────────────────────────────────────────────────────────

    def test_mark_seen_unknown_server(self, database):
        """Should return False for an address never stored."""
        with database.session_scope() as db:
            assert ServerRepository(db).mark_seen("10.0.0.1", 27015, offline_after=3) is False
            assert db.query(Server).count() == 0

    def test_mark_seen_flips_after_threshold(self, database):
        """Should keep a server active until the failure threshold is reached."""
        with database.session_scope() as db:
            ServerRepository(db).upsert({"ip": "10.0.0.1", "port": 27015, "name": "Flaky", "map": "gm_construct"})

        for expected_active in (True, True, False):
            with database.session_scope() as db:
                repo = ServerRepository(db)
                assert repo.mark_seen("10.0.0.1", 27015, offline_after=3) is True
                server = repo.find_by_address("10.0.0.1", 27015)
                assert server.is_active is expected_active
                assert server.name == "Flaky"
                assert server.map == "gm_construct"

    def test_successful_probe_resets_failures(self, database):
        """Should reactivate a server and clear its failure count on the next answer."""
        with database.session_scope() as db:
            repo = ServerRepository(db)
            repo.upsert({"ip": "10.0.0.1", "port": 27015, "name": "Back"})
            repo.mark_seen("10.0.0.1", 27015, offline_after=1)
            server = repo.upsert({"ip": "10.0.0.1", "port": 27015})
            assert server.is_active is True
            assert server.consecutive_failures == 0

    # Snapshots
    # ─────────────────────────────────────────────────────────────

    def test_purge_snapshots(self, database, fixed_now):
        """Should delete only snapshots older than the cutoff."""
        with database.session_scope() as db:
            repo = ServerRepository(db)
            server = repo.upsert({"ip": "10.0.0.1", "port": 27015, "name": "S"})
            repo.add_snapshot(server.id, {"player_count": 1, "snapshot_time": fixed_now - timedelta(days=40)})
            repo.add_snapshot(server.id, {"player_count": 2, "snapshot_time": fixed_now})

        with database.session_scope() as db:
            assert ServerRepository(db).purge_snapshots(fixed_now - timedelta(days=30)) == 1

        with database.session_scope() as db:
            assert [s.player_count for s in db.query(ServerSnapshot).all()] == [2]

    def test_texts(self, database):
        """Should return (name, tags, map) with empty strings for missing parts."""
        with database.session_scope() as db:
            repo = ServerRepository(db)
            repo.upsert({"ip": "10.0.0.1", "port": 27015, "name": "A", "tags": "gm:ttt", "map": "ttt_a"})
            repo.upsert({"ip": "10.0.0.2", "port": 27015, "name": "B"})

        with database.session_scope() as db:
            assert ServerRepository(db).texts() == [("A", "gm:ttt", "ttt_a"), ("B", "", "")]


class TestPlayerRepository:
    """Test suite for player upserts."""

    def test_upsert_keeps_identity(self, database, fixed_now):
        """Should update profile fields and keep steam_id and first_seen."""
        later = fixed_now + timedelta(days=2)
        with database.session_scope() as db:
            PlayerRepository(db).upsert({"steam_id": "76561198000000001", "username": "old"}, now=fixed_now)
        with database.session_scope() as db:
            PlayerRepository(db).upsert({"steam_id": "76561198000000001", "username": "new", "owns_game": True}, now=later)

        with database.session_scope() as db:
            players = db.query(Player).all()
            assert len(players) == 1
            assert players[0].username == "new"
            assert players[0].owns_game is True
            assert players[0].first_seen == fixed_now
            assert players[0].last_updated == later

    def test_find_stale_oldest_first(self, database, fixed_now):
        """Should return ids not refreshed since the cutoff, oldest first."""
        with database.session_scope() as db:
            repo = PlayerRepository(db)
            repo.upsert({"steam_id": "2"}, now=fixed_now - timedelta(days=2))
            repo.upsert({"steam_id": "1"}, now=fixed_now - timedelta(days=3))
            repo.upsert({"steam_id": "3"}, now=fixed_now)

        with database.session_scope() as db:
            assert PlayerRepository(db).find_stale(fixed_now - timedelta(days=1)) == ["1", "2"]

    def test_last_updated_unknown(self, database):
        """Should return None for a player never stored."""
        with database.session_scope() as db:
            assert PlayerRepository(db).last_updated("missing") is None
