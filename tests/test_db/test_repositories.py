"""Tests for repository operations using in-memory SQLite."""

from __future__ import annotations

import pytest

from guild_cache.db.repositories.guild_repo import GuildRepository
from guild_cache.db.repositories.member_repo import MemberRepository
from guild_cache.db.repositories.unguilded_repo import UnguildedPlayerRepository
from guild_cache.models.guild import FetchedGuild, RosterEntry

GUILD_X = "52e5719684ae51ed0c716c69"
GUILD_Y = "5f1a2b3c4d5e6f7a8b9c0d1e"
PLAYER_A = "069a79f444e94726a5befca90e38aaf5"
PLAYER_B = "853c80ef3c3749fdaa49938b674adae6"
PLAYER_C = "f7c77d999f154a66a87dc4a51ef30d19"


def _guild(guild_id: str = GUILD_X, name: str = "Alpha", tag: str = "AL") -> FetchedGuild:
    return FetchedGuild(
        guild_id=guild_id,
        name=name,
        tag=tag,
        members=(
            RosterEntry(uuid=PLAYER_A, rank="Guild Master"),
            RosterEntry(uuid=PLAYER_B, rank="Member"),
        ),
    )


# ── Guild repository ───────────────────────────────────────────────────────────

class TestGuildRepository:
    def test_upsert_and_fetch_by_id(self, in_memory_db):
        repo = GuildRepository(in_memory_db)
        repo.upsert(_guild(), scanned_at=100)
        fetched = repo.get_by_id(GUILD_X)
        assert fetched is not None
        assert fetched.name == "Alpha"
        assert fetched.tag == "AL"
        assert fetched.last_scan == 100
        assert fetched.avg_level is None

    def test_upsert_is_idempotent(self, in_memory_db):
        repo = GuildRepository(in_memory_db)
        repo.upsert(_guild(), scanned_at=100)
        repo.upsert(_guild(), scanned_at=100)
        assert repo.count() == 1

    def test_upsert_refreshes_fields_but_keeps_average(self, in_memory_db):
        repo = GuildRepository(in_memory_db)
        repo.upsert(_guild(), scanned_at=100)
        in_memory_db.execute("UPDATE guilds SET avg_sb_level = 250.0;")
        repo.upsert(_guild(name="Alpha Renamed", tag="AR"), scanned_at=200)
        fetched = repo.get_by_id(GUILD_X)
        assert fetched.name == "Alpha Renamed"
        assert fetched.last_scan == 200
        assert fetched.avg_level == pytest.approx(250.0)

    def test_get_by_name(self, in_memory_db):
        repo = GuildRepository(in_memory_db)
        repo.upsert(_guild(), scanned_at=100)
        assert repo.get_by_name("Alpha").guild_id == GUILD_X
        assert repo.get_by_name("Nope") is None

    def test_exists(self, in_memory_db):
        repo = GuildRepository(in_memory_db)
        assert repo.exists(GUILD_X) is False
        repo.upsert(_guild(), scanned_at=1)
        assert repo.exists(GUILD_X) is True

    def test_recalc_average_ignores_unlevelled_members(self, in_memory_db):
        guilds = GuildRepository(in_memory_db)
        members = MemberRepository(in_memory_db)
        guild = _guild()
        guilds.upsert(guild, scanned_at=1)
        members.upsert_roster(GUILD_X, guild.members, scanned_at=1)

        assert guilds.recalc_average_level(GUILD_X) is None

        members.update_level(PLAYER_A, 300.0, updated_at=2)
        assert guilds.recalc_average_level(GUILD_X) == pytest.approx(300.0)
        members.update_level(PLAYER_B, 100.0, updated_at=2)
        assert guilds.recalc_average_level(GUILD_X) == pytest.approx(200.0)
        assert guilds.get_by_id(GUILD_X).avg_level == pytest.approx(200.0)

    def test_list_ranked_orders_by_average_with_nulls_last(self, in_memory_db):
        repo = GuildRepository(in_memory_db)
        repo.upsert(_guild(GUILD_X, "Alpha"), scanned_at=1)
        repo.upsert(_guild(GUILD_Y, "Bravo"), scanned_at=1)
        repo.upsert(_guild("aaaaaaaaaaaaaaaaaaaaaaaa", "Charlie"), scanned_at=1)
        in_memory_db.execute(
            "UPDATE guilds SET avg_sb_level = 50 WHERE guild_id = ?;", (GUILD_X,)
        )
        in_memory_db.execute(
            "UPDATE guilds SET avg_sb_level = 90 WHERE guild_id = ?;", (GUILD_Y,)
        )
        MemberRepository(in_memory_db).upsert_roster(GUILD_X, _guild().members, 1)

        ranked = repo.list_ranked()
        assert [g.name for g in ranked] == ["Bravo", "Alpha", "Charlie"]
        assert ranked[1].member_count == 2
        assert ranked[0].member_count == 0


# ── Member repository ──────────────────────────────────────────────────────────

class TestMemberRepository:
    def test_upsert_roster_and_list(self, in_memory_db):
        repo = MemberRepository(in_memory_db)
        written = repo.upsert_roster(GUILD_X, _guild().members, scanned_at=10)
        assert written == 2
        roster = repo.list_by_guild(GUILD_X)
        assert [m.uuid for m in roster] == sorted([PLAYER_A, PLAYER_B])
        assert all(m.last_scan == 10 for m in roster)

    def test_upsert_roster_moves_player_without_duplicating(self, in_memory_db):
        repo = MemberRepository(in_memory_db)
        repo.upsert_roster(GUILD_X, _guild().members, scanned_at=10)
        repo.upsert_roster(GUILD_Y, (RosterEntry(uuid=PLAYER_A, rank="Member"),), 20)
        assert repo.get(PLAYER_A).guild_id == GUILD_Y
        assert repo.count_distinct_players() == 2

    def test_upsert_roster_keeps_level(self, in_memory_db):
        repo = MemberRepository(in_memory_db)
        repo.upsert_roster(GUILD_X, _guild().members, scanned_at=10)
        repo.update_level(PLAYER_A, 321.5, updated_at=11)
        repo.upsert_roster(GUILD_X, _guild().members, scanned_at=12)
        member = repo.get(PLAYER_A)
        assert member.highest_level == pytest.approx(321.5)
        assert member.level_last_updated == 11
        assert member.last_scan == 12

    def test_empty_roster_writes_nothing(self, in_memory_db):
        assert MemberRepository(in_memory_db).upsert_roster(GUILD_X, (), 1) == 0

    def test_update_level_with_none_only_stamps(self, in_memory_db):
        repo = MemberRepository(in_memory_db)
        repo.upsert_roster(GUILD_X, _guild().members, scanned_at=10)
        repo.update_level(PLAYER_A, 99.0, updated_at=11)
        assert repo.update_level(PLAYER_A, None, updated_at=50) is True
        member = repo.get(PLAYER_A)
        assert member.highest_level == pytest.approx(99.0)
        assert member.level_last_updated == 50

    def test_update_level_missing_row(self, in_memory_db):
        assert MemberRepository(in_memory_db).update_level(PLAYER_C, 1.0, 1) is False

    def test_least_recently_levelled_puts_never_levelled_first(self, in_memory_db):
        repo = MemberRepository(in_memory_db)
        repo.upsert_roster(
            GUILD_X,
            (
                RosterEntry(uuid=PLAYER_A),
                RosterEntry(uuid=PLAYER_B),
                RosterEntry(uuid=PLAYER_C),
            ),
            scanned_at=1,
        )
        repo.update_level(PLAYER_A, 10.0, updated_at=500)
        repo.update_level(PLAYER_B, 10.0, updated_at=100)

        order = [m.uuid for m in repo.least_recently_levelled(limit=10)]
        assert order == [PLAYER_C, PLAYER_B, PLAYER_A]
        assert len(repo.least_recently_levelled(limit=2)) == 2

    def test_delete(self, in_memory_db):
        repo = MemberRepository(in_memory_db)
        repo.upsert_roster(GUILD_X, _guild().members, scanned_at=1)
        assert repo.delete(PLAYER_A) is True
        assert repo.delete(PLAYER_A) is False
        assert repo.get(PLAYER_A) is None


# ── Unguilded repository ───────────────────────────────────────────────────────

class TestUnguildedPlayerRepository:
    def test_placeholder_inserted_once(self, in_memory_db):
        repo = UnguildedPlayerRepository(in_memory_db)
        assert repo.insert_placeholder(PLAYER_A) is True
        assert repo.insert_placeholder(PLAYER_A) is False
        assert repo.get(PLAYER_A).last_scan == 0

    def test_placeholder_does_not_reset_scanned_row(self, in_memory_db):
        repo = UnguildedPlayerRepository(in_memory_db)
        repo.upsert(PLAYER_A, scanned_at=500)
        repo.insert_placeholder(PLAYER_A)
        assert repo.get(PLAYER_A).last_scan == 500

    def test_upsert_keeps_known_name(self, in_memory_db):
        repo = UnguildedPlayerRepository(in_memory_db)
        repo.upsert(PLAYER_A, scanned_at=1, name="Notch")
        repo.upsert(PLAYER_A, scanned_at=2)
        player = repo.get(PLAYER_A)
        assert player.name == "Notch"
        assert player.last_scan == 2

    def test_delete_many(self, in_memory_db):
        repo = UnguildedPlayerRepository(in_memory_db)
        for uuid in (PLAYER_A, PLAYER_B, PLAYER_C):
            repo.insert_placeholder(uuid)
        assert repo.delete_many([PLAYER_A, PLAYER_B, "0" * 32]) == 2
        assert [p.uuid for p in repo.list_all()] == [PLAYER_C]
        assert repo.delete_many([]) == 0
        assert repo.count() == 1
