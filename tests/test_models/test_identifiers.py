"""Tests for identifier handling and the fetched-guild / membership models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from guild_cache.models.guild import FetchedGuild, RosterEntry
from guild_cache.models.membership import MembershipState, MembershipStatus
from guild_cache.models.player import InputError, is_guild_id, normalize_uuid

PLAYER_A = "069a79f444e94726a5befca90e38aaf5"


class TestNormalizeUuid:
    @pytest.mark.parametrize(
        "raw",
        [
            PLAYER_A,
            "069a79f4-44e9-4726-a5be-fca90e38aaf5",
            "  069A79F444E94726A5BEFCA90E38AAF5 ",
        ],
    )
    def test_accepted_forms(self, raw):
        assert normalize_uuid(raw) == PLAYER_A

    @pytest.mark.parametrize("raw", [None, "", "  "])
    def test_missing(self, raw):
        with pytest.raises(InputError, match="Missing uuid in request body."):
            normalize_uuid(raw)

    @pytest.mark.parametrize("raw", ["Notch", "069a79f444e94726a5befca90e38aaf", "z" * 32, 42])
    def test_malformed(self, raw):
        with pytest.raises(InputError):
            normalize_uuid(raw)

    def test_input_error_is_a_value_error(self):
        assert issubclass(InputError, ValueError)


class TestIsGuildId:
    def test_guild_id(self):
        assert is_guild_id("52e5719684ae51ed0c716c69") is True

    @pytest.mark.parametrize("value", ["Alpha", "52E5719684AE51ED0C716C69", "52e5719684ae51ed0c716c6", PLAYER_A])
    def test_names(self, value):
        assert is_guild_id(value) is False


class TestFetchedGuild:
    def test_from_api(self):
        guild = FetchedGuild.from_api(
            {
                "_id": "52e5719684ae51ed0c716c69",
                "name": "Alpha",
                "tag": None,
                "members": [
                    {"uuid": "069a79f4-44e9-4726-a5be-fca90e38aaf5", "rank": "Guild Master"},
                ],
            }
        )
        assert guild.tag == ""
        assert guild.members == (RosterEntry(uuid=PLAYER_A, rank="Guild Master"),)

    def test_members_missing(self):
        guild = FetchedGuild.from_api({"_id": "52e5719684ae51ed0c716c69", "name": "Alpha"})
        assert guild.roster_uuids() == []

    def test_bad_roster_uuid(self):
        with pytest.raises(ValueError):
            FetchedGuild.from_api(
                {"_id": "52e5719684ae51ed0c716c69", "name": "A", "members": [{"uuid": "bad"}]}
            )


class TestMembershipState:
    def test_factories(self):
        assert MembershipState.unknown(PLAYER_A).status == MembershipStatus.UNKNOWN
        guilded = MembershipState.guilded(PLAYER_A, "52e5719684ae51ed0c716c69", 10)
        assert guilded.guild_id == "52e5719684ae51ed0c716c69"
        assert MembershipState.unguilded(PLAYER_A, 0).last_scan == 0

    def test_guilded_requires_guild_id(self):
        with pytest.raises(ValidationError):
            MembershipState(uuid=PLAYER_A, status=MembershipStatus.GUILDED)

    def test_unguilded_rejects_guild_id(self):
        with pytest.raises(ValidationError):
            MembershipState(
                uuid=PLAYER_A, status=MembershipStatus.UNGUILDED, guild_id="52e5719684ae51ed0c716c69"
            )
