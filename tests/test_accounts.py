"""Tests for the account repository."""

from __future__ import annotations

import asyncio

import argon2
import pytest
from structlog.testing import capture_logs

from mmostore.accounts import AUTH_TYPE_NORMAL, STATISTIC_ROW_ID, AccountRepository, like_literal
from mmostore.errors import ErrorKind
from mmostore.executor import AsyncStatementExecutor, StatementExecutor
from mmostore.security import generate_access_token


async def _register(repo: AccountRepository, username: str = "alice", password: str = "SecureP@ss1") -> str:
    outcome = await repo.register(username, password, f"{username}@example.com")
    assert outcome.ok, outcome.error
    return outcome.value


class TestRegistrationAndLogin:
    async def test_register_then_login_returns_generated_id(
        self, async_executor: AsyncStatementExecutor, migrated, fast_hasher
    ):
        repo = AccountRepository(async_executor, hasher=fast_hasher, id_factory=lambda: "user-0001")
        outcome = await repo.register("alice", "SecureP@ss1", "alice@example.com")
        assert outcome.ok
        assert outcome.value == "user-0001"
        assert await repo.validate_login("alice", "SecureP@ss1") == "user-0001"

    async def test_wrong_password_returns_empty(self, repo: AccountRepository):
        await _register(repo)
        assert await repo.validate_login("alice", "WrongP@ss1") == ""

    async def test_unknown_username_returns_empty(self, repo: AccountRepository):
        assert await repo.validate_login("nobody", "SecureP@ss1") == ""

    async def test_password_is_stored_hashed(self, repo: AccountRepository, migrated: StatementExecutor):
        user_id = await _register(repo)
        stored = migrated.scalar("SELECT password FROM userlogin WHERE id=:id", {"id": user_id}).value
        assert stored != "SecureP@ss1"
        assert stored.startswith("$argon2id$")

    async def test_registration_uses_normal_auth_type(self, repo: AccountRepository, migrated: StatementExecutor):
        user_id = await _register(repo)
        auth_type = migrated.scalar("SELECT authType FROM userlogin WHERE id=:id", {"id": user_id}).value
        assert auth_type == AUTH_TYPE_NORMAL

    async def test_outdated_hash_is_upgraded_on_login(
        self, repo: AccountRepository, async_executor: AsyncStatementExecutor, migrated: StatementExecutor
    ):
        user_id = await _register(repo)
        before = migrated.scalar("SELECT password FROM userlogin WHERE id=:id", {"id": user_id}).value

        stronger = argon2.PasswordHasher(time_cost=2, memory_cost=16, parallelism=1, hash_len=16, salt_len=8)
        upgraded = AccountRepository(async_executor, hasher=stronger)
        assert await upgraded.validate_login("alice", "SecureP@ss1") == user_id

        after = migrated.scalar("SELECT password FROM userlogin WHERE id=:id", {"id": user_id}).value
        assert after != before
        assert "t=2" in after
        assert await upgraded.validate_login("alice", "SecureP@ss1") == user_id

    async def test_other_auth_types_cannot_password_login(self, repo: AccountRepository, migrated: StatementExecutor):
        user_id = await _register(repo)
        migrated.non_query("UPDATE userlogin SET authType=2 WHERE id=:id", {"id": user_id})
        assert await repo.validate_login("alice", "SecureP@ss1") == ""

    async def test_duplicate_username_is_a_constraint_error(self, repo: AccountRepository):
        await _register(repo)
        outcome = await repo.register("alice", "OtherP@ss1", "other@example.com")
        assert outcome.value == ""
        assert outcome.kind is ErrorKind.CONSTRAINT

    async def test_duplicate_email_is_a_constraint_error(self, repo: AccountRepository):
        await repo.register("alice", "SecureP@ss1", "shared@example.com")
        outcome = await repo.register("bob", "SecureP@ss1", "shared@example.com")
        assert outcome.kind is ErrorKind.CONSTRAINT

    async def test_concurrent_registration_admits_one(self, repo: AccountRepository):
        outcomes = await asyncio.gather(
            repo.register("racer", "SecureP@ss1", "racer1@example.com"),
            repo.register("racer", "SecureP@ss1", "racer2@example.com"),
        )
        assert sum(o.ok for o in outcomes) == 1
        assert await repo.count_username_matches("racer") == 1


class TestUniquenessCounts:
    async def test_username_count_is_case_insensitive(self, repo: AccountRepository):
        await _register(repo, "alice")
        assert await repo.count_username_matches("alice") >= 1
        assert await repo.count_username_matches("ALICE") == 1
        assert await repo.count_username_matches("bob") == 0

    async def test_pattern_matching(self, repo: AccountRepository):
        await _register(repo, "alice")
        await _register(repo, "alicia")
        assert await repo.count_username_matches("ali%") == 2

    async def test_email_count(self, repo: AccountRepository):
        await _register(repo, "alice")
        assert await repo.count_email_matches("Alice@Example.com") == 1
        assert await repo.count_email_matches("nobody@example.com") == 0


class TestAccessTokens:
    async def test_token_round_trip(self, repo: AccountRepository):
        user_id = await _register(repo)
        token = generate_access_token()
        assert await repo.update_access_token(user_id, token) == 1
        assert await repo.validate_access_token(user_id, token) is True

    async def test_token_must_match_user_and_value(self, repo: AccountRepository):
        alice = await _register(repo, "alice")
        bob = await _register(repo, "bob")
        token = generate_access_token()
        await repo.update_access_token(alice, token)
        assert await repo.validate_access_token(bob, token) is False
        assert await repo.validate_access_token(alice, "stale") is False

    async def test_email_verification_flag(self, repo: AccountRepository, migrated: StatementExecutor):
        user_id = await _register(repo)
        assert await repo.validate_email_verification(user_id) is False
        migrated.non_query("UPDATE userlogin SET isEmailVerified=1 WHERE id=:id", {"id": user_id})
        assert await repo.validate_email_verification(user_id) is True


class TestBalances:
    async def test_gold_update_then_read(self, repo: AccountRepository):
        user_id = await _register(repo)
        assert await repo.get_gold(user_id) == 0
        assert await repo.update_gold(user_id, 500) == 1
        assert await repo.get_gold(user_id) == 500

    async def test_cash_update_then_read(self, repo: AccountRepository):
        user_id = await _register(repo)
        await repo.update_cash(user_id, 500)
        assert await repo.get_cash(user_id) == 500

    async def test_unknown_user_reads_zero(self, repo: AccountRepository):
        assert await repo.get_gold("missing") == 0
        assert await repo.get_cash("missing") == 0
        assert await repo.get_user_level("missing") == 0
        assert await repo.get_unban_time("missing") == 0

    async def test_update_unknown_user_affects_nothing(self, repo: AccountRepository):
        assert await repo.update_gold("missing", 10) == 0

    async def test_user_level(self, repo: AccountRepository, migrated: StatementExecutor):
        user_id = await _register(repo)
        migrated.non_query("UPDATE userlogin SET userLevel=5 WHERE id=:id", {"id": user_id})
        assert await repo.get_user_level(user_id) == 5


class TestModeration:
    async def test_unban_time_set_through_character(self, repo: AccountRepository, add_character):
        user_id = await _register(repo)
        add_character("Aragorn", user_id)
        assert await repo.set_unban_time_by_character_name("aragorn", 1_900_000_000) == 1
        assert await repo.get_unban_time(user_id) == 1_900_000_000

    async def test_unban_unknown_character_is_silent_noop(
        self, repo: AccountRepository, migrated: StatementExecutor
    ):
        user_id = await _register(repo)
        with capture_logs() as logs:
            assert await repo.set_unban_time_by_character_name("ghost", 123) == 0
        assert not [e for e in logs if e["log_level"] == "critical"]
        assert await repo.get_unban_time(user_id) == 0

    async def test_mute_time_set_on_character(self, repo: AccountRepository, add_character, migrated):
        user_id = await _register(repo)
        add_character("Legolas", user_id)
        assert await repo.set_mute_time_by_character_name("Legolas", 42) == 1
        stored = migrated.scalar(
            "SELECT unmuteTime FROM characters WHERE characterName=:name", {"name": "Legolas"}
        ).value
        assert stored == 42

    async def test_mute_unknown_character_is_noop(self, repo: AccountRepository):
        assert await repo.set_mute_time_by_character_name("ghost", 42) == 0


    async def test_underscore_in_name_mutes_only_that_character(
        self, repo: AccountRepository, add_character, migrated: StatementExecutor
    ):
        user_id = await _register(repo)
        for name in ("Dark_Knight", "DarkXKnight", "DarkYKnight"):
            add_character(name, user_id)

        assert await repo.set_mute_time_by_character_name("Dark_Knight", 99) == 1
        muted = migrated.scalar("SELECT COUNT(*) FROM characters WHERE unmuteTime=99").value
        assert muted == 1

    async def test_wildcards_in_name_never_match_other_characters(self, repo: AccountRepository, add_character):
        user_id = await _register(repo)
        add_character("Gandalf", user_id)
        assert await repo.set_mute_time_by_character_name("%", 1) == 0
        assert await repo.set_mute_time_by_character_name("Gand_lf", 1) == 0
        assert await repo.set_unban_time_by_character_name("G%", 1) == 0
        assert await repo.get_unban_time(user_id) == 0

    async def test_unban_resolves_exact_owner_despite_lookalike_names(self, repo: AccountRepository, add_character):
        alice = await _register(repo, "alice")
        bob = await _register(repo, "bob")
        add_character("AxB", alice)
        add_character("A_B", bob)

        assert await repo.set_unban_time_by_character_name("A_B", 777) == 1
        assert await repo.get_unban_time(bob) == 777
        assert await repo.get_unban_time(alice) == 0

    async def test_name_match_ignores_case(self, repo: AccountRepository, add_character):
        user_id = await _register(repo)
        add_character("Sam_Wise", user_id)
        assert await repo.set_mute_time_by_character_name("sam_wise", 5) == 1


class TestLikeLiteral:
    def test_wildcards_and_escape_are_escaped(self):
        assert like_literal("a_b%c!d") == "a!_b!%c!!d"

    def test_plain_names_unchanged(self):
        assert like_literal("Aragorn") == "Aragorn"


class TestStatistics:
    async def test_first_upsert_inserts_then_updates(self, repo: AccountRepository, migrated: StatementExecutor):
        assert await repo.upsert_user_count_statistic(10) == 1
        assert await repo.upsert_user_count_statistic(25) == 1
        assert migrated.scalar("SELECT COUNT(*) FROM statistic").value == 1
        assert await repo.get_user_count_statistic() == 25

    async def test_read_before_any_upsert_is_zero(self, repo: AccountRepository):
        assert await repo.get_user_count_statistic() == 0

    async def test_concurrent_first_upserts_keep_one_row(self, repo: AccountRepository, migrated: StatementExecutor):
        results = await asyncio.gather(*(repo.upsert_user_count_statistic(n) for n in (3, 4, 5)))
        assert results == [1, 1, 1]
        assert migrated.scalar("SELECT COUNT(*) FROM statistic").value == 1
        assert await repo.get_user_count_statistic() in (3, 4, 5)

    async def test_row_is_keyed(self, repo: AccountRepository, migrated: StatementExecutor):
        await repo.upsert_user_count_statistic(10)
        duplicate = migrated.insert(
            "INSERT INTO statistic (id, userCount) VALUES (:id, 1)", {"id": STATISTIC_ROW_ID}
        )
        assert duplicate.kind is ErrorKind.CONSTRAINT


class TestDegradedDatabase:
    @pytest.fixture
    def offline_repo(self, broken_factory, fast_hasher) -> AccountRepository:
        return AccountRepository(AsyncStatementExecutor(broken_factory), hasher=fast_hasher)

    async def test_failures_read_as_empty_results(self, offline_repo: AccountRepository):
        with capture_logs() as logs:
            assert await offline_repo.validate_login("alice", "SecureP@ss1") == ""
            assert await offline_repo.get_gold("any") == 0
            assert await offline_repo.count_username_matches("alice") == 0
            assert await offline_repo.set_unban_time_by_character_name("x", 1) == 0
            assert await offline_repo.upsert_user_count_statistic(3) == 0
        assert all(e["log_level"] == "critical" for e in logs if e["event"] == "connection_failed")
        assert len([e for e in logs if e["event"] == "connection_failed"]) == 5

    async def test_failed_registration_is_distinguishable(self, offline_repo: AccountRepository):
        outcome = await offline_repo.register("alice", "SecureP@ss1", "alice@example.com")
        assert not outcome.ok
        assert outcome.kind is ErrorKind.CONNECTION
