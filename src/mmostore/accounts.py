"""
Account and authentication persistence.

Every operation is one or more statement executor calls; the repository
keeps no state between calls. Database failures are already logged by the
executor and read here as "no row" / "nothing changed", so lookups fall back
to their zero value and mutations report 0 affected rows.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

from mmostore.errors import DatabaseError, ErrorKind
from mmostore.executor import Outcome
from mmostore.security import hash_password, needs_rehash, new_user_id, verify_password

if TYPE_CHECKING:
    import argon2
    from sqlalchemy import Row

    from mmostore.executor import AsyncStatementExecutor, Params

logger = structlog.get_logger()

# Only login/registration path this store knows; other auth types are
# written by systems outside it.
AUTH_TYPE_NORMAL = 1

# Key of the only row in the statistic table
STATISTIC_ROW_ID = 1

_LIKE_ESCAPE = "!"


def like_literal(value: str) -> str:
    """Escape a value so LIKE matches it literally, keeping only the collation's case folding."""
    for char in (_LIKE_ESCAPE, "%", "_"):
        value = value.replace(char, _LIKE_ESCAPE + char)
    return value


class AccountRepository:
    """Suspending account repository over an ``AsyncStatementExecutor``."""

    def __init__(
        self,
        executor: AsyncStatementExecutor,
        *,
        hasher: argon2.PasswordHasher | None = None,
        id_factory: Callable[[], str] = new_user_id,
    ) -> None:
        self._executor = executor
        self._hasher = hasher
        self._id_factory = id_factory

    async def _first_row(self, sql: str, params: Params) -> Row[Any] | None:
        rows: list[Row[Any]] = []
        await self._executor.reader(sql, rows.append, params)
        return rows[0] if rows else None

    async def _first_int(self, sql: str, params: Params) -> int:
        row = await self._first_row(sql, params)
        if row is None or row[0] is None:
            return 0
        return int(row[0])

    async def _count(self, sql: str, params: Params) -> int:
        outcome = await self._executor.scalar(sql, params)
        return int(outcome.value_or(0))

    # ---------------------------------------------------------------------------
    # Authentication
    # ---------------------------------------------------------------------------

    async def validate_login(self, username: str, password: str) -> str:
        """
        Return the account id when the credentials match, else an empty string.

        A matching password stored under outdated hash parameters is rehashed
        in place; a failed rehash does not fail the login.
        """
        row = await self._first_row(
            "SELECT id, password FROM userlogin WHERE username=:username AND authType=:authType LIMIT 1",
            {"username": username, "authType": AUTH_TYPE_NORMAL},
        )
        if row is None:
            return ""
        user_id, password_hash = row[0], row[1]
        if not verify_password(password, password_hash or "", self._hasher):
            return ""
        if needs_rehash(password_hash, self._hasher):
            await self._rehash(str(user_id), password)
        return str(user_id)

    async def _rehash(self, user_id: str, password: str) -> None:
        outcome = await self._executor.non_query(
            "UPDATE userlogin SET password=:password WHERE id=:id",
            {"id": user_id, "password": hash_password(password, self._hasher)},
        )
        if outcome.ok:
            logger.info("password_rehashed", user_id=user_id)

    async def validate_access_token(self, user_id: str, access_token: str) -> bool:
        count = await self._count(
            "SELECT COUNT(*) FROM userlogin WHERE id=:id AND accessToken=:accessToken",
            {"id": user_id, "accessToken": access_token},
        )
        return count > 0

    async def validate_email_verification(self, user_id: str) -> bool:
        count = await self._count(
            "SELECT COUNT(*) FROM userlogin WHERE id=:id AND isEmailVerified=1",
            {"id": user_id},
        )
        return count > 0

    async def update_access_token(self, user_id: str, access_token: str) -> int:
        outcome = await self._executor.non_query(
            "UPDATE userlogin SET accessToken=:accessToken WHERE id=:id",
            {"id": user_id, "accessToken": access_token},
        )
        return outcome.value

    # ---------------------------------------------------------------------------
    # Per-account values
    # ---------------------------------------------------------------------------

    async def get_user_level(self, user_id: str) -> int:
        return await self._first_int("SELECT userLevel FROM userlogin WHERE id=:id LIMIT 1", {"id": user_id})

    async def get_gold(self, user_id: str) -> int:
        return await self._first_int("SELECT gold FROM userlogin WHERE id=:id LIMIT 1", {"id": user_id})

    async def update_gold(self, user_id: str, gold: int) -> int:
        outcome = await self._executor.non_query(
            "UPDATE userlogin SET gold=:gold WHERE id=:id",
            {"id": user_id, "gold": gold},
        )
        return outcome.value

    async def get_cash(self, user_id: str) -> int:
        return await self._first_int("SELECT cash FROM userlogin WHERE id=:id LIMIT 1", {"id": user_id})

    async def update_cash(self, user_id: str, cash: int) -> int:
        outcome = await self._executor.non_query(
            "UPDATE userlogin SET cash=:cash WHERE id=:id",
            {"id": user_id, "cash": cash},
        )
        return outcome.value

    async def get_unban_time(self, user_id: str) -> int:
        return await self._first_int("SELECT unbanTime FROM userlogin WHERE id=:id LIMIT 1", {"id": user_id})

    # ---------------------------------------------------------------------------
    # Registration
    # ---------------------------------------------------------------------------

    async def register(self, username: str, password: str, email: str) -> Outcome[str]:
        """
        Create a login with a freshly generated id and a hashed password.

        Returns:
            Outcome whose value is the new account id. A username or email
            already taken yields an error of kind ``ErrorKind.CONSTRAINT`` and
            an empty id.
        """
        user_id = self._id_factory()
        outcome = await self._executor.non_query(
            "INSERT INTO userlogin (id, username, password, email, authType) "
            "VALUES (:id, :username, :password, :email, :authType)",
            {
                "id": user_id,
                "username": username,
                "password": hash_password(password, self._hasher),
                "email": email or None,
                "authType": AUTH_TYPE_NORMAL,
            },
        )
        if outcome.error is not None:
            return Outcome("", outcome.error)

        logger.info("user_registered", user_id=user_id, username=username)
        return Outcome(user_id)

    async def count_username_matches(self, username: str) -> int:
        """Accounts whose username matches the LIKE pattern."""
        return await self._count(
            "SELECT COUNT(*) FROM userlogin WHERE username LIKE :username",
            {"username": username},
        )

    async def count_email_matches(self, email: str) -> int:
        """Accounts whose email matches the LIKE pattern."""
        return await self._count(
            "SELECT COUNT(*) FROM userlogin WHERE email LIKE :email",
            {"email": email},
        )

    # ---------------------------------------------------------------------------
    # Moderation
    # ---------------------------------------------------------------------------

    async def set_unban_time_by_character_name(self, character_name: str, unban_time: int) -> int:
        """
        Set the ban expiry on the account owning a character.

        The owner lookup and the update share one transaction. Returns the
        number of accounts updated; 0 when no character matches.
        """
        try:
            async with self._executor.transaction() as connection:
                owners: list[Row[Any]] = []
                await self._executor.reader(
                    "SELECT userId FROM characters "
                    f"WHERE characterName LIKE :characterName ESCAPE '{_LIKE_ESCAPE}' LIMIT 1",
                    owners.append,
                    {"characterName": like_literal(character_name)},
                    connection=connection,
                )
                if not owners or not owners[0][0]:
                    return 0
                outcome = await self._executor.non_query(
                    "UPDATE userlogin SET unbanTime=:unbanTime WHERE id=:id",
                    {"id": owners[0][0], "unbanTime": unban_time},
                    connection=connection,
                )
                return outcome.value
        except DatabaseError:
            # logged by the executor
            return 0

    async def set_mute_time_by_character_name(self, character_name: str, unmute_time: int) -> int:
        outcome = await self._executor.non_query(
            "UPDATE characters SET unmuteTime=:unmuteTime "
            f"WHERE characterName LIKE :characterName ESCAPE '{_LIKE_ESCAPE}'",
            {"characterName": like_literal(character_name), "unmuteTime": unmute_time},
        )
        return outcome.value

    # ---------------------------------------------------------------------------
    # Statistics
    # ---------------------------------------------------------------------------

    async def upsert_user_count_statistic(self, user_count: int) -> int:
        """
        Write the user count into the single statistic row, creating it if needed.

        The row is keyed by ``STATISTIC_ROW_ID``, so two first writers racing
        past the existence check cannot both insert; the loser's insert is
        rejected by the key and it updates the winner's row instead.
        """
        params = {"id": STATISTIC_ROW_ID, "userCount": user_count}
        try:
            async with self._executor.transaction() as connection:
                existing = await self._executor.scalar(
                    "SELECT COUNT(*) FROM statistic WHERE id=:id", params, connection=connection
                )
                if int(existing.value_or(0)) == 0:
                    inserted = await self._executor.non_query(
                        "INSERT INTO statistic (id, userCount) VALUES (:id, :userCount)",
                        params,
                        connection=connection,
                    )
                    if inserted.kind is not ErrorKind.CONSTRAINT:
                        return inserted.value
                outcome = await self._executor.non_query(
                    "UPDATE statistic SET userCount=:userCount WHERE id=:id", params, connection=connection
                )
                return outcome.value
        except DatabaseError:
            # logged by the executor
            return 0

    async def get_user_count_statistic(self) -> int:
        return await self._first_int("SELECT userCount FROM statistic WHERE id=:id", {"id": STATISTIC_ROW_ID})
