"""Table definitions for the account store.

Only used to create tables portably across MySQL and SQLite; every query
the store issues is plain parameterized SQL against these names.
"""

import sqlalchemy as sa

metadata = sa.MetaData()

migrations = sa.Table(
    "__migrations",
    metadata,
    sa.Column("migrationId", sa.String(50), primary_key=True),
)

userlogin = sa.Table(
    "userlogin",
    metadata,
    sa.Column("id", sa.String(50), primary_key=True),
    sa.Column("username", sa.String(32), nullable=False),
    sa.Column("password", sa.String(256), nullable=False),  # argon2id hash, never plaintext
    sa.Column("email", sa.String(320), nullable=True),
    sa.Column("authType", sa.SmallInteger(), nullable=False, server_default="0"),
    sa.Column("userLevel", sa.SmallInteger(), nullable=False, server_default="0"),
    sa.Column("gold", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("cash", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("accessToken", sa.String(64), nullable=False, server_default=""),
    sa.Column("isEmailVerified", sa.Boolean(), nullable=False, server_default=sa.text("0")),
    sa.Column("unbanTime", sa.BigInteger(), nullable=False, server_default="0"),
    sa.UniqueConstraint("username", name="uq_userlogin_username"),
    sa.UniqueConstraint("email", name="uq_userlogin_email"),
)

characters = sa.Table(
    "characters",
    metadata,
    sa.Column("id", sa.String(50), primary_key=True),
    sa.Column("userId", sa.String(50), nullable=False, index=True),
    sa.Column("characterName", sa.String(32), nullable=False),
    sa.Column("unmuteTime", sa.BigInteger(), nullable=False, server_default="0"),
    sa.UniqueConstraint("characterName", name="uq_characters_character_name"),
)

# Single row under a fixed key, upserted
statistic = sa.Table(
    "statistic",
    metadata,
    sa.Column("id", sa.SmallInteger(), primary_key=True, autoincrement=False),
    sa.Column("userCount", sa.Integer(), nullable=False, server_default="0"),
)
