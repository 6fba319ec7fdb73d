"""Read-only access grants for reporting consumers.

Only PostgreSQL has roles; on other engines applying grants is a logged
no-op.
"""

from sqlalchemy import text
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import Engine

from . import audit
from .config import RoleConfig

_preparer = postgresql.dialect().identifier_preparer


def _quote(name: str) -> str:
    return _preparer.quote(name)


def _literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def read_grant_statements(
    role: str,
    database: str = "analytics_db",
    schema: str = "public",
    login: bool = False,
    password: str = "",
    create: bool = True,
) -> list[str]:
    """Statements establishing a read-only role.

    Args:
        role: Role name; mixed-case names are quoted.
        database: Database the role may connect to.
        schema: Schema whose tables and views become readable.
        login: Whether the role can log in directly.
        password: Login password (ignored for NOLOGIN roles).
        create: Include the CREATE ROLE statement.
    """
    quoted = _quote(role)
    statements = []
    if create:
        if login:
            clause = "LOGIN"
            if password:
                clause += f" PASSWORD {_literal(password)}"
        else:
            clause = "NOLOGIN"
        statements.append(f"CREATE ROLE {quoted} {clause}")

    statements.extend([
        f"GRANT CONNECT ON DATABASE {_quote(database)} TO {quoted}",
        f"GRANT USAGE ON SCHEMA {_quote(schema)} TO {quoted}",
        f"GRANT SELECT ON ALL TABLES IN SCHEMA {_quote(schema)} TO {quoted}",
        f"ALTER DEFAULT PRIVILEGES IN SCHEMA {_quote(schema)} GRANT SELECT ON TABLES TO {quoted}",
    ])
    return statements


def apply_read_grants(
    engine: Engine,
    roles: list[RoleConfig],
    database: str = "analytics_db",
    schema: str = "public",
) -> bool:
    """Create and grant every configured reader role.

    Existing roles are not recreated; their grants are reapplied.

    Returns:
        True if grants were applied, False on engines without roles.
    """
    names = [r.name for r in roles]
    if engine.dialect.name != "postgresql":
        audit.log_roles_granted(names, engine.dialect.name, applied=False)
        return False

    with engine.begin() as conn:
        for role in roles:
            exists = conn.execute(
                text("SELECT 1 FROM pg_roles WHERE rolname = :name"),
                {"name": role.name},
            ).scalar()
            for statement in read_grant_statements(
                role.name,
                database=database,
                schema=schema,
                login=role.login,
                password=role.password,
                create=not exists,
            ):
                conn.exec_driver_sql(statement)

    audit.log_roles_granted(names, engine.dialect.name, applied=True)
    return True
