"""Validation and quoting of database, schema and object identifiers."""

import re

MAX_IDENTIFIER_LENGTH = 63

_DATABASE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_]\w*$")
_FORBIDDEN_DATABASE_FRAGMENTS = ("--", ";", "'", '"', "`")


def validate_database_name(name: str) -> str:
    """Validate a database name and return it unchanged."""
    if not isinstance(name, str) or not name:
        raise ValueError("Database name is required")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"Database name exceeds maximum length of {MAX_IDENTIFIER_LENGTH} characters"
        )
    if any(fragment in name for fragment in _FORBIDDEN_DATABASE_FRAGMENTS):
        raise ValueError(f"Invalid database name: '{name}' contains forbidden characters")
    if not _DATABASE_NAME_RE.match(name):
        raise ValueError(
            f"Invalid database name: '{name}'. Must start with a letter or underscore "
            "and contain only letters, digits, underscores or hyphens."
        )
    return name


def validate_identifier(name: str, kind: str = "identifier") -> str:
    """Validate a schema, table or column name and return it unchanged."""
    if not isinstance(name, str) or not name:
        raise ValueError(f"{kind.capitalize()} name is required")
    if len(name) > MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"{kind.capitalize()} name exceeds maximum length of {MAX_IDENTIFIER_LENGTH} characters"
        )
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(
            f"Invalid {kind} name: '{name}'. Must start with a letter or underscore "
            "and contain only letters, digits or underscores."
        )
    return name


def validate_schema_name(name: str) -> str:
    return validate_identifier(name, "schema")


def quote_identifier(name: str) -> str:
    """Quote an identifier for safe interpolation into SQL."""
    return '"' + name.replace('"', '""') + '"'
