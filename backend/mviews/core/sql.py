"""SQL safety helpers for statements that cannot use bind parameters.

DDL (CREATE MATERIALIZED VIEW, CREATE INDEX, ALTER ... RENAME) takes no
parameters, so every identifier spliced into it passes the allowlist below
and every literal is rendered by SQLGlot with proper escaping.
"""

import hashlib
import re

from sqlglot import exp

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
TENANT_CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

# PostgreSQL truncates identifiers longer than NAMEDATALEN - 1 bytes
MAX_IDENTIFIER_LENGTH = 63


class InvalidIdentifierError(ValueError):
    """Raised when a value is not safe to splice into SQL as an identifier."""

    def __init__(self, value: object, kind: str = "identifier"):
        self.value = value
        self.kind = kind
        super().__init__(f"Invalid {kind}: {value!r}")


def validate_identifier(name: str, kind: str = "identifier") -> str:
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
        raise InvalidIdentifierError(name, kind)
    return name


def validate_tenant_code(tenant_code: str) -> str:
    if not isinstance(tenant_code, str) or not TENANT_CODE_PATTERN.match(tenant_code):
        raise InvalidIdentifierError(tenant_code, "tenant code")
    return tenant_code


def quote_literal(value: str) -> str:
    """Render a string as an escaped PostgreSQL literal."""
    return exp.Literal.string(value).sql(dialect="postgres")


def index_name(*parts: str) -> str:
    """Join parts into an index name that fits PostgreSQL's identifier limit.

    Over-long names keep a readable prefix plus a hash of the full name, so two
    names sharing a long prefix do not collapse into one after truncation.
    """
    name = validate_identifier("_".join(parts), "index name")
    if len(name) <= MAX_IDENTIFIER_LENGTH:
        return name
    digest = hashlib.md5(name.encode()).hexdigest()[:8]
    return f"{name[: MAX_IDENTIFIER_LENGTH - 9]}_{digest}"
