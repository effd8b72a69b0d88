"""View Name Allocator: canonical and temporary view identifiers.

Pure and stateless: the database catalog is the only record of which names
exist. Temporary names carry an 8-character suffix from a 62-symbol alphabet
(~2e14 combinations), enough to keep in-flight builds apart. Not a security
boundary.
"""

import random
import string
from dataclasses import dataclass

from mviews.core.sql import validate_identifier

SUFFIX_ALPHABET = string.ascii_letters + string.digits
SUFFIX_LENGTH = 8


def canonical_name(tenant_code: str, table_name: str) -> str:
    """The name application queries address for a tenant's view of a table."""
    return validate_identifier(f"{tenant_code}_m_{table_name}", "view name")


def temp_name(base: str) -> str:
    """A throwaway name derived from ``base`` for builds and retired views."""
    suffix = "".join(random.choices(SUFFIX_ALPHABET, k=SUFFIX_LENGTH))
    return validate_identifier(f"{base}_{suffix}", "view name")


def normalize_view_name(name: str) -> str:
    """Catalog comparison form: PostgreSQL folds unquoted identifiers to lower case."""
    return name.casefold().strip()


@dataclass
class MaterializedViewHandle:
    tenant_code: str
    table_name: str
    canonical_name: str
    in_flight_temp_name: str | None = None
