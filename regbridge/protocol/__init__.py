"""Registry protocol machinery shared by every adapter.

Identifiers and entities, query options, filtering, sorting, inline
expansion, pagination and response headers.
"""

SPEC_VERSION = "1.0-rc2"
SCHEMA_VERSION = f"xRegistry-json/{SPEC_VERSION}"
SUPPORTED_SPEC_VERSIONS = ("1.0-rc1", "1.0-rc2")
