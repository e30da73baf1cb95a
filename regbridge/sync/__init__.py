"""Catalog synchronization and dependency resolution.

This package keeps a local index of upstream package names current and
links declared dependencies to registry entities:
- Catalog: cursor-based, incremental walk of the upstream catalog
- Versions: version comparison and range classification
- Resolver: best-effort linking of declared dependencies
"""
