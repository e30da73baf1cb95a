"""Inline expansion (``?inline=model,versions`` / ``?inline=*``).

Each inline target names a sub-document that a response normally only
references through a ``*url`` attribute. Resolution attaches the
sub-document under the target's name. Targets are never expanded
transitively; a target that fails to load is skipped with a warning.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, Union

logger = logging.getLogger(__name__)

InlineLoader = Callable[[], Union[Any, Awaitable[Any]]]


def parse_inline(values: Union[str, Iterable[str], None]) -> list[str]:
    """Split one or more ``inline`` values into de-duplicated targets."""
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    targets: list[str] = []
    for value in values:
        for target in value.split(","):
            target = target.strip()
            if target and target not in targets:
                targets.append(target)
    return targets


async def resolve_inline(
    document: dict[str, Any],
    requested: list[str],
    loaders: dict[str, InlineLoader],
) -> tuple[dict[str, Any], list[str]]:
    """Attach the requested sub-documents to a copy of ``document``.

    Returns the expanded document and the warnings to report to the
    client. ``*`` requests every target in ``loaders``.
    """
    if not requested:
        return document, []

    targets = list(loaders) if "*" in requested else requested
    result = dict(document)
    warnings: list[str] = []

    for target in targets:
        loader = loaders.get(target)
        if loader is None:
            warnings.append(f"Inline target '{target}' is not available for this entity")
            continue
        try:
            value = loader()
            if inspect.isawaitable(value):
                value = await value
        except Exception as exc:
            logger.warning("Inline target %s failed: %s", target, exc, exc_info=True)
            warnings.append(f"Inline target '{target}' could not be loaded")
            continue
        result[target] = value

    return result, warnings
