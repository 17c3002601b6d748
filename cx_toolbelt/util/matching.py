"""Resolve full or partial names typed on the command line."""

from __future__ import annotations

from typing import Callable, List, Sequence

from ..errors import AmbiguousNameError, NameNotFoundError


def fuzzy_find(items: Sequence[str], search: str, case_sensitive: bool = False) -> int:
    """Resolve a full or partial name to its index in ``items``.

    Matching precedence is exact, then prefix, then substring. The first tier
    that produces any match decides: a single match wins, several matches are
    ambiguous.

    Raises:
        NameNotFoundError: Nothing matched (or ``search`` is empty).
        AmbiguousNameError: More than one item matched at the deciding tier.
    """
    if not search or not items:
        raise NameNotFoundError(search)

    norm: Callable[[str], str] = (lambda s: s) if case_sensitive else (lambda s: s.lower())
    needle = norm(search)
    haystack = [norm(item) for item in items]

    tiers: List[Callable[[str], bool]] = [
        lambda item: item == needle,
        lambda item: item.startswith(needle),
        lambda item: needle in item,
    ]
    for matches in tiers:
        found = [idx for idx, item in enumerate(haystack) if matches(item)]
        if len(found) == 1:
            return found[0]
        if found:
            raise AmbiguousNameError(search, [items[idx] for idx in found])

    raise NameNotFoundError(search)
