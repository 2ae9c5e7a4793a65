"""Integer sort-order assignment for sibling documents."""

from typing import TYPE_CHECKING, Any, Optional

from compendia.domain.services.data_utils import get_path

if TYPE_CHECKING:
    from compendia.domain.entities.document import Document

SORT_INTEGER_DENSITY = 100000


def _sort_value(document: "Document", sort_key: str) -> int:
    return int(get_path(document._source, sort_key, 0) or 0)


def perform_integer_sort(
    source: "Document",
    target: Optional["Document"] = None,
    siblings: Optional[list["Document"]] = None,
    sort_key: str = "sort",
    sort_before: bool = True,
) -> list[tuple["Document", dict[str, Any]]]:
    """Compute the sort updates that place ``source`` relative to ``target``.

    Prefers a single update for ``source`` between its new neighbours. When
    no integer gap remains, every sibling is re-spaced at
    ``SORT_INTEGER_DENSITY`` intervals.

    Returns:
        (document, update) pairs, where each update is ``{sort_key: value}``.
    """
    ordered = sorted(
        (s for s in siblings or [] if s is not source),
        key=lambda s: _sort_value(s, sort_key),
    )
    if not ordered:
        return [(source, {sort_key: SORT_INTEGER_DENSITY})]

    if target is not None and target in ordered:
        idx = ordered.index(target)
    else:
        idx = len(ordered) if sort_before else 0

    if sort_before:
        upper = ordered[idx] if idx < len(ordered) else None
        lower = ordered[idx - 1] if idx > 0 else None
    else:
        lower = ordered[idx] if idx < len(ordered) else None
        upper = ordered[idx + 1] if idx + 1 < len(ordered) else None
        idx += 1

    low = _sort_value(lower, sort_key) if lower is not None else None
    high = _sort_value(upper, sort_key) if upper is not None else None

    if low is None and high is not None:
        return [(source, {sort_key: high - SORT_INTEGER_DENSITY})]
    if high is None and low is not None:
        return [(source, {sort_key: low + SORT_INTEGER_DENSITY})]
    if low is not None and high is not None and abs(high - low) > 1:
        return [(source, {sort_key: round(0.5 * (low + high))})]

    ordered.insert(idx, source)
    return [
        (sibling, {sort_key: (i + 1) * SORT_INTEGER_DENSITY})
        for i, sibling in enumerate(ordered)
    ]
