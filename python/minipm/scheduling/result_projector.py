"""Map a scheduled order of titles onto the caller's task identifiers."""

import logging
from typing import Callable, Dict, Iterable, List, Tuple, TypeVar

from minipm.exceptions_unified import ProjectionError
from minipm.scheduling.models import normalize_title

logger = logging.getLogger(__name__)

R = TypeVar("R")
I = TypeVar("I")


def project_order(
    order: Iterable[str],
    records: Iterable[R],
    title_of: Callable[[R], str],
    id_of: Callable[[R], I],
    strict: bool = True,
) -> List[Tuple[int, I]]:
    """Return ``(position, identifier)`` for each scheduled title.

    Titles are matched with the same normalisation the scheduler uses.
    With ``strict`` a title lacking a record raises ProjectionError;
    otherwise it is skipped and its position left unused.

    Two records sharing a title make the mapping ambiguous: strict mode
    raises ProjectionError, non-strict mode keeps the first record.
    """
    by_title: Dict[str, R] = {}
    for record in records:
        key = normalize_title(title_of(record))
        if key in by_title:
            if strict:
                logger.error("Duplicate stored record for task %r", title_of(record))
                raise ProjectionError(title_of(record), reason="matches more than one record")
            logger.warning("Ignoring duplicate stored record for task %r", title_of(record))
            continue
        by_title[key] = record

    projected: List[Tuple[int, I]] = []
    for position, title in enumerate(order):
        record = by_title.get(normalize_title(title))
        if record is None:
            if strict:
                logger.error("No record for scheduled task %r", title)
                raise ProjectionError(title)
            logger.debug("Skipping %r: no stored record", title)
            continue
        projected.append((position, id_of(record)))
    return projected
