# src/tilebridge/collection.py

"""
This module is the seam between tiled layers and the dask.bag runtime.

Every layer holds its (key, tile) records in a lazily evaluated, partitioned
dask bag. The helpers here build bags, group and join records by key and
collect results with the configured scheduler.
"""

import logging
import operator
from typing import Any, Iterable, List, Optional, Tuple

import dask.bag as db

from .config import get_config

log = logging.getLogger(__name__)

__all__ = [
    "from_records",
    "group_by_key",
    "inner_join",
    "collect"
]

def from_records(records: Iterable[Tuple[Any, Any]], npartitions: Optional[int] = None) -> db.Bag:
    """
    Distribute in-memory records into a bag.

    Args:
        records: Iterable of (key, value) pairs.
        npartitions: Partition count. Defaults to the configured value,
                     capped at the number of records.
    """
    records = list(records)
    if not records:
        return db.from_sequence(records, partition_size=1)

    npartitions = npartitions or get_config().npartitions
    npartitions = max(1, min(npartitions, len(records)))
    return db.from_sequence(records, npartitions=npartitions)

def _record_key(record: Tuple[Any, Any]) -> Any:
    return record[0]

def _append_value(acc: tuple, record: Tuple[Any, Any]) -> tuple:
    return acc + (record[1],)

def group_by_key(bag: db.Bag) -> db.Bag:
    """
    Group (key, value) records into (key, [values]) records.

    The grouped bag keeps the partition count of the input.
    """
    grouped = bag.foldby(_record_key, _append_value, (), operator.add, ())
    grouped = grouped.map(lambda kv: (kv[0], list(kv[1])))
    return grouped.repartition(npartitions=max(1, bag.npartitions))

def _tag(side: int):
    def tag(record):
        return record[0], (side, record[1])
    return tag

def _matched_pair(group: Tuple[Any, List[Tuple[int, Any]]]) -> Optional[Tuple[Any, Tuple[Any, Any]]]:
    key, tagged = group
    left = [value for side, value in tagged if side == 0]
    right = [value for side, value in tagged if side == 1]
    if not left or not right:
        return None
    return key, (left[0], right[0])

def inner_join(left: db.Bag, right: db.Bag) -> db.Bag:
    """
    Join two keyed bags into (key, (left_value, right_value)) records.

    Keys present on only one side are dropped.
    """
    tagged = db.concat([left.map(_tag(0)), right.map(_tag(1))])
    grouped = group_by_key(tagged)
    return grouped.map(_matched_pair).filter(lambda pair: pair is not None)

def collect(bag: db.Bag) -> List[Any]:
    """Compute a bag with the configured scheduler and return its items."""
    scheduler = get_config().scheduler
    log.debug(f"Collecting bag with {bag.npartitions} partitions (scheduler={scheduler})")
    return list(bag.compute(scheduler=scheduler))
