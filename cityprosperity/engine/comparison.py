# -*- coding: utf-8 -*-
"""
Comparison Selector

Picks the records a user wants to see side by side. Cities are requested
as ``City:Country`` pairs; only the caller's own records with a complete
location are returned, most recently updated first.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, NamedTuple, Sequence, Union

from cityprosperity.engine.records import CalculationRecord
from cityprosperity.exceptions import EmptySelectionError, InvalidInputError

logger = logging.getLogger(__name__)

#: Separator between city and country in a requested pair.
PAIR_SEPARATOR = ":"


class CityPair(NamedTuple):
    city: str
    country: str

    def __str__(self) -> str:
        return f"{self.city}{PAIR_SEPARATOR}{self.country}"


def parse_city_pairs(entries: Union[str, Sequence[str]]) -> List[CityPair]:
    """
    Parse requested cities.

    Accepts either a comma-separated string (``"Cairo:Egypt,Lagos:Nigeria"``)
    or a sequence of ``City:Country`` strings. Duplicates are dropped,
    first occurrence wins.

    Raises:
        EmptySelectionError: No cities given
        InvalidInputError: An entry is not of the form ``City:Country``
    """
    if isinstance(entries, str):
        entries = [part for part in entries.split(",") if part.strip()]

    pairs: List[CityPair] = []
    malformed: List[str] = []
    for entry in entries:
        city, sep, country = entry.partition(PAIR_SEPARATOR)
        pair = CityPair(city.strip(), country.strip())
        if not sep or not pair.city or not pair.country:
            malformed.append(entry)
        elif pair not in pairs:
            pairs.append(pair)

    if malformed:
        raise InvalidInputError(
            "Cities must be given as City:Country",
            invalid_fields={entry: "expected City:Country" for entry in malformed},
        )
    if not pairs:
        raise EmptySelectionError()
    return pairs


def select_for_comparison(
    records: Iterable[CalculationRecord],
    owner_scope: str,
    city_country_pairs: Sequence[Union[CityPair, Sequence[str]]],
) -> List[CalculationRecord]:
    """
    Select the owner's records matching any requested location.

    Args:
        records: Candidate records (typically everything the store holds
            for the owner)
        owner_scope: Only records of this user are considered
        city_country_pairs: Requested ``(city, country)`` pairs, matched
            exactly

    Returns:
        Matching records ordered by ``updated_at`` descending, ties broken
        by ``created_at`` descending

    Raises:
        EmptySelectionError: If no pairs were requested
    """
    if not city_country_pairs:
        raise EmptySelectionError()

    wanted = {(city, country) for city, country in city_country_pairs}
    selected = [
        record
        for record in records
        if record.user_id == owner_scope
        and record.city
        and record.country
        and (record.city, record.country) in wanted
    ]
    selected.sort(key=lambda r: (r.updated_at, r.created_at), reverse=True)
    logger.debug(
        "Comparison selected %d of %d requested location(s)",
        len(selected),
        len(wanted),
    )
    return selected


__all__ = [
    "PAIR_SEPARATOR",
    "CityPair",
    "parse_city_pairs",
    "select_for_comparison",
]
