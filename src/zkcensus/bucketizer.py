"""
Attribute bucketing for the zkcensus system.

This module maps raw passport attributes onto the coarse categories that are
published in census statistics: an age range computed from the date of birth
and a continent looked up from the nationality code. Every function here is
pure and deterministic.
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional

import structlog

from .constants import (
    CONTINENT_COUNTRIES,
    MAX_SUPPORTED_AGE,
    MIN_SUPPORTED_AGE,
    MRZ_FILLER,
    MRZ_NATIONALITY_ALIASES,
)
from .data_models import AgeRange, Continent
from .exceptions import ClassificationError, ClassificationFailure

# Initialize structured logger
logger = structlog.get_logger(__name__)


def _build_country_index() -> Dict[str, Continent]:
    index: Dict[str, Continent] = {}
    for continent_name, codes in CONTINENT_COUNTRIES.items():
        continent = Continent[continent_name]
        for code in codes:
            if code in index:
                raise ValueError(
                    f"Country {code} mapped to both {index[code].name} and {continent.name}"
                )
            index[code] = continent
    return index


COUNTRY_INDEX: Dict[str, Continent] = _build_country_index()


@dataclass(frozen=True)
class Classification:
    """Bucket assignment for one identity."""

    age_range: AgeRange
    continent: Continent


def normalize_country_code(country_code: str) -> str:
    """
    Normalize an MRZ nationality field to an ISO-3166 alpha-3 code.

    Filler characters are stripped, the code is upper-cased and MRZ-only
    aliases such as ``"D"`` are resolved.
    """
    code = (country_code or "").replace(MRZ_FILLER, "").strip().upper()
    return MRZ_NATIONALITY_ALIASES.get(code, code)


def compute_age(date_of_birth: date, reference_date: date) -> int:
    """
    Compute whole years elapsed from ``date_of_birth`` to ``reference_date``.

    A birthday not yet reached in the reference year does not count. People
    born on 29 February turn a year older on 1 March in non-leap years.

    Parameters
    ----------
    date_of_birth : date
        Holder's date of birth.
    reference_date : date
        Date the age is evaluated at.

    Returns
    -------
    int
        Age in whole years.

    Raises
    ------
    ClassificationError
        If the birth date lies after the reference date.

    Examples
    --------
    >>> compute_age(date(2001, 9, 9), date(2024, 9, 8))
    22
    >>> compute_age(date(2001, 9, 9), date(2024, 9, 9))
    23
    """
    if date_of_birth > reference_date:
        raise ClassificationError(
            "Date of birth lies after the reference date",
            reason=ClassificationFailure.BIRTH_DATE_IN_FUTURE,
            attribute="date_of_birth",
        )

    birthday_pending = (reference_date.month, reference_date.day) < (
        date_of_birth.month,
        date_of_birth.day,
    )
    return reference_date.year - date_of_birth.year - int(birthday_pending)


def classify_age(age: int, min_age: Optional[int] = None) -> AgeRange:
    """
    Look up the age range for ``age``.

    Raises
    ------
    ClassificationError
        ``AGE_OUT_OF_RANGE`` outside 0..130, ``BELOW_MINIMUM_AGE`` when
        ``age`` is below ``min_age``.
    """
    if age < MIN_SUPPORTED_AGE or age > MAX_SUPPORTED_AGE:
        raise ClassificationError(
            f"Age {age} is outside the supported range "
            f"{MIN_SUPPORTED_AGE}-{MAX_SUPPORTED_AGE}",
            reason=ClassificationFailure.AGE_OUT_OF_RANGE,
            attribute="date_of_birth",
        )

    if min_age is not None and age < min_age:
        raise ClassificationError(
            f"Holder is below the census minimum age of {min_age}",
            reason=ClassificationFailure.BELOW_MINIMUM_AGE,
            attribute="date_of_birth",
        )

    return AgeRange.for_age(age)


def classify_continent(country_code: str) -> Continent:
    """
    Look up the continent of a nationality code.

    Codes that are not in the table resolve to ``Continent.UNKNOWN``; they
    are never dropped.

    Examples
    --------
    >>> classify_continent("BRA")
    <Continent.SOUTH_AMERICA: 4>
    >>> classify_continent("XXA")
    <Continent.UNKNOWN: 6>
    """
    return COUNTRY_INDEX.get(normalize_country_code(country_code), Continent.UNKNOWN)


class Bucketizer:
    """
    Classifier turning raw attributes into an ``(AgeRange, Continent)`` pair.

    Whether an unknown continent is acceptable is a per-census decision passed
    in by the caller.

    Examples
    --------
    >>> bucketizer = Bucketizer()
    >>> result = bucketizer.classify(date(2001, 1, 1), date(2024, 6, 1), "BRA", min_age=18)
    >>> result.age_range.label, result.continent.label
    ('18-24', 'SouthAmerica')
    """

    def classify(
        self,
        date_of_birth: date,
        reference_date: date,
        nationality: str,
        min_age: Optional[int] = None,
        allow_unknown_continent: bool = True,
    ) -> Classification:
        age = compute_age(date_of_birth, reference_date)
        age_range = classify_age(age, min_age)
        continent = classify_continent(nationality)

        if continent is Continent.UNKNOWN and not allow_unknown_continent:
            raise ClassificationError(
                "Nationality does not map to a known continent",
                reason=ClassificationFailure.UNKNOWN_CONTINENT_REJECTED,
                attribute="nationality",
            )

        logger.debug(
            "Attributes classified",
            age_range=age_range.label,
            continent=continent.label,
        )

        return Classification(age_range=age_range, continent=continent)
