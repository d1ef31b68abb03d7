"""
Synthetic passport population for simulations and tests.

Birth dates and nationalities are drawn from a seeded numpy generator, so a
given seed always yields the same population.
"""

from datetime import date, timedelta
from typing import Dict, Iterator, List, Optional

import numpy as np
import structlog

from .data_models import PassportRecord

# Initialize structured logger
logger = structlog.get_logger(__name__)

# Nationality mix covering every continent plus an unmapped code
DEFAULT_NATIONALITY_WEIGHTS: Dict[str, float] = {
    "BRA": 0.12,
    "ARG": 0.05,
    "USA": 0.12,
    "MEX": 0.06,
    "CAN": 0.04,
    "DEU": 0.08,
    "FRA": 0.06,
    "ESP": 0.05,
    "CHN": 0.12,
    "IND": 0.12,
    "JPN": 0.04,
    "NGA": 0.06,
    "KEN": 0.03,
    "AUS": 0.03,
    "XXA": 0.02,
}


class SyntheticPopulation:
    """
    Deterministic generator of passport records.

    Parameters
    ----------
    size : int
        Number of records.
    reference_date : date
        Date ages are measured at.
    seed : int, optional
        Seed of the numpy generator.
    nationality_weights : Dict[str, float], optional
        Relative weight per nationality code. Normalized internally.
    min_age : int, default=0
        Youngest age generated.
    max_age : int, default=90
        Oldest age generated.

    Examples
    --------
    >>> population = SyntheticPopulation(100, date(2024, 6, 1), seed=7, min_age=18)
    >>> len(population.generate())
    100
    """

    def __init__(
        self,
        size: int,
        reference_date: date,
        seed: Optional[int] = None,
        nationality_weights: Optional[Dict[str, float]] = None,
        min_age: int = 0,
        max_age: int = 90,
    ) -> None:
        if size < 0:
            raise ValueError("size cannot be negative")
        if not 0 <= min_age <= max_age:
            raise ValueError("min_age must be between 0 and max_age")

        weights = nationality_weights or DEFAULT_NATIONALITY_WEIGHTS
        if not weights or any(weight < 0 for weight in weights.values()):
            raise ValueError("nationality weights must be non-negative")

        self.size = size
        self.reference_date = reference_date
        self.seed = seed
        self.min_age = min_age
        self.max_age = max_age

        self._codes = list(weights.keys())
        probabilities = np.asarray(list(weights.values()), dtype=np.float64)
        total = probabilities.sum()
        if total <= 0:
            raise ValueError("nationality weights must not all be zero")
        self._probabilities = probabilities / total

    def __len__(self) -> int:
        return self.size

    def __iter__(self) -> Iterator[PassportRecord]:
        rng = np.random.default_rng(self.seed)

        # Day bounds guaranteeing min_age <= age <= max_age for any calendar
        min_days = self.min_age * 366
        max_days = (self.max_age + 1) * 365 - 1

        ages_in_days = rng.integers(min_days, max_days, size=self.size, endpoint=True)
        nationalities = rng.choice(self._codes, size=self.size, p=self._probabilities)
        validity_days = rng.integers(30, 3650, size=self.size)
        document_numbers = rng.integers(10**8, 10**9, size=self.size)
        sexes = rng.choice(["M", "F", "<"], size=self.size, p=[0.49, 0.49, 0.02])

        for index in range(self.size):
            nationality = str(nationalities[index])
            yield PassportRecord(
                document_number=f"P{int(document_numbers[index])}",
                document_type="P",
                issuing_country=nationality,
                nationality=nationality,
                date_of_birth=self.reference_date
                - timedelta(days=int(ages_in_days[index])),
                sex=str(sexes[index]),
                expiry_date=self.reference_date
                + timedelta(days=int(validity_days[index])),
            )

    def generate(self) -> List[PassportRecord]:
        records = list(self)
        logger.debug(
            "Synthetic population generated",
            size=len(records),
            seed=self.seed,
            nationalities=len(self._codes),
        )
        return records
