"""
Statistics persistence for the zkcensus system.

This module writes census statistics snapshots to disk: a timestamped JSON
document (optionally gzip-compressed) per snapshot and a CSV of the age and
continent distributions with their share of the total. Only aggregate data
is ever written.
"""

import csv
import gzip
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import structlog

from . import __version__
from .constants import DEFAULT_DISTRIBUTION_FILE, DEFAULT_STATISTICS_FILE
from .data_models import AgeRange, CensusMetadata, CensusStatistics, Continent
from .exceptions import ResultPersistenceError

# Initialize structured logger
logger = structlog.get_logger(__name__)


def distribution_shares(counts: Dict[Any, int]) -> Dict[Any, float]:
    """
    Percentage share of every bucket in ``counts``.

    Buckets of an empty distribution all get a share of 0.

    Examples
    --------
    >>> distribution_shares({"a": 1, "b": 3})
    {'a': 25.0, 'b': 75.0}
    """
    keys = list(counts.keys())
    values = np.asarray([counts[key] for key in keys], dtype=np.float64)
    total = values.sum()
    if total <= 0:
        return {key: 0.0 for key in keys}
    shares = np.round(values / total * 100.0, 2)
    return {key: float(share) for key, share in zip(keys, shares)}


class CensusStatisticsLogger:
    """
    Writes census statistics snapshots.

    Parameters
    ----------
    output_directory : Path
        Directory for output files.
    compress_results : bool, default=False
        Whether JSON snapshots are gzip-compressed.

    Examples
    --------
    >>> stats_logger = CensusStatisticsLogger(Path("./results"))
    >>> paths = stats_logger.log_statistics(aggregator.get_statistics(census_id), census)
    """

    def __init__(self, output_directory: Path, compress_results: bool = False) -> None:
        self.output_directory = Path(output_directory)
        self.compress_results = compress_results

        self.output_directory.mkdir(parents=True, exist_ok=True)

        logger.info(
            "CensusStatisticsLogger initialized",
            output_directory=str(self.output_directory),
            compress_results=compress_results,
        )

    def _generate_filename(
        self, base_name: str, extension: str = ".json", include_timestamp: bool = True
    ) -> str:
        if include_timestamp:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
            return f"{base_name}_{timestamp}{extension}"
        return f"{base_name}{extension}"

    def _save_json(self, data: Dict[str, Any], file_path: Path) -> Path:
        json_str = json.dumps(data, indent=2, default=str, ensure_ascii=False)

        if self.compress_results:
            compressed_path = file_path.with_suffix(file_path.suffix + ".gz")
            with gzip.open(compressed_path, "wt", encoding="utf-8") as f:
                f.write(json_str)
            logger.debug("Saved compressed JSON", path=str(compressed_path))
            return compressed_path

        with open(file_path, "w", encoding="utf-8") as f:
            f.write(json_str)
        logger.debug("Saved JSON", path=str(file_path))
        return file_path

    def _save_csv(self, rows: List[Dict[str, Any]], file_path: Path) -> Path:
        fieldnames = ["census_id", "dimension", "code", "label", "count", "share_percent"]

        with open(file_path, "w", newline="", encoding="utf-8") as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=fieldnames)
            writer.writeheader()
            for row in rows:
                writer.writerow(row)

        logger.debug("Saved CSV", path=str(file_path))
        return file_path

    def _distribution_rows(self, statistics: CensusStatistics) -> List[Dict[str, Any]]:
        rows = []

        age_shares = distribution_shares(statistics.age_distribution)
        for age_range in sorted(statistics.age_distribution):
            rows.append(
                {
                    "census_id": statistics.census_id,
                    "dimension": "age_range",
                    "code": int(age_range),
                    "label": AgeRange(age_range).label,
                    "count": statistics.age_distribution[age_range],
                    "share_percent": age_shares[age_range],
                }
            )

        continent_shares = distribution_shares(statistics.continent_distribution)
        for continent in sorted(statistics.continent_distribution):
            rows.append(
                {
                    "census_id": statistics.census_id,
                    "dimension": "continent",
                    "code": int(continent),
                    "label": Continent(continent).label,
                    "count": statistics.continent_distribution[continent],
                    "share_percent": continent_shares[continent],
                }
            )

        return rows

    def log_statistics(
        self,
        statistics: CensusStatistics,
        census: Optional[CensusMetadata] = None,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Path]:
        """
        Persist one statistics snapshot.

        Parameters
        ----------
        statistics : CensusStatistics
            Aggregate counters to write.
        census : CensusMetadata, optional
            Census definition added to the snapshot metadata.
        extra_metadata : Dict[str, Any], optional
            Additional metadata (for example simulation parameters).

        Returns
        -------
        Dict[str, Path]
            Paths of the written files keyed by format (``json``, ``csv``).

        Raises
        ------
        ResultPersistenceError
            If the snapshot cannot be written.
        """
        timestamp = datetime.now(timezone.utc)

        snapshot = {
            "metadata": {
                "logging_timestamp": timestamp.isoformat(),
                "zkcensus_version": __version__,
                **(extra_metadata or {}),
            },
            "census": census.to_dict() if census is not None else None,
            "statistics": statistics.to_dict(),
            "shares": {
                "ageDistribution": {
                    str(int(k)): v
                    for k, v in distribution_shares(statistics.age_distribution).items()
                },
                "continentDistribution": {
                    str(int(k)): v
                    for k, v in distribution_shares(
                        statistics.continent_distribution
                    ).items()
                },
            },
        }

        try:
            json_path = self._save_json(
                snapshot,
                self.output_directory
                / self._generate_filename(
                    f"{DEFAULT_STATISTICS_FILE}_{statistics.census_id}"
                ),
            )
            csv_path = self._save_csv(
                self._distribution_rows(statistics),
                self.output_directory
                / self._generate_filename(
                    f"{DEFAULT_DISTRIBUTION_FILE}_{statistics.census_id}", ".csv"
                ),
            )
        except OSError as e:
            raise ResultPersistenceError(
                f"Failed to write statistics snapshot: {e}",
                output_path=str(self.output_directory),
            ) from e

        logger.info(
            "Census statistics logged",
            census_id=statistics.census_id,
            total_members=statistics.total_members,
            json_path=str(json_path),
            csv_path=str(csv_path),
        )
        return {"json": json_path, "csv": csv_path}
