import csv
import gzip
import json
from datetime import datetime, timezone

import pytest

from zkcensus.data_logger import CensusStatisticsLogger, distribution_shares
from zkcensus.data_models import (
    AgeRange,
    CensusStatistics,
    Continent,
    empty_age_distribution,
    empty_continent_distribution,
)
from zkcensus.exceptions import ResultPersistenceError


@pytest.fixture
def statistics():
    ages = empty_age_distribution()
    ages[AgeRange.AGE_18_24] = 3
    ages[AgeRange.AGE_25_34] = 1
    continents = empty_continent_distribution()
    continents[Continent.SOUTH_AMERICA] = 2
    continents[Continent.EUROPE] = 2
    return CensusStatistics(
        census_id="census-log",
        total_members=4,
        age_distribution=ages,
        continent_distribution=continents,
        last_updated=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )


def test_distribution_shares():
    assert distribution_shares({"a": 1, "b": 3}) == {"a": 25.0, "b": 75.0}
    assert distribution_shares({"a": 0, "b": 0}) == {"a": 0.0, "b": 0.0}
    assert distribution_shares({}) == {}


def test_writes_json_and_csv(tmp_path, statistics):
    paths = CensusStatisticsLogger(tmp_path).log_statistics(
        statistics, extra_metadata={"seed": 7}
    )

    snapshot = json.loads(paths["json"].read_text(encoding="utf-8"))
    assert snapshot["statistics"]["totalMembers"] == 4
    assert snapshot["metadata"]["seed"] == 7
    assert snapshot["shares"]["ageDistribution"][str(int(AgeRange.AGE_18_24))] == 75.0

    with open(paths["csv"], newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == len(AgeRange) + len(Continent)
    europe = next(row for row in rows if row["label"] == "Europe")
    assert europe["count"] == "2"
    assert europe["share_percent"] == "50.0"


def test_compressed_snapshot(tmp_path, statistics):
    paths = CensusStatisticsLogger(tmp_path, compress_results=True).log_statistics(statistics)

    assert paths["json"].name.endswith(".json.gz")
    with gzip.open(paths["json"], "rt", encoding="utf-8") as f:
        assert json.load(f)["statistics"]["censusId"] == "census-log"


def test_snapshot_includes_census(tmp_path, aggregator, census):
    paths = CensusStatisticsLogger(tmp_path).log_statistics(
        aggregator.get_statistics(census.census_id), census
    )
    snapshot = json.loads(paths["json"].read_text(encoding="utf-8"))
    assert snapshot["census"]["censusId"] == census.census_id


def test_write_failure_raises(tmp_path, statistics):
    stats_logger = CensusStatisticsLogger(tmp_path / "out")
    (tmp_path / "out").rmdir()
    (tmp_path / "out").write_text("not a directory", encoding="utf-8")

    with pytest.raises(ResultPersistenceError):
        stats_logger.log_statistics(statistics)
