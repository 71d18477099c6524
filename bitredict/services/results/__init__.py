"""Fixture results: canonical ingestion, validation and the sports-data feed."""

from bitredict.services.results.ingestor import ResultIngestor
from bitredict.services.results.sportmonks import FinalScore, ResultsFeed, SportMonksFeed
from bitredict.services.results.validator import FixtureResultValidator

__all__ = [
    "FinalScore",
    "FixtureResultValidator",
    "ResultIngestor",
    "ResultsFeed",
    "SportMonksFeed",
]
