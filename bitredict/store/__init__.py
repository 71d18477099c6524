"""Relational store: short-lived-session repositories over the async engine."""

from bitredict.store.alerts import AlertStore
from bitredict.store.cron import CronStore
from bitredict.store.cursors import CursorStore
from bitredict.store.oddyssey import OddysseyStore
from bitredict.store.pools import PoolStore
from bitredict.store.results import ResultStore

__all__ = [
    "AlertStore",
    "CronStore",
    "CursorStore",
    "OddysseyStore",
    "PoolStore",
    "ResultStore",
]
