from bitredict.services.indexer.handlers import PoolEventHandlers, build_handlers
from bitredict.services.indexer.poller import EventIndexer

__all__ = ["EventIndexer", "PoolEventHandlers", "build_handlers"]
