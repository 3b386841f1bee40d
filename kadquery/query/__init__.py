"""
Модуль стратегий запроса
"""

from .base import Query, QueryStrategy, build_query
from .dht_lookup import DHTLookup, LookupResult
from .direct import DirectQuery, DirectQueryResult

__all__ = [
    "Query",
    "QueryStrategy",
    "build_query",
    "DHTLookup",
    "LookupResult",
    "DirectQuery",
    "DirectQueryResult",
]
