"""Diverse, deduplicated search query generation with per-source caching"""

import asyncio
import random
import time
import xml.etree.ElementTree as ET
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from itertools import zip_longest
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

import httpx
import orjson

from .config import (
    DEFAULT_CACHE_MINUTES,
    DEFAULT_MAX_QUERIES_PER_SOURCE,
    DEFAULT_QUERY_SOURCES,
    QUERY_SOURCE_TIMEOUT,
)
from .logging_config import get_logger

QuerySource = Callable[[], Awaitable[List[str]]]

LOCAL_FALLBACK = "local-fallback"
MAX_QUERY_LENGTH = 120

GOOGLE_TRENDS_RSS = "https://trends.google.com/trending/rss?geo=US"
REDDIT_POPULAR = "https://www.reddit.com/r/popular.json?limit=50"
WIKIPEDIA_FEATURED = "https://api.wikimedia.org/feed/v1/wikipedia/en/featured/{day:%Y/%m/%d}"

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:135.0) Gecko/20100101 Firefox/135.0"

LOCAL_TOPICS = (
    "weather", "stock market", "electric cars", "home workouts", "healthy breakfast",
    "world cup", "space telescope", "national parks", "budget travel", "coffee brewing",
    "indoor plants", "mortgage rates", "running shoes", "sourdough bread", "solar panels",
    "smartphone reviews", "jazz history", "chess openings", "meal prep", "hiking trails",
    "cloud computing", "vintage cameras", "learn spanish", "basketball playoffs", "museum exhibits",
    "photography tips", "board games", "ancient rome", "ocean currents", "podcast recommendations",
    "fantasy novels", "interior design", "job interview", "yoga for beginners", "camping gear",
    "renewable energy", "cat breeds", "dog training", "marathon training", "street food",
)
LOCAL_MODIFIERS = (
    "best {topic} 2026",
    "{topic} near me",
    "how does {topic} work",
    "{topic} tips",
    "{topic} news today",
    "what is {topic}",
    "{topic} for beginners",
    "cheap {topic}",
    "{topic} explained",
    "history of {topic}",
    "{topic} ideas",
    "top 10 {topic}",
)


@dataclass
class QueryDiversityConfig:
    """Source selection and shaping options for the engine"""

    sources: List[str] = field(default_factory=lambda: list(DEFAULT_QUERY_SOURCES))
    max_queries_per_source: int = DEFAULT_MAX_QUERIES_PER_SOURCE
    deduplicate: bool = True
    mix_strategies: bool = True
    cache_minutes: float = DEFAULT_CACHE_MINUTES
    similarity_threshold: Optional[float] = None  # Word-level Jaccard, None disables


@dataclass
class CachedQuerySet:
    """Queries fetched from one source, stamped with the fetch time"""

    queries: List[str]
    fetched_at: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        return now - self.fetched_at < ttl_seconds


class QueryDiversityEngine:
    """
    Produce search queries from several sources without detectable patterns.

    Each source's raw list is cached for ``cache_minutes``; the pool built
    from the cache is stable inside that window, while the order handed
    out is reshuffled on every call.
    """

    def __init__(
        self,
        config: Optional[QueryDiversityConfig] = None,
        sources: Optional[Dict[str, QuerySource]] = None,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        log=None,
    ):
        """
        Args:
            config: Engine options (defaults if omitted)
            sources: Extra named sources; names shadow the built-ins
            clock: Monotonic clock used for cache expiry
            rng: Random generator for shuffling and local generation
            transport: Optional httpx transport for the remote sources
            log: Logger, defaults to a component-bound loguru logger
        """
        self.config = config or QueryDiversityConfig()
        self.log = log or get_logger("queries")
        self._clock = clock
        self._rng = rng or random.Random()
        self._transport = transport
        self._cache: Dict[str, CachedQuerySet] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._sources: Dict[str, QuerySource] = {
            LOCAL_FALLBACK: self._local_queries,
            "google-trends": self._google_trends_queries,
            "reddit": self._reddit_queries,
            "wikipedia": self._wikipedia_queries,
        }
        self._sources.update(sources or {})

    async def fetch_queries(self, count: int) -> List[str]:
        """
        Return up to ``count`` shuffled queries.

        Never empty for a positive count: the local generator steps in
        when every configured source comes back empty.
        """
        if count <= 0:
            return []

        pool = await self.build_pool()
        self._rng.shuffle(pool)
        return pool[:count]

    async def build_pool(self) -> List[str]:
        """Capped, interleaved and deduplicated candidates before shuffling"""
        limit = max(0, self.config.max_queries_per_source)
        batches: List[List[str]] = []

        for name in self.config.sources:
            queries = clean_queries(await self._get_source_queries(name))[:limit]
            if queries:
                batches.append(queries)

        if not batches:
            self.log.warning("No query source produced candidates, using local fallback")
            fallback = clean_queries(await self._get_source_queries(LOCAL_FALLBACK))[: max(limit, 1)]
            batches = [fallback]

        if self.config.mix_strategies and len(batches) > 1:
            pool = interleave(batches)
        else:
            pool = [query for batch in batches for query in batch]

        if self.config.deduplicate:
            pool = deduplicate(pool, self.config.similarity_threshold)

        return pool

    def clear_cache(self) -> None:
        self._cache.clear()
        self.log.debug("Query cache cleared")

    async def _get_source_queries(self, name: str) -> List[str]:
        """Cached copy of one source's list, refreshed when stale"""
        ttl_seconds = self.config.cache_minutes * 60

        async with self._locks[name]:
            cached = self._cache.get(name)
            if cached and cached.is_fresh(self._clock(), ttl_seconds):
                return list(cached.queries)

            source = self._sources.get(name)
            if source is None:
                self.log.warning(f"Unknown query source '{name}', skipping")
                return []

            try:
                queries = list(await source())
            except Exception as e:
                self.log.warning(f"Query source '{name}' failed: {e}")
                return []

            if queries:
                self._cache[name] = CachedQuerySet(queries=queries, fetched_at=self._clock())
                self.log.debug(f"Fetched {len(queries)} queries from '{name}'")
            else:
                self.log.warning(f"Query source '{name}' returned nothing")
            return list(queries)

    async def _local_queries(self) -> List[str]:
        topics = self._rng.sample(LOCAL_TOPICS, len(LOCAL_TOPICS))
        return [self._rng.choice(LOCAL_MODIFIERS).format(topic=topic) for topic in topics]

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=QUERY_SOURCE_TIMEOUT,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
            transport=self._transport,
        )

    async def _google_trends_queries(self) -> List[str]:
        async with self._client() as client:
            response = await client.get(GOOGLE_TRENDS_RSS)
            response.raise_for_status()
        root = ET.fromstring(response.content)
        return [item.findtext("title") or "" for item in root.iter("item")]

    async def _reddit_queries(self) -> List[str]:
        async with self._client() as client:
            response = await client.get(REDDIT_POPULAR)
            response.raise_for_status()
        payload = orjson.loads(response.content)
        children = (payload.get("data") or {}).get("children") or []
        return [(child.get("data") or {}).get("title", "") for child in children]

    async def _wikipedia_queries(self) -> List[str]:
        url = WIKIPEDIA_FEATURED.format(day=date.today() - timedelta(days=1))
        async with self._client() as client:
            response = await client.get(url)
            response.raise_for_status()
        payload = orjson.loads(response.content)
        articles = (payload.get("mostread") or {}).get("articles") or []
        return [article.get("normalizedtitle", "") for article in articles]


def clean_queries(queries: Iterable[object]) -> List[str]:
    """Strip whitespace and drop blanks, non-strings and overlong entries"""
    cleaned = []
    for query in queries:
        if not isinstance(query, str):
            continue
        query = " ".join(query.split())
        if query and len(query) <= MAX_QUERY_LENGTH:
            cleaned.append(query)
    return cleaned


def interleave(batches: Sequence[Sequence[str]]) -> List[str]:
    """Round-robin merge so neighbours come from different sources"""
    return [query for group in zip_longest(*batches) for query in group if query is not None]


def jaccard_similarity(a: str, b: str) -> float:
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    if not words_a and not words_b:
        return 1.0
    return len(words_a & words_b) / len(words_a | words_b)


def deduplicate(queries: Iterable[str], similarity_threshold: Optional[float] = None) -> List[str]:
    """
    Drop case-insensitive repeats, keeping first occurrences in order.

    With a threshold, also drop queries whose word overlap with an
    already kept query is above it.
    """
    seen = set()
    kept: List[str] = []
    for query in queries:
        key = query.lower()
        if key in seen:
            continue
        if similarity_threshold is not None and any(
            jaccard_similarity(query, existing) > similarity_threshold for existing in kept
        ):
            continue
        seen.add(key)
        kept.append(query)
    return kept
