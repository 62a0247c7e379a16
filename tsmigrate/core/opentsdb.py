"""
OpenTSDB Source Client
Metric discovery, series lookup and per-window data retrieval over the OpenTSDB HTTP API
"""
import logging
from typing import List, Optional

import httpx
from pydantic import TypeAdapter

from .client import BaseHTTPClient, ClientConfig
from .models import FetchResult, RetentionMeta, Series
from .responses import LookupResponse, QueryResult

logger = logging.getLogger(__name__)

_QUERY_RESULTS = TypeAdapter(List[QueryResult])
_SUGGESTIONS = TypeAdapter(List[str])


class OpenTSDBClient(BaseHTTPClient):
    """
    OpenTSDB client

    Every call raises httpx.HTTPError on transport or status failures and
    ValueError on responses that do not match the expected shape. Wrapping
    them with job context is left to the caller.
    """

    name = "OpenTSDB"

    def __init__(self, config: ClientConfig, query_limit: int = 100_000_000,
                 normalize: bool = False, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config, transport=transport)
        self.query_limit = query_limit
        self.normalize = normalize

    async def _ping(self):
        response = await self._require_client().get("/api/version")
        response.raise_for_status()

    async def find_metrics(self, query_filter: str) -> List[str]:
        """Metric names starting with ``query_filter``"""
        metrics = self.start_operation("find_metrics")
        try:
            response = await self._require_client().get(
                "/api/suggest",
                params={"type": "metrics", "q": query_filter, "max": self.query_limit}
            )
            response.raise_for_status()
            names = _SUGGESTIONS.validate_python(response.json())
        except (httpx.HTTPError, ValueError) as e:
            self.end_operation(metrics, 0, False, str(e))
            raise

        self.end_operation(metrics, len(names), True)
        logger.debug(f"Filter {query_filter!r} matched {len(names)} metrics")
        return names

    async def find_series(self, metric: str) -> List[Series]:
        """Every tag combination stored for ``metric``"""
        metrics = self.start_operation("find_series")
        try:
            response = await self._require_client().get(
                "/api/search/lookup",
                params={"m": metric, "limit": self.query_limit, "useMeta": "true"}
            )
            response.raise_for_status()
            lookup = LookupResponse.model_validate(response.json())
        except (httpx.HTTPError, ValueError) as e:
            self.end_operation(metrics, 0, False, str(e))
            raise

        series = [Series.from_tags(entry.metric, entry.tags) for entry in lookup.results]
        self.end_operation(metrics, len(series), True)
        return series

    @staticmethod
    def build_query(series: Series, retention: RetentionMeta) -> str:
        """``<agg>:<interval>-<downsample agg>-none:<metric>{tag=value,...}``"""
        query = f"{retention.first_order}:{retention.agg_time}-{retention.second_order}-none:{series.metric}"
        if series.tags:
            query += "{" + ",".join(f"{k}={v}" for k, v in series.tags) + "}"
        return query

    async def get_data(self, series: Series, retention: RetentionMeta, start: int, end: int,
                       msecs_time: bool = False) -> FetchResult:
        """
        Datapoints of one series in ``[start, end)`` (unix seconds)

        Timestamps of the result are always in milliseconds. An empty result
        is returned when OpenTSDB has nothing stored for the window.
        """
        params = {
            "start": start,
            "end": end,
            "m": self.build_query(series, retention),
        }
        if msecs_time:
            params["msResolution"] = "true"

        metrics = self.start_operation("get_data")
        try:
            response = await self._require_client().get("/api/query", params=params)
            response.raise_for_status()
            results = _QUERY_RESULTS.validate_python(response.json())
            if len(results) > 1:
                raise ValueError(
                    f"expected at most one series for {series}, got {len(results)}"
                )
        except (httpx.HTTPError, ValueError) as e:
            self.end_operation(metrics, 0, False, str(e))
            raise

        if not results:
            self.end_operation(metrics, 0, True)
            return FetchResult(metric=self._normalize(series.metric), tags={})

        result = self._to_fetch_result(results[0], msecs_time)
        self.end_operation(metrics, len(result.timestamps), True)
        return result

    def _normalize(self, value: str) -> str:
        return value.lower() if self.normalize else value

    def _to_fetch_result(self, result: QueryResult, msecs_time: bool) -> FetchResult:
        points = []
        for raw_ts, value in result.dps.items():
            if value is None:
                continue
            ts = int(raw_ts)
            points.append((ts if msecs_time else ts * 1000, float(value)))
        points.sort()

        return FetchResult(
            metric=self._normalize(result.metric),
            tags={self._normalize(k): self._normalize(v) for k, v in result.tags.items()},
            timestamps=[ts for ts, _ in points],
            values=[v for _, v in points]
        )
