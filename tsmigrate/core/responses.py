"""
OpenTSDB wire models
Response documents returned by the OpenTSDB HTTP API
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class LookupEntry(BaseModel):
    """One series returned by /api/search/lookup"""
    metric: str = Field(..., description="Metric name")
    tags: Dict[str, str] = Field(default_factory=dict, description="Tag set of the series")
    tsuid: Optional[str] = Field(None, description="Series UID, only present with useMeta")


class LookupResponse(BaseModel):
    """Body of /api/search/lookup"""
    type: Optional[str] = Field(None, description="Lookup type echoed by the server")
    metric: Optional[str] = Field(None, description="Metric that was looked up")
    limit: Optional[int] = Field(None, description="Limit applied by the server")
    total_results: Optional[int] = Field(None, alias="totalResults", description="Total series matching")
    results: List[LookupEntry] = Field(default_factory=list, description="Series found")


class QueryResult(BaseModel):
    """One series returned by /api/query"""
    metric: str = Field(..., description="Metric name as stored")
    tags: Dict[str, str] = Field(default_factory=dict, description="Tags shared by every aggregated series")
    aggregate_tags: List[str] = Field(default_factory=list, alias="aggregateTags", description="Tags that differed between aggregated series")
    dps: Dict[str, Optional[float]] = Field(default_factory=dict, description="Datapoints keyed by timestamp")
