"""
Core HTTP Client Framework
Connection management and per-operation performance tracking shared by the source and target clients
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Any
from dataclasses import dataclass
from collections import deque

import httpx

logger = logging.getLogger(__name__)


@dataclass
class ClientConfig:
    """HTTP client configuration"""
    addr: str
    timeout_seconds: float = 30.0
    user: Optional[str] = None
    password: Optional[str] = None
    max_connections: int = 100


@dataclass
class OperationMetrics:
    """Operation performance metrics"""
    operation_name: str
    start_time: float
    end_time: float
    items_processed: int
    success: bool
    error_message: Optional[str] = None

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    @property
    def rate(self) -> float:
        return self.items_processed / self.duration if self.duration > 0 else 0


class BaseHTTPClient(ABC):
    """
    Abstract base class for store clients

    Provides common functionality for:
    - Connection management
    - Performance monitoring
    - Operation summaries
    """

    name = "http"

    def __init__(self, config: ClientConfig, transport: Optional[httpx.AsyncBaseTransport] = None,
                 history_size: int = 1000):
        self.config = config
        self.addr = config.addr.rstrip("/")
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None
        # recent operations only, totals are kept as counters
        self.metrics: deque = deque(maxlen=history_size)
        self.total_operations = 0
        self.failed_operations = 0
        self.total_items = 0
        self.total_time = 0.0
        self.is_connected = False

    def _create_client(self) -> httpx.AsyncClient:
        auth = None
        if self.config.user:
            auth = httpx.BasicAuth(self.config.user, self.config.password or "")
        return httpx.AsyncClient(
            base_url=self.addr,
            auth=auth,
            timeout=self.config.timeout_seconds,
            limits=httpx.Limits(max_connections=self.config.max_connections),
            transport=self.transport
        )

    async def connect(self) -> bool:
        """Open the HTTP client and check the store answers"""
        try:
            logger.info(f"Connecting to {self.name} at {self.addr}...")
            self.client = self._create_client()
            await self._ping()
            self.is_connected = True
            logger.info(f"✅ Connected to {self.name}")
            return True

        except httpx.HTTPError as e:
            logger.error(f"❌ Failed to connect to {self.name} at {self.addr}: {e}")
            await self.disconnect()
            return False

    @abstractmethod
    async def _ping(self):
        """Raise httpx.HTTPError when the store is not reachable"""

    async def disconnect(self):
        """Close the HTTP client"""
        if self.client:
            await self.client.aclose()
            self.client = None
            if self.is_connected:
                logger.info(f"Disconnected from {self.name}")
            self.is_connected = False

    def _require_client(self) -> httpx.AsyncClient:
        if self.client is None:
            raise RuntimeError(f"{self.name} client is not connected. Call connect() first.")
        return self.client

    def start_operation(self, operation_name: str) -> OperationMetrics:
        """Start tracking an operation"""
        return OperationMetrics(
            operation_name=operation_name,
            start_time=time.time(),
            end_time=0,
            items_processed=0,
            success=False
        )

    def end_operation(self, metrics: OperationMetrics, items_processed: int, success: bool,
                      error_message: Optional[str] = None):
        """End tracking an operation"""
        metrics.end_time = time.time()
        metrics.items_processed = items_processed
        metrics.success = success
        metrics.error_message = error_message
        self.metrics.append(metrics)
        self.total_operations += 1

        if success:
            self.total_items += items_processed
            self.total_time += metrics.duration
        else:
            self.failed_operations += 1

        if success:
            logger.debug(f"{metrics.operation_name}: {items_processed:,} items in {metrics.duration:.2f}s")
        else:
            logger.debug(f"❌ {metrics.operation_name}: Failed - {error_message}")

    def get_performance_summary(self) -> Dict[str, Any]:
        """Get performance summary of all operations"""
        if not self.total_operations:
            return {"message": "No operations recorded"}

        successful = self.total_operations - self.failed_operations

        return {
            "total_operations": self.total_operations,
            "successful_operations": successful,
            "failed_operations": self.failed_operations,
            "total_items_processed": self.total_items,
            "total_time": self.total_time,
            "average_rate": self.total_items / self.total_time if self.total_time > 0 else 0,
            "success_rate": successful / self.total_operations
        }
