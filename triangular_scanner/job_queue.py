"""
Prioritized execution job queue.

Jobs go to a BullMQ queue so the execution worker can consume them with a
stock BullMQ ``Worker``. BullMQ serves lower priority numbers first.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from bullmq import Queue
from redis.exceptions import RedisError

from .exceptions import DispatchError
from .utils import get_logger, safe_json_dump

logger = get_logger(__name__)


class JobQueue(ABC):
    """Destination for dispatched jobs."""

    @abstractmethod
    async def add(
        self, name: str, data: Dict[str, Any], priority: int, attempts: int = 1
    ) -> str:
        """Enqueue a job and return its id."""

    async def close(self) -> None:
        pass


class BullMQJobQueue(JobQueue):
    """JobQueue publishing to a BullMQ queue on Redis."""

    def __init__(self, queue: Queue):
        self.queue = queue

    @classmethod
    def from_url(cls, redis_url: str, queue_name: str) -> "BullMQJobQueue":
        logger.info(f"Job queue '{queue_name}' on {redis_url}")
        return cls(Queue(queue_name, redis_url))

    @property
    def queue_name(self) -> str:
        return self.queue.name

    async def add(
        self, name: str, data: Dict[str, Any], priority: int, attempts: int = 1
    ) -> str:
        """
        Add a job with BullMQ priority and retry options.

        Raises:
            DispatchError: If Redis rejects the write
        """
        # Decimals and other non-JSON values become strings before BullMQ sees them
        payload = json.loads(safe_json_dump(data, indent=None))
        try:
            job = await self.queue.add(
                name, payload, {"priority": priority, "attempts": attempts}
            )
        except RedisError as e:
            raise DispatchError(
                f"Failed to enqueue {name}: {e}", reason="queue_unavailable"
            ) from e

        logger.debug(f"Queued job {job.id} ({name}) with priority {priority}")
        return str(job.id)

    async def close(self) -> None:
        await self.queue.close()


class InMemoryJobQueue(JobQueue):
    """
    Queue kept in process memory.

    Used for dry runs and tests; jobs are kept in insertion order and
    ``pop`` returns the lowest priority value first.
    """

    def __init__(self):
        self.jobs: List[Dict[str, Any]] = []
        self._next_id = 0

    async def add(
        self, name: str, data: Dict[str, Any], priority: int, attempts: int = 1
    ) -> str:
        self._next_id += 1
        job_id = str(self._next_id)
        # Round-trip through JSON so callers see exactly what the worker would receive
        self.jobs.append(
            {
                "id": job_id,
                "name": name,
                "data": json.loads(safe_json_dump(data, indent=None)),
                "priority": priority,
                "attempts": attempts,
            }
        )
        return job_id

    def pop(self) -> Optional[Dict[str, Any]]:
        if not self.jobs:
            return None
        ranked: Tuple[int, Dict[str, Any]] = min(
            enumerate(self.jobs), key=lambda item: (item[1]["priority"], item[0])
        )
        return self.jobs.pop(ranked[0])
