"""Job launcher: issues the blocking start call exactly once per job."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from src.indexing.errors import LaunchError
from src.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class LaunchResult:
    project_name: str
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def backend_project_id(self) -> str:
        return str(self.body.get("project_id") or "")


class JobLauncher:
    def __init__(self, client):
        self._client = client
        self._launched = False

    @property
    def launched(self) -> bool:
        return self._launched

    async def launch(self, project_name: str) -> LaunchResult:
        """Resolves when the backend finishes the job; raises LaunchError if it refuses or fails."""
        if self._launched:
            raise RuntimeError(f"indexing for {project_name!r} was already launched")
        self._launched = True
        logger.info("[launcher] start_indexing project_name=%s", project_name)
        try:
            body = dict(await self._client.start_indexing(project_name) or {})
        except LaunchError as e:
            logger.warning("[launcher] start_indexing rejected project_name=%s: %s", project_name, e.message)
            raise
        logger.info("[launcher] start_indexing returned project_name=%s status=%s", project_name, body.get("status"))
        return LaunchResult(project_name=project_name, body=body)
