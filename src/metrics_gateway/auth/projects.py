"""
metrics_gateway.auth.projects

Project hierarchy expansion.

Responsibilities:
- Collect every enabled descendant of a project (depth-first, provider page order).
- Cache the flattened result per root project.
- Reject cycles and hierarchies deeper than the configured limit.
"""

from __future__ import annotations

from metrics_gateway.auth.cache import AuthCache
from metrics_gateway.auth.errors import AuthenticationError, not_available
from metrics_gateway.auth.session import ServiceSession
from metrics_gateway.identity.client import IdentityClient, IdentityError
from metrics_gateway.observability.logging import get_logger

log = get_logger(__name__)


class ProjectTreeResolver:
    def __init__(self, *, session: ServiceSession, cache: AuthCache, max_depth: int) -> None:
        self._session = session
        self._cache = cache
        self._max_depth = max_depth

    def child_projects(self, project_id: str) -> list[str]:
        cached = self._cache.project_trees.get(project_id)
        if cached is not None:
            return list(cached)

        try:
            descendants = self._descendants(self._session.client(), project_id, (project_id,))
        except IdentityError as e:
            log.error("project_tree_failed", project_id=project_id, error=str(e))
            raise not_available(f"cannot list child projects of {project_id}: {e}") from e
        except AuthenticationError as e:
            log.error("project_tree_failed", project_id=project_id, error=str(e))
            raise

        self._cache.project_trees.set(project_id, tuple(descendants))
        return descendants

    def _descendants(
        self, client: IdentityClient, project_id: str, path: tuple[str, ...]
    ) -> list[str]:
        ids: list[str] = []
        for child in client.list_projects(parent_id=project_id, enabled=True):
            if child.id in path:
                raise not_available(
                    f"project hierarchy cycle: {' -> '.join(path + (child.id,))}"
                )
            # `child` sits len(path) levels below the root.
            if len(path) > self._max_depth:
                raise not_available(
                    f"project hierarchy below {path[0]} exceeds {self._max_depth} levels"
                )
            ids.append(child.id)
            ids.extend(self._descendants(client, child.id, path + (child.id,)))
        return ids
