import logging
from collections.abc import Callable
from pathlib import Path

from .constants import APP_NAME
from .orchestrator import RepositoryOrchestrator

logger = logging.getLogger(APP_NAME)


class Workspace:
    """Registry of open repositories, one orchestrator per repository.

    Orchestrators share nothing: each has its own caches, watcher, history and
    lock. Opening the same path twice returns the existing orchestrator.
    """

    def __init__(
        self, factory: Callable[[], RepositoryOrchestrator] = RepositoryOrchestrator
    ):
        self._factory = factory
        self._open: dict[Path, RepositoryOrchestrator] = {}

    @property
    def paths(self) -> list[Path]:
        return list(self._open)

    def open(self, path: Path) -> RepositoryOrchestrator:
        key = Path(path).resolve()
        existing = self._open.get(key)
        if existing is not None:
            return existing

        orchestrator = self._factory()
        orchestrator.open(key)
        # Register under the resolved top level too, so subdirectories share a tab.
        root = orchestrator.path.resolve() if orchestrator.path else key
        if root in self._open:
            orchestrator.close()
            return self._open[root]
        self._open[root] = orchestrator
        return orchestrator

    def get(self, path: Path) -> RepositoryOrchestrator | None:
        return self._open.get(Path(path).resolve())

    def close(self, path: Path) -> None:
        orchestrator = self._open.pop(Path(path).resolve(), None)
        if orchestrator is not None:
            orchestrator.close()

    def close_all(self) -> None:
        for path in list(self._open):
            self.close(path)
        logger.debug("Closed all repositories")
