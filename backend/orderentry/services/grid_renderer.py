"""
Grid rendering capability.

The spreadsheet library is an injected service with an explicit lifecycle:
a `GridLibrary` is loaded once per process and reports `ready()`; each
mounted grid asks it for a `GridRenderer` instance with a narrow interface
(`get_cell`, `set_cell`, `on_change`, `destroy`). The grid engine never
talks to the library directly, so it runs the same with or without one.

`GridRendererRegistry.acquire()` is the only way to get the library. It
builds the singleton under a lock and waits for readiness with a linear
backoff, so two concurrent mounts never construct two libraries.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional, Protocol, Sequence

from orderentry.core.config import settings
from orderentry.core.exceptions import GridRendererError

logger = logging.getLogger(__name__)

UserEditCallback = Callable[[int, int, Any], None]


class GridRenderer(Protocol):
    def get_cell(self, row: int, col: int) -> Any: ...

    def set_cell(self, row: int, col: int, value: Any, source: str = "user") -> None: ...

    def on_change(self, callback: UserEditCallback) -> None: ...

    def load(self, data: Sequence[Sequence[Any]]) -> None: ...

    def destroy(self) -> None: ...


class GridLibrary(Protocol):
    def ready(self) -> bool: ...

    def create(self, col_headers: List[str], data: Sequence[Sequence[Any]]) -> GridRenderer: ...


class InMemoryGridRenderer:
    """
    Renderer that keeps a positional copy of the grid.

    Engine writes arrive through `set_cell`; user input is fed in through
    `user_edit`, which forwards to whoever subscribed with `on_change`.
    """

    def __init__(self, col_headers: List[str], data: Sequence[Sequence[Any]]):
        self.col_headers = list(col_headers)
        self.data: List[List[Any]] = [list(row) for row in data]
        self._callbacks: List[UserEditCallback] = []
        self.destroyed = False

    def get_cell(self, row: int, col: int) -> Any:
        return self.data[row][col]

    def set_cell(self, row: int, col: int, value: Any, source: str = "user") -> None:
        if self.destroyed:
            return
        self.data[row][col] = value

    def load(self, data: Sequence[Sequence[Any]]) -> None:
        self.data = [list(row) for row in data]

    def on_change(self, callback: UserEditCallback) -> None:
        self._callbacks.append(callback)

    def user_edit(self, row: int, col: int, value: Any) -> None:
        for callback in list(self._callbacks):
            callback(row, col, value)

    def destroy(self) -> None:
        self._callbacks.clear()
        self.destroyed = True


class InMemoryGridLibrary:
    """Default library: always ready, renders into memory."""

    def ready(self) -> bool:
        return True

    def create(self, col_headers: List[str], data: Sequence[Sequence[Any]]) -> InMemoryGridRenderer:
        return InMemoryGridRenderer(col_headers, data)


LibraryFactory = Callable[[], GridLibrary]


class GridRendererRegistry:
    """Per-process holder of the grid library singleton."""

    def __init__(
        self,
        factory: LibraryFactory = InMemoryGridLibrary,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self._factory = factory
        self.max_retries = settings.GRID_RENDERER_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = (
            settings.GRID_RENDERER_RETRY_DELAY_MS / 1000 if retry_delay is None else retry_delay
        )
        self._library: Optional[GridLibrary] = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> GridLibrary:
        """
        Return the ready library, building it on first use.

        Raises:
            GridRendererError: if the library cannot be built or never becomes ready
        """
        async with self._lock:
            if self._library is None:
                try:
                    self._library = self._factory()
                except Exception as e:
                    raise GridRendererError("failed to load grid library", e)
                logger.info("Grid library loaded")

            for attempt in range(self.max_retries + 1):
                if self._library.ready():
                    return self._library
                if attempt < self.max_retries:
                    logger.debug(f"Grid library not ready, retry {attempt + 1}/{self.max_retries}")
                    await asyncio.sleep(self.retry_delay * (attempt + 1))

            raise GridRendererError(f"grid library not ready after {self.max_retries} retries")

    def reset(self) -> None:
        self._library = None


grid_renderers = GridRendererRegistry()
