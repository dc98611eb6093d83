"""Track live operations so they can be aborted together on teardown."""

from __future__ import annotations

import asyncio
from typing import Any

from streamfetch.utils.operation import CancelableOperation


class OperationManager:
    """Abort managed operations on `destroy()`; forget them once they settle."""

    def __init__(self) -> None:
        self._operations: list[CancelableOperation[Any]] = []

    def __len__(self) -> int:
        return len(self._operations)

    def manage(self, operation: CancelableOperation[Any]) -> None:
        self._operations.append(operation)
        operation.on_settled(lambda _succeeded: self._forget(operation))

    async def destroy(self) -> None:
        operations, self._operations = self._operations, []
        for operation in operations:
            # Aborted results are observed by whoever awaits them; silence the rest.
            operation.result.add_done_callback(_silence)
        await asyncio.gather(*(operation.abort() for operation in operations))

    def _forget(self, operation: CancelableOperation[Any]) -> None:
        if operation in self._operations:
            self._operations.remove(operation)


def _silence(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()
