from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ..errors import TransientPersistenceError

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Something went wrong. Please try again."


@dataclass
class MutationOutcome:
    succeeded: bool
    error: Optional[BaseException] = None
    user_message: Optional[str] = None


class OptimisticMutation:
    """
    Apply a local change right away, confirm it remotely, undo it on failure.

    `apply` and `inverse` are synchronous and must not suspend; `remote_call`
    is the only awaited step. Remote failures are converted into a failed
    `MutationOutcome` and never escape `commit`.
    """

    def __init__(
        self,
        apply: Callable[[], None],
        inverse: Callable[[], None],
        remote_call: Callable[[], Awaitable[object]],
        *,
        label: str = "mutation",
        error_message: str = DEFAULT_ERROR_MESSAGE,
    ) -> None:
        self.apply = apply
        self.inverse = inverse
        self.remote_call = remote_call
        self.label = label
        self.error_message = error_message
        self._applied = False

    def apply_now(self) -> None:
        if self._applied:
            raise RuntimeError(f"{self.label} already applied")
        self.apply()
        self._applied = True

    async def commit(self) -> MutationOutcome:
        if not self._applied:
            self.apply_now()
        try:
            await self.remote_call()
        except TransientPersistenceError as exc:
            self.inverse()
            logger.warning("%s rejected by remote store: %s", self.label, exc)
            return MutationOutcome(False, error=exc, user_message=exc.user_message or self.error_message)
        except Exception as exc:
            self.inverse()
            logger.exception("%s failed unexpectedly", self.label)
            return MutationOutcome(False, error=exc, user_message=self.error_message)
        return MutationOutcome(True)

    async def run(self) -> MutationOutcome:
        self.apply_now()
        return await self.commit()
