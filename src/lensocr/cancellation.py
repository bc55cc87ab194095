# src/lensocr/cancellation.py
from __future__ import annotations

import logging

from .exceptions import RunCancelled

logger = logging.getLogger("lensocr")


class CancellationToken:
    """
    Write-once flag shared by every page task of a single run.

    Cancellation is cooperative: tasks poll the token at their checkpoints,
    an extraction call already in flight is not aborted, its result is dropped.
    A new token is created for every run, there is no way to reset one.
    """

    __slots__ = ("_signaled",)

    def __init__(self):
        self._signaled = False

    def signal(self) -> None:
        if not self._signaled:
            logger.debug("Cancellation signaled")
        self._signaled = True

    def is_signaled(self) -> bool:
        return self._signaled

    def raise_if_signaled(self) -> None:
        if self._signaled:
            raise RunCancelled("Processing terminated by user.")

    def __repr__(self) -> str:
        return f"CancellationToken(signaled={self._signaled})"
