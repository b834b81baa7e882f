"""
Confirmation boundary — the single yes/no prompt primitive.

Reconcilers ask before destructive actions (dotfile overwrite, unit
overwrite, container recreation).  The policy decides whether the user
is actually asked.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import click

from reprosetup.core.models.policy import ConfirmationPolicy

logger = logging.getLogger(__name__)


def _click_prompt(message: str) -> bool:
    try:
        return click.confirm(message, default=False)
    except click.Abort:
        # EOF / Ctrl-C at the prompt
        return False


class Confirmer:
    """Answers ``confirm(message)`` according to a ConfirmationPolicy.

    ``prompt`` is injectable so tests can script the answers.  In a dry
    run nothing is asked: interactive runs assume "yes" so the plan
    shows what would happen, ``no`` still says no.
    """

    def __init__(
        self,
        policy: ConfirmationPolicy = ConfirmationPolicy.INTERACTIVE,
        prompt: Callable[[str], bool] | None = None,
        dry_run: bool = False,
    ):
        self.policy = policy
        self._prompt = prompt or _click_prompt
        self._dry_run = dry_run
        self.asked: list[str] = []

    def confirm(self, message: str) -> bool:
        if self.policy == ConfirmationPolicy.YES:
            logger.info("Auto-confirmed: %s", message)
            return True
        if self.policy == ConfirmationPolicy.NO:
            logger.info("Auto-declined: %s", message)
            return False
        if self._dry_run:
            return True

        self.asked.append(message)
        return bool(self._prompt(message))
