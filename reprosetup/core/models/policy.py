"""
Run policy — confirmation policy and container run modes.

Both are decided once by the CLI layer, before the engine starts,
and stay fixed for the whole run.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class ConfirmationPolicy(str, Enum):
    """How destructive actions are confirmed."""

    INTERACTIVE = "interactive"
    YES = "yes"
    NO = "no"

    @classmethod
    def from_flags(cls, yes: bool = False, no: bool = False) -> ConfirmationPolicy:
        """Resolve the policy from the --yes / --no flags.

        Raises:
            ConfigError: If both flags are set.
        """
        if yes and no:
            from reprosetup.core.config.loader import ConfigError

            raise ConfigError("--yes and --no are mutually exclusive")
        if yes:
            return cls.YES
        if no:
            return cls.NO
        return cls.INTERACTIVE


class RunModes(BaseModel):
    """Per-run mode flags.

    ``no_recreate`` overrides ``force_recreate`` and ``update_images``.
    """

    model_config = ConfigDict(frozen=True)

    force_recreate: bool = False
    update_images: bool = False
    no_recreate: bool = False
    dry_run: bool = False

    @property
    def forcing(self) -> bool:
        """Recreate containers even when their fingerprint matches."""
        return self.force_recreate and not self.no_recreate

    @property
    def updating_images(self) -> bool:
        """Pull images and recreate containers whose image changed."""
        return self.update_images and not self.no_recreate
