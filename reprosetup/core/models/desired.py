"""
DesiredState — the declared configuration of the host.

Loaded from reprosetup.yml once per run and shared read-only with every
reconciler.  All models are frozen: nothing in the engine may mutate
the declaration mid-run.
"""

from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DEFAULT_FLATPAK_REMOTES = {"flathub": "https://flathub.org/repo/flathub.flatpakrepo"}


class _Declared(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


# ── Host ────────────────────────────────────────────────────────────


class HostConfig(_Declared):
    """Host identity."""

    hostname: str | None = None


# ── Packages ────────────────────────────────────────────────────────


class PackagesConfig(_Declared):
    """Package lists per manager.

    Flatpak ids may carry a ``remote:`` prefix selecting a remote other
    than the first one in ``flatpak_remotes``.
    """

    upgrade: bool = False
    system: list[str] = Field(default_factory=list)
    flatpak: list[str] = Field(default_factory=list)
    flatpak_remotes: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_FLATPAK_REMOTES)
    )
    pip: list[str] = Field(default_factory=list)
    npm: list[str] = Field(default_factory=list)
    cargo: list[str] = Field(default_factory=list)

    @property
    def default_flatpak_remote(self) -> str:
        return next(iter(self.flatpak_remotes), "flathub")


# ── Services ────────────────────────────────────────────────────────


Scope = Literal["system", "user"]


class UnitState(_Declared):
    """Desired enabled/started flags for an existing unit.

    ``None`` means "not managed": the flag is left as it is.
    """

    enabled: bool | None = None
    started: bool | None = None


class CustomService(_Declared):
    """A unit (and optional timer) whose text is declared verbatim."""

    name: str
    scope: Scope = "user"
    service_definition: str
    timer_definition: str | None = None
    enabled: bool = True
    started: bool = False

    @property
    def base_name(self) -> str:
        return self.name.removesuffix(".service")

    @property
    def service_unit(self) -> str:
        return f"{self.base_name}.service"

    @property
    def timer_unit(self) -> str | None:
        return f"{self.base_name}.timer" if self.timer_definition else None

    @property
    def target_unit(self) -> str:
        """The unit whose enabled/started flags are managed."""
        return self.timer_unit or self.service_unit


class Application(_Declared):
    """An application launched at login through a generated user unit."""

    name: str
    command: str = ""
    enabled: bool = True
    restart_policy: Literal["never", "on-failure", "always"] = "on-failure"
    delay_seconds: int = Field(default=0, ge=0)

    @property
    def exec_command(self) -> str:
        return self.command or self.name

    @property
    def unit_name(self) -> str:
        return f"{self.name}.service"


class ServicesConfig(_Declared):
    system: dict[str, UnitState] = Field(default_factory=dict)
    user: dict[str, UnitState] = Field(default_factory=dict)
    custom: list[CustomService] = Field(default_factory=list)
    applications: list[Application] = Field(default_factory=list)


# ── Containers ──────────────────────────────────────────────────────


class SetupCommand(_Declared):
    description: str = ""
    command: str


class ContainerSpec(_Declared):
    """A declared container.

    ``flags`` is the flattened ``podman run`` argument string (ports,
    volumes, env, ...), passed through a shell unchanged.
    """

    name: str
    image: str
    flags: str = Field(default="", validation_alias=AliasChoices("flags", "raw_flags"))
    autostart: bool = Field(default=False, validation_alias=AliasChoices("autostart", "auto_start"))
    start_after_creation: bool = True

    @field_validator("flags", mode="before")
    @classmethod
    def _none_is_empty(cls, value: object) -> object:
        return "" if value is None else value


class ContainersConfig(_Declared):
    runtime: str = "podman"
    registries: list[str] = Field(default_factory=list)
    pre_setup: list[SetupCommand] = Field(
        default_factory=list,
        validation_alias=AliasChoices("pre_setup", "pre_container_setup"),
    )
    definitions: list[ContainerSpec] = Field(
        default_factory=list,
        validation_alias=AliasChoices("definitions", "containers"),
    )


# ── Dotfiles ────────────────────────────────────────────────────────


class DotfilesConfig(_Declared):
    """Dotfile payload and which targets to migrate into $HOME."""

    source: str = "."
    setup_bashrc: bool = False
    setup_config_dirs: bool = False
    home: str | None = None


# ── Commands ────────────────────────────────────────────────────────


class CustomCommandsConfig(_Declared):
    commands: list[str] = Field(default_factory=list)
    run_once: list[str] = Field(default_factory=list)


# ── Root ────────────────────────────────────────────────────────────


class DesiredState(_Declared):
    """Root of the declaration — loaded from reprosetup.yml.

    ``base_dir`` is the directory holding the config file; relative
    paths (the dotfiles payload, command working directory) resolve
    against it.
    """

    version: int = 1
    distro: Literal["fedora", "debian", "ubuntu"] = "fedora"
    base_dir: str = "."

    host: HostConfig = Field(default_factory=HostConfig)
    packages: PackagesConfig = Field(default_factory=PackagesConfig)
    services: ServicesConfig = Field(default_factory=ServicesConfig)
    containers: ContainersConfig = Field(default_factory=ContainersConfig)
    dotfiles: DotfilesConfig = Field(default_factory=DotfilesConfig)
    custom_commands: CustomCommandsConfig = Field(default_factory=CustomCommandsConfig)

    @property
    def system_manager(self) -> str:
        """Adapter name of the distro's system package manager."""
        return "dnf" if self.distro == "fedora" else "apt"
