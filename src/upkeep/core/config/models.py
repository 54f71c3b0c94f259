"""
Configuration data models for upkeep.

These models define the structure of upkeep.yaml (or .toml/.json) files,
with validation and type safety via Pydantic. Paths are kept as written by
the user; expansion of ``~`` and ``$VAR`` happens when task specs are built
(see ``upkeep.core.config.resolver``).
"""

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ConflictPolicy(str, Enum):
    """What to do when a link target is occupied by unmanaged content."""

    SKIP = "skip"
    BACKUP = "backup"
    FAIL = "fail"


class GitRemote(BaseModel):
    """An extra remote kept on a working copy, next to the one it syncs from."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1, description="Remote name")
    url: str = Field(..., min_length=1, description="Remote URL")


class RepoSpec(BaseModel):
    """
    A git repository to keep in sync.

    The local path, if it already exists, must be absent, empty, or a
    working copy of the same remote. Anything else is reported as a
    failure and left untouched.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = Field(..., min_length=1, description="Remote URL to clone from")
    path: str = Field(..., min_length=1, description="Local working copy path")
    branch: Optional[str] = Field(
        default=None,
        description=(
            "Branch to check out and track, or a tag to pin the working copy to "
            "(defaults to the remote HEAD)"
        ),
    )
    remote: str = Field(
        default="origin", min_length=1, description="Remote cloned, fetched and tracked"
    )
    remotes: list[GitRemote] = Field(
        default_factory=list,
        description="Extra remotes added when missing (never fetched or rewritten)",
    )

    @model_validator(mode="after")
    def check_remote_names(self) -> "RepoSpec":
        names = [self.remote, *(r.name for r in self.remotes)]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"remote names must be unique: {', '.join(duplicates)}")
        return self


class LinkEntry(BaseModel):
    """A single explicit source -> target link."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: str = Field(..., min_length=1, description="File inside the managed source tree")
    target: str = Field(..., min_length=1, description="Where the symlink should live")


class LinkGroup(BaseModel):
    """
    A group of symlinks sharing a conflict policy.

    Links come either from an explicit ``links`` list, from mirroring every
    file under ``from_dir`` into ``to_dir``, or both.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    conflict_policy: ConflictPolicy = Field(
        ...,
        description="How to treat targets occupied by unmanaged content: skip, backup or fail",
    )
    links: list[LinkEntry] = Field(default_factory=list)
    from_dir: Optional[str] = Field(default=None, description="Source tree to mirror")
    to_dir: Optional[str] = Field(default=None, description="Where to mirror from_dir into")
    backup_dir: Optional[str] = Field(
        default=None,
        description="Directory receiving backups (defaults to beside the original)",
    )
    ignore: list[str] = Field(
        default_factory=list,
        description="Glob patterns (relative to from_dir) that are never linked",
    )

    @model_validator(mode="after")
    def check_sources(self) -> "LinkGroup":
        """Require a complete from_dir/to_dir pair or at least one explicit link."""
        if (self.from_dir is None) != (self.to_dir is None):
            raise ValueError("from_dir and to_dir must be given together")
        if self.from_dir is None and not self.links:
            raise ValueError("link group needs 'links' or a 'from_dir'/'to_dir' pair")
        return self


class CommandSpec(BaseModel):
    """A setup command. Expected to be idempotent."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    run: Union[list[str], str] = Field(
        ...,
        description="argv list (run directly) or string (run through the shell)",
    )
    cwd: Optional[str] = Field(default=None, description="Working directory")
    env: dict[str, str] = Field(default_factory=dict, description="Extra environment")
    timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Kill the command after this many seconds (default: no timeout)",
    )
    run_if: Union[list[str], str, None] = Field(
        default=None,
        description="Only run when this check command exits 0",
    )

    @field_validator("run")
    @classmethod
    def run_not_empty(cls, v: Union[list[str], str]) -> Union[list[str], str]:
        if not v or (isinstance(v, str) and not v.strip()):
            raise ValueError("command must not be empty")
        return v


class _TaskFields(BaseModel):
    depends_on: list[str] = Field(
        default_factory=list,
        description="Ids of tasks that must finish first",
    )


class GitTaskConfig(RepoSpec, _TaskFields):
    kind: Literal["git"]


class LinkTaskConfig(LinkGroup, _TaskFields):
    kind: Literal["link"]


class CommandTaskConfig(CommandSpec, _TaskFields):
    kind: Literal["command"]


TaskConfig = Annotated[
    Union[GitTaskConfig, LinkTaskConfig, CommandTaskConfig],
    Field(discriminator="kind"),
]


class SettingsConfig(BaseModel):
    """Run-wide execution settings."""

    model_config = ConfigDict(extra="forbid")

    fail_fast: bool = Field(
        default=False,
        description="Stop dispatching new tasks after the first failure",
    )
    max_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Maximum number of tasks running at once",
    )
    log_dir: Optional[str] = Field(
        default=None,
        description="Directory for JSONL run logs (defaults to $XDG_STATE_HOME/upkeep/logs)",
    )
    log_events: bool = Field(default=True, description="Write structured run logs")


class UpkeepConfig(BaseModel):
    """
    Top-level upkeep configuration.

    Example (YAML):
        env:
          DOTFILES: ~/code/dotfiles
        tasks:
          dotfiles:
            kind: git
            url: git@example.com:me/dotfiles
            path: $DOTFILES
          links:
            kind: link
            depends_on: [dotfiles]
            conflict_policy: backup
            from_dir: $DOTFILES/home
            to_dir: ~
    """

    model_config = ConfigDict(extra="forbid")

    env: dict[str, str] = Field(
        default_factory=dict,
        description="Variables usable in paths and passed to commands; may reference each other",
    )
    inherit_env: list[str] = Field(
        default_factory=list,
        description="Process environment variables made available to env and commands",
    )
    env_file: Optional[str] = Field(default=None, description="dotenv file merged under env")
    settings: SettingsConfig = Field(default_factory=SettingsConfig)
    tasks: dict[str, TaskConfig] = Field(default_factory=dict)

    @field_validator("tasks")
    @classmethod
    def task_ids_valid(cls, v: dict[str, TaskConfig]) -> dict[str, TaskConfig]:
        for task_id in v:
            if not task_id.strip() or any(ch.isspace() for ch in task_id):
                raise ValueError(f"invalid task id {task_id!r}")
        return v
