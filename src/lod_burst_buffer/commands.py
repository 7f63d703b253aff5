"""
Command lines for the ``lod`` staging tool.

Every invocation has the form ``lod [--flag=value ...] <verb>``. Flags are
emitted in a fixed order and only when a value is present.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .directives import StagingOptions, TransferSpec

TOOL_NAME = "lod"


class ToolVerb(str, Enum):
    """Sub-command passed as the last argument to the tool."""

    START = "start"
    STAGE_IN = "stage_in"
    STAGE_OUT = "stage_out"
    STOP = "stop"


@dataclass
class CommandBuilder:
    """Ordered ``--flag=value`` pairs followed by a verb."""

    verb: ToolVerb
    program: str = TOOL_NAME
    _flags: list[tuple[str, str]] = field(default_factory=list, init=False)

    def flag(self, name: str, value: str | None) -> CommandBuilder:
        """Append ``--name=value``; a missing value is skipped."""
        if value is not None:
            self._flags.append((name, value))
        return self

    def resources(self, options: StagingOptions, nodes: str | None) -> CommandBuilder:
        return (
            self.flag("node", nodes)
            .flag("mdtdevs", options.mdt_devices)
            .flag("ostdevs", options.ost_devices)
            .flag("inet", options.network_spec)
            .flag("mountpoint", options.mount_point)
        )

    @property
    def flags(self) -> list[tuple[str, str]]:
        return list(self._flags)

    def build(self) -> list[str]:
        return [self.program, *(f"--{name}={value}" for name, value in self._flags), self.verb.value]


def _nodes(options: StagingOptions, fallback: str | None) -> str | None:
    # Nodes named in the directives win over the host's node list
    return options.nodes if options.nodes is not None else (fallback or None)


def build_setup_command(options: StagingOptions, requested_nodes: str | None = None) -> list[str]:
    """``lod ... start``, using the job's requested nodes when none are given."""
    return CommandBuilder(ToolVerb.START).resources(options, _nodes(options, requested_nodes)).build()


def build_stage_in_command(options: StagingOptions, requested_nodes: str | None = None) -> list[str]:
    """``lod ... --source --sourcelist --destination stage_in``."""
    transfer = options.stage_in or TransferSpec()
    return (
        CommandBuilder(ToolVerb.STAGE_IN)
        .resources(options, _nodes(options, requested_nodes))
        .flag("source", transfer.source)
        .flag("sourcelist", transfer.source_list)
        .flag("destination", transfer.destination)
        .build()
    )


def build_stage_out_command(options: StagingOptions, allocated_nodes: str | None = None) -> list[str]:
    """``lod ... --sourcelist --source --destination stage_out``."""
    transfer = options.stage_out or TransferSpec()
    return (
        CommandBuilder(ToolVerb.STAGE_OUT)
        .resources(options, _nodes(options, allocated_nodes))
        .flag("sourcelist", transfer.source_list)
        .flag("source", transfer.source)
        .flag("destination", transfer.destination)
        .build()
    )


def build_teardown_command(options: StagingOptions, allocated_nodes: str | None = None) -> list[str]:
    """``lod ... stop``, using the job's allocated nodes when none are given."""
    return CommandBuilder(ToolVerb.STOP).resources(options, _nodes(options, allocated_nodes)).build()


__all__ = [
    "TOOL_NAME",
    "ToolVerb",
    "CommandBuilder",
    "build_setup_command",
    "build_stage_in_command",
    "build_stage_out_command",
    "build_teardown_command",
]
