"""
Directive parsing for job submission scripts.

Jobs ask for a Lustre On Demand filesystem through ``#LOD`` lines in the
leading comment block of their batch script:

    #!/bin/bash
    #SBATCH -N 4
    #LOD setup node=n[1-4] mdtdevs=/dev/sdb ostdevs=/dev/sdc
    #LOD stage_in source=/home/u/in destination=/lod/in
    #LOD stage_out source=/lod/out destination=/home/u/out
    #LOD stop

``extract_directives`` pulls those lines out of the script (this text is
what the host stores as the job's burst buffer request) and
``parse_directives`` turns it into an immutable ``StagingOptions``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .config.base import DEFAULT_CONFIG_PATH
from .errors import InvalidRequestError

DIRECTIVE_PREFIX = "#LOD"

VERB_SETUP = "setup"
VERB_STAGE_IN = "stage_in"
VERB_STAGE_OUT = "stage_out"
VERB_STOP = "stop"

# Directive key -> StagingOptions attribute
SETUP_KEYS: dict[str, str] = {
    "node": "nodes",
    "mdtdevs": "mdt_devices",
    "ostdevs": "ost_devices",
    "inet": "network_spec",
    "mountpoint": "mount_point",
}

TRANSFER_KEYS: dict[str, str] = {
    "source": "source",
    "sourcelist": "source_list",
    "destination": "destination",
}


@dataclass(frozen=True)
class TransferSpec:
    """One stage-in or stage-out transfer."""

    source: str | None = None
    source_list: str | None = None
    destination: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "source_list": self.source_list,
            "destination": self.destination,
        }


@dataclass(frozen=True)
class StagingOptions:
    """Parsed staging request of one job. Never mutated after parsing."""

    wants_setup: bool = False
    wants_stage_in: bool = False
    wants_stage_out: bool = False
    needs_stop: bool = False

    # Filesystem resources
    nodes: str | None = None
    mdt_devices: str | None = None
    ost_devices: str | None = None
    network_spec: str | None = None
    mount_point: str | None = None

    # Transfers
    stage_in: TransferSpec | None = None
    stage_out: TransferSpec | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "wants_setup": self.wants_setup,
            "wants_stage_in": self.wants_stage_in,
            "wants_stage_out": self.wants_stage_out,
            "needs_stop": self.needs_stop,
            "nodes": self.nodes,
            "mdt_devices": self.mdt_devices,
            "ost_devices": self.ost_devices,
            "network_spec": self.network_spec,
            "mount_point": self.mount_point,
            "stage_in": self.stage_in.to_dict() if self.stage_in else None,
            "stage_out": self.stage_out.to_dict() if self.stage_out else None,
        }


@dataclass
class StagingOptionsBuilder:
    """Accumulates directives into a StagingOptions.

    Overwrite rules:
    - ``setup`` replaces only the resource keys it carries
    - ``stage_in`` / ``stage_out`` replace the whole transfer (last wins)
    """

    _options: StagingOptions = field(default_factory=StagingOptions)

    def setup(self, **resources: str) -> StagingOptionsBuilder:
        unknown = set(resources) - set(SETUP_KEYS.values())
        if unknown:
            raise ValueError(f"Unknown setup resources: {sorted(unknown)}")
        self._options = replace(self._options, wants_setup=True, **resources)
        return self

    def stage_in(self, transfer: TransferSpec) -> StagingOptionsBuilder:
        self._options = replace(self._options, wants_stage_in=True, stage_in=transfer)
        return self

    def stage_out(self, transfer: TransferSpec) -> StagingOptionsBuilder:
        self._options = replace(self._options, wants_stage_out=True, stage_out=transfer)
        return self

    def stop(self) -> StagingOptionsBuilder:
        self._options = replace(self._options, needs_stop=True)
        return self

    def build(self) -> StagingOptions:
        return self._options


# =============================================================================
# Extraction
# =============================================================================


def _is_directive(line: str) -> bool:
    return line.startswith(DIRECTIVE_PREFIX)


def extract_directives(script: str | None) -> str | None:
    """
    Collect the ``#LOD`` lines from the leading comment block of a script.

    Scanning stops at the first non-blank line that does not start with
    ``#``. Other comment lines are skipped. A directive ending in a
    backslash continues on the next ``#LOD`` line; the continuation's
    prefix is dropped, as is its leading whitespace when the backslash
    was itself preceded by whitespace.

    Returns:
        Logical directive lines joined by newlines, or None if there are none
    """
    if not script:
        return None

    logical: list[str] = []
    continued = False
    had_space = False

    for line in script.split("\n"):
        if not line:
            continue
        if not line.startswith("#"):
            break
        if not _is_directive(line):
            continued = False
            continue

        if continued:
            line = line[len(DIRECTIVE_PREFIX):]
            if had_space:
                line = line.lstrip()

        if line.endswith("\\"):
            had_space = len(line) > 1 and line[-2].isspace()
            fragment = line[:-1]
        else:
            fragment = line

        if continued:
            logical[-1] += fragment
        else:
            logical.append(fragment)
        continued = line.endswith("\\")

    if not logical:
        return None
    return "\n".join(logical)


# =============================================================================
# Parsing
# =============================================================================


def _split_directive(line: str) -> tuple[str, dict[str, str]]:
    """Split ``#LOD verb k=v ...`` into the verb and its key/value pairs."""
    words = line[len(DIRECTIVE_PREFIX):].split()
    if not words:
        return "", {}
    params: dict[str, str] = {}
    for word in words[1:]:
        key, sep, value = word.partition("=")
        if sep:
            params[key] = value
    return words[0], params


def _transfer(params: dict[str, str]) -> TransferSpec:
    return TransferSpec(**{attr: params.get(key) for key, attr in TRANSFER_KEYS.items()})


def parse_directives(
    text: str | None,
    *,
    default_config_path: str | Path = DEFAULT_CONFIG_PATH,
) -> StagingOptions | None:
    """
    Parse and validate directive text into StagingOptions.

    Args:
        text: Directive text, as produced by ``extract_directives``
        default_config_path: Tool configuration that supplies device
            defaults when a ``setup`` names no mdtdevs/ostdevs

    Returns:
        StagingOptions, or None when the text holds no ``#LOD`` directive

    Raises:
        InvalidRequestError: If a directive is incomplete
    """
    if not text:
        return None

    builder = StagingOptionsBuilder()
    found = False
    seen_setup = False

    for line in text.split("\n"):
        if not line:
            continue
        if not line.startswith("#"):
            break
        if not _is_directive(line):
            continue

        found = True
        verb, params = _split_directive(line)

        if verb == VERB_SETUP:
            if ("mdtdevs" not in params or "ostdevs" not in params) and not Path(
                default_config_path
            ).exists():
                raise InvalidRequestError(
                    f"setup without mdtdevs/ostdevs requires {default_config_path}",
                    directive=line,
                )
            seen_setup = True
            builder.setup(**{attr: params[key] for key, attr in SETUP_KEYS.items() if key in params})
        elif verb in (VERB_STAGE_IN, VERB_STAGE_OUT):
            if "source" not in params or "destination" not in params:
                raise InvalidRequestError(
                    f"{verb} requires source and destination",
                    directive=line,
                )
            if verb == VERB_STAGE_IN:
                builder.stage_in(_transfer(params))
            else:
                builder.stage_out(_transfer(params))
        elif verb == VERB_STOP:
            if not seen_setup:
                raise InvalidRequestError("stop requires a preceding setup", directive=line)
            builder.stop()

    if not found:
        return None
    return builder.build()


def parse_script(
    script: str | None,
    *,
    default_config_path: str | Path = DEFAULT_CONFIG_PATH,
) -> StagingOptions | None:
    """Extract and parse the directives of a submission script."""
    return parse_directives(extract_directives(script), default_config_path=default_config_path)


__all__ = [
    "DIRECTIVE_PREFIX",
    "TransferSpec",
    "StagingOptions",
    "StagingOptionsBuilder",
    "extract_directives",
    "parse_directives",
    "parse_script",
]
