"""
Tests for staging tool command lines.
"""

from lod_burst_buffer.commands import (
    CommandBuilder,
    ToolVerb,
    build_setup_command,
    build_stage_in_command,
    build_stage_out_command,
    build_teardown_command,
)
from lod_burst_buffer.directives import StagingOptions, TransferSpec

OPTIONS = StagingOptions(
    wants_setup=True,
    wants_stage_in=True,
    wants_stage_out=True,
    needs_stop=True,
    mdt_devices="a",
    ost_devices="b",
    stage_in=TransferSpec(source="/a", destination="/b"),
    stage_out=TransferSpec(source="/lod/out", source_list="/tmp/list", destination="/home/out"),
)


class TestCommandBuilder:
    """Test the ordered flag builder."""

    def test_skips_missing_values(self):
        argv = CommandBuilder(ToolVerb.START).flag("node", None).flag("inet", "tcp").build()
        assert argv == ["lod", "--inet=tcp", "start"]

    def test_flags_keep_order(self):
        builder = CommandBuilder(ToolVerb.STOP).flag("b", "2").flag("a", "1")
        assert builder.flags == [("b", "2"), ("a", "1")]


class TestBuildCommands:
    """Test the argv of each phase."""

    def test_setup(self):
        assert build_setup_command(OPTIONS) == ["lod", "--mdtdevs=a", "--ostdevs=b", "start"]

    def test_stage_in(self):
        assert build_stage_in_command(OPTIONS) == [
            "lod",
            "--mdtdevs=a",
            "--ostdevs=b",
            "--source=/a",
            "--destination=/b",
            "stage_in",
        ]

    def test_stage_out_puts_sourcelist_first(self):
        assert build_stage_out_command(OPTIONS, "c[1-4]") == [
            "lod",
            "--node=c[1-4]",
            "--mdtdevs=a",
            "--ostdevs=b",
            "--sourcelist=/tmp/list",
            "--source=/lod/out",
            "--destination=/home/out",
            "stage_out",
        ]

    def test_teardown(self):
        assert build_teardown_command(OPTIONS) == ["lod", "--mdtdevs=a", "--ostdevs=b", "stop"]

    def test_all_resources_in_order(self):
        options = StagingOptions(
            wants_setup=True,
            nodes="n1",
            mdt_devices="m",
            ost_devices="o",
            network_spec="o2ib",
            mount_point="/lod",
        )
        assert build_setup_command(options) == [
            "lod",
            "--node=n1",
            "--mdtdevs=m",
            "--ostdevs=o",
            "--inet=o2ib",
            "--mountpoint=/lod",
            "start",
        ]

    def test_host_nodes_used_when_none_given(self):
        assert build_setup_command(OPTIONS, "r[1-2]")[1] == "--node=r[1-2]"
        assert build_teardown_command(OPTIONS, "c[1-4]")[1] == "--node=c[1-4]"

    def test_directive_nodes_win(self):
        options = StagingOptions(wants_setup=True, nodes="n1")
        assert build_setup_command(options, "r[1-2]") == ["lod", "--node=n1", "start"]

    def test_empty_host_nodes_ignored(self):
        assert build_setup_command(StagingOptions(), "") == ["lod", "start"]
