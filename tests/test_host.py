import sys

from ubu_smooth.host import NOT_EXECUTABLE, NOT_FOUND, CommandRunner


def test_missing_tool_maps_to_not_found(tmp_path):
    result = CommandRunner().run([str(tmp_path / "no-such-tool")])

    assert result.returncode == NOT_FOUND
    assert not result.ok


def test_non_executable_file_does_not_raise(tmp_path):
    script = tmp_path / "sysbench"
    script.write_text("#!/bin/sh\necho hi\n")
    script.chmod(0o644)

    result = CommandRunner().run([str(script)])

    assert result.returncode == NOT_EXECUTABLE
    assert "sysbench" in result.stderr


def test_undecodable_output_is_replaced():
    code = "import sys; sys.stdout.buffer.write(b'events per second: \\xff\\xfe 12\\n')"

    result = CommandRunner().run([sys.executable, "-c", code])

    assert result.ok
    assert result.stdout.startswith("events per second: ")
    assert "�" in result.stdout
