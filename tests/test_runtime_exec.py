import os
import sys
import time
from pathlib import Path

import pytest

from tengine.errors import ConfigurationError, ToolFailure, TransformTimeoutError
from tengine.runtime_exec import CommandTemplate, RuntimeExec

pytestmark = pytest.mark.skipif(os.name == "nt", reason="fake tools are POSIX shell wrappers")


def make_tool(tmp_path: Path, name: str, body: str) -> Path:
    """Write a Python script plus a /bin/sh wrapper that execs it; return the wrapper."""
    script = tmp_path / f"{name}.py"
    script.write_text(body, encoding="utf-8")
    exe = tmp_path / name
    exe.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n', encoding="utf-8")
    exe.chmod(0o755)
    return exe


def test_build_command_expands_options_and_paths() -> None:
    rt = RuntimeExec(
        commands=[CommandTemplate(".*", ("tool", "SPLIT:${options}", "${source}", "${target}"))]
    )
    argv = rt.build_command(
        "application/pdf;image/png",
        {"options": ["--page=0", "--width=10"], "source": "/in/a b.pdf", "target": "/out/x.png"},
    )
    assert argv == ["tool", "--page=0", "--width=10", "/in/a b.pdf", "/out/x.png"]


def test_build_command_drops_unset_placeholder_and_uses_defaults() -> None:
    rt = RuntimeExec(
        commands=[CommandTemplate(".*", ("tool", "${key}", "--mode=${mode}", "${options}"))],
        default_properties={"key": None, "mode": "fast"},
    )
    assert rt.build_command("x", {"options": []}) == ["tool", "--mode=fast"]
    assert rt.build_command("x", {"key": "k1", "options": ["-q"]}) == ["tool", "k1", "--mode=fast", "-q"]


def test_template_selection_by_key() -> None:
    rt = RuntimeExec(
        commands=[
            CommandTemplate(r"application/pdf;.*", ("pdftool",)),
            CommandTemplate(r".*;text/plain", ("texttool",)),
        ]
    )
    assert rt.build_command("application/pdf;image/png") == ["pdftool"]
    assert rt.build_command("text/html;text/plain") == ["texttool"]
    with pytest.raises(ConfigurationError):
        rt.build_command("image/gif;image/png")


def test_execute_success_captures_output(tmp_path: Path) -> None:
    exe = make_tool(tmp_path, "ok", "import sys\nprint('done', *sys.argv[1:])\n")
    rt = RuntimeExec(commands=[CommandTemplate(".*", (str(exe), "${options}"))])
    res = rt.execute({"options": ["a", "b"]})
    assert res.success and res.exit_code == 0
    assert res.stdout.strip() == "done a b"


def test_exit_code_classification(tmp_path: Path) -> None:
    fail = make_tool(tmp_path, "fail", "import sys\nsys.stderr.write('broken input')\nsys.exit(1)\n")
    odd = make_tool(tmp_path, "odd", "import sys\nsys.exit(3)\n")
    rt_fail = RuntimeExec(commands=[CommandTemplate(".*", (str(fail),))], error_codes=frozenset({1}))
    res = rt_fail.execute()
    assert not res.success
    assert res.diagnostics == "broken input"
    rt_odd = RuntimeExec(commands=[CommandTemplate(".*", (str(odd),))], error_codes=frozenset({1}))
    res = rt_odd.execute()
    assert res.success and res.exit_code == 3


def test_default_error_codes_include_two(tmp_path: Path) -> None:
    exe = make_tool(tmp_path, "two", "import sys\nsys.exit(2)\n")
    rt = RuntimeExec(commands=[CommandTemplate(".*", (str(exe),))])
    assert not rt.execute().success


def test_timeout_kills_process(tmp_path: Path) -> None:
    pid_file = tmp_path / "pid"
    exe = make_tool(
        tmp_path,
        "sleepy",
        f"import os, time\nopen({str(pid_file)!r}, 'w').write(str(os.getpid()))\ntime.sleep(60)\n",
    )
    rt = RuntimeExec(commands=[CommandTemplate(".*", (str(exe),))])
    t0 = time.monotonic()
    with pytest.raises(TransformTimeoutError):
        rt.execute(timeout_ms=2000)
    assert time.monotonic() - t0 < 15
    assert pid_file.exists()
    pid = int(pid_file.read_text())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


def is_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    stat = Path(f"/proc/{pid}/stat")
    try:
        # Killed but not yet reaped by init
        return stat.read_text().rsplit(")", 1)[1].split()[0] != "Z"
    except (OSError, IndexError):
        return True


def test_timeout_kills_grandchildren(tmp_path: Path) -> None:
    pid_file = tmp_path / "pid"
    script = tmp_path / "worker.py"
    script.write_text(
        f"import os, time\nopen({str(pid_file)!r}, 'w').write(str(os.getpid()))\ntime.sleep(60)\n",
        encoding="utf-8",
    )
    # No exec: the shell stays as the direct child and python runs underneath it
    exe = tmp_path / "wrapper"
    exe.write_text(f'#!/bin/sh\n"{sys.executable}" "{script}" "$@"\necho done\n', encoding="utf-8")
    exe.chmod(0o755)
    rt = RuntimeExec(commands=[CommandTemplate(".*", (str(exe),))])
    t0 = time.monotonic()
    with pytest.raises(TransformTimeoutError):
        rt.execute(timeout_ms=2000)
    assert time.monotonic() - t0 < 15
    pid = int(pid_file.read_text())
    deadline = time.monotonic() + 5
    while is_running(pid) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert not is_running(pid)


def test_timeout_error_is_a_timeout() -> None:
    assert issubclass(TransformTimeoutError, TimeoutError)


def test_missing_program_is_tool_failure(tmp_path: Path) -> None:
    rt = RuntimeExec(commands=[CommandTemplate(".*", (str(tmp_path / "nope"),))])
    with pytest.raises(ToolFailure):
        rt.execute()
