import time

import pytest

from cpc.config import Config
from cpc.core import Command, ErrorCode, ErrorRegistry, Severity, TimeoutSupervisor, ansible_cleanup, terraform_cleanup

HANG = "import time; time.sleep(30)"


@pytest.fixture
def supervisor():
    return TimeoutSupervisor(ErrorRegistry(), grace_period=0.5)


def test_exit_status_is_passed_through(supervisor, py_cmd):
    assert supervisor.run(py_cmd("pass"), 10) == 0
    assert supervisor.run(py_cmd("raise SystemExit(7)"), 10) == 7
    assert supervisor.errors.count == 0
    assert supervisor.active_count() == 0


def test_no_timeout_waits_for_completion(supervisor, py_cmd):
    assert supervisor.run(py_cmd("import time; time.sleep(0.2)"), None) == 0


def test_timeout_returns_124_and_records_error(supervisor, py_cmd):
    started = time.monotonic()
    exit_code = supervisor.run(py_cmd(HANG), 0.5, "tofu apply")

    assert exit_code == 124
    assert time.monotonic() - started < 10
    record = supervisor.errors.last
    assert record.code is ErrorCode.TIMEOUT
    assert record.severity is Severity.HIGH
    assert record.message == "tofu apply timed out after 0.5s"
    assert supervisor.active_count() == 0


def test_cleanup_runs_once_on_timeout(supervisor, py_cmd):
    calls = []
    exit_code = supervisor.run_with_cleanup(py_cmd(HANG), 0.3, lambda: calls.append("cleanup"))
    assert exit_code == 124
    assert calls == ["cleanup"]


def test_cleanup_not_run_when_command_finishes(supervisor, py_cmd):
    calls = []
    assert supervisor.run_with_cleanup(py_cmd("raise SystemExit(3)"), 10, lambda: calls.append(1)) == 3
    assert calls == []


def test_cleanup_failure_does_not_change_result(supervisor, py_cmd):
    def cleanup():
        raise RuntimeError("pkill exploded")

    assert supervisor.run_with_cleanup(py_cmd(HANG), 0.3, cleanup) == 124
    assert supervisor.run_with_cleanup(py_cmd(HANG), 0.3, py_cmd("raise SystemExit(1)")) == 124
    assert [r.code for r in supervisor.errors.records] == [ErrorCode.TIMEOUT, ErrorCode.TIMEOUT]


def test_process_ignoring_sigterm_is_killed(supervisor, py_cmd):
    stubborn = py_cmd(
        "import signal, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        "time.sleep(30)\n"
    )
    started = time.monotonic()
    assert supervisor.run(stubborn, 0.5) == 124
    assert time.monotonic() - started < 10


def test_progress_callback_is_invoked(supervisor, py_cmd):
    ticks = []
    exit_code = supervisor.run_with_progress(
        py_cmd("import time; time.sleep(1)"), 10, progress_interval=0.2,
        on_progress=lambda elapsed, remaining: ticks.append((elapsed, remaining))
    )
    assert exit_code == 0
    assert ticks
    for elapsed, remaining in ticks:
        assert elapsed > 0
        assert remaining < 10


def test_progress_with_timeout_and_default_reporter(supervisor, py_cmd):
    assert supervisor.run_with_progress(py_cmd(HANG), 0.5, progress_interval=0.1) == 124


def test_progress_interval_must_be_positive(supervisor, py_cmd):
    with pytest.raises(ValueError):
        supervisor.run_with_progress(py_cmd("pass"), 10, progress_interval=0)


def test_missing_binary_returns_127(supervisor):
    assert supervisor.run(Command.of("definitely-not-a-real-binary-cpc"), 5) == 127
    assert supervisor.errors.last.code is ErrorCode.EXECUTION


def test_non_executable_file_returns_126(supervisor, tmp_path):
    script = tmp_path / "script.sh"
    script.write_text("#!/bin/sh\nexit 0\n")
    script.chmod(0o644)
    assert supervisor.run(Command.of(str(script)), 5) == 126


def test_environment_and_cwd_are_applied(supervisor, py_cmd, tmp_path):
    command = Command.of(
        *py_cmd("import os, sys; sys.exit(0 if os.environ['CPC_ENV'] == 'dev' and os.getcwd() == sys.argv[1] else 1)").argv,
        str(tmp_path),
        env={"CPC_ENV": "dev"},
        cwd=str(tmp_path),
    )
    assert supervisor.run(command, 10) == 0


def test_check_budget(supervisor):
    assert supervisor.check_budget(time.time(), 60, "bootstrap")
    assert supervisor.errors.count == 0

    assert not supervisor.check_budget(time.time() - 120, 60, "bootstrap")
    assert supervisor.errors.last.code is ErrorCode.TIMEOUT
    assert "bootstrap exceeded time budget" in supervisor.errors.last.message


def test_cancel_all_without_active_processes(supervisor):
    assert supervisor.cancel_all() == 0


def test_presets_use_configured_timeouts(supervisor, py_cmd, monkeypatch):
    monkeypatch.setattr(Config, "KUBECTL_TIMEOUT", 0.3)
    assert supervisor.kubectl_operation(py_cmd(HANG)) == 124
    assert "kubectl operation timed out after 0.3s" in supervisor.errors.last.message
    assert supervisor.network_operation(py_cmd("pass")) == 0


def test_cleanup_presets():
    assert ansible_cleanup().argv == ("pkill", "-f", "ansible-playbook")
    assert terraform_cleanup().argv == ("pkill", "-f", "terraform|tofu")


def _running(pid):
    """True while the process exists and is not a zombie."""
    try:
        with open(f"/proc/{pid}/status") as f:
            for line in f:
                if line.startswith("State:"):
                    return line.split()[1] != "Z"
    except FileNotFoundError:
        return False
    return False


def test_group_members_ignoring_sigterm_are_killed(supervisor, py_cmd, tmp_path):
    pid_file = tmp_path / "child.pid"
    child = (
        "import os, signal, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        f"open({str(pid_file)!r}, 'w').write(str(os.getpid()))\n"
        "time.sleep(30)\n"
    )
    # the leader exits on SIGTERM, its child does not
    leader = py_cmd(
        "import subprocess, sys, time\n"
        f"subprocess.Popen([sys.executable, '-c', {child!r}])\n"
        "time.sleep(30)\n"
    )

    assert supervisor.run(leader, 1.5) == 124
    pid = int(pid_file.read_text())
    deadline = time.monotonic() + 5
    while _running(pid) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert not _running(pid)


def test_signal_kill_maps_to_shell_status(supervisor, py_cmd):
    assert supervisor.run(py_cmd("import os, signal; os.kill(os.getpid(), signal.SIGKILL)"), 10) == 137


def test_timeout_count_only_counts_timeouts(supervisor, py_cmd):
    supervisor.run(py_cmd("pass"), 10)
    assert supervisor.timeout_count == 0
    supervisor.run(py_cmd(HANG), 0.3)
    assert supervisor.timeout_count == 1


def test_presets_read_the_supervisor_config(py_cmd):
    settings = Config()
    settings.NETWORK_TIMEOUT = 0.3
    supervisor = TimeoutSupervisor(ErrorRegistry(), grace_period=0.5, config=settings)
    assert supervisor.network_operation(py_cmd(HANG)) == 124
    assert Config.NETWORK_TIMEOUT != 0.3
