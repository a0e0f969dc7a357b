import sys

import pytest

from cpc.config import Config
from cpc.core import Command, Session


def py(code: str) -> Command:
    """A command running a snippet of Python in a child interpreter."""
    return Command.of(sys.executable, "-c", code)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep cache files, reports and recovery logs inside the test's tmp dir."""
    monkeypatch.setattr(Config, "CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setattr(Config, "REPORT_DIR", str(tmp_path / "reports"))
    monkeypatch.setattr(Config, "TEST_MODE", False)
    monkeypatch.setattr(Config, "TERMINATE_GRACE_PERIOD", 0.5)
    (tmp_path / "cache").mkdir()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def session(tmp_path, sleeps):
    """A session that records retry delays instead of sleeping."""
    return Session.create(
        cache_dir=tmp_path / "cache",
        recovery_log=tmp_path / "recovery.log",
        debug=False,
        test_mode=False,
        sleep=sleeps.append,
        jitter=False,
    )


@pytest.fixture
def counter(tmp_path):
    """Build a command that counts its runs and fails until a given run.

    ``counter(succeed_on=3)`` exits 1 on runs 1 and 2 and 0 from run 3;
    ``succeed_on=None`` always fails with ``fail_code``. The number of runs
    is available as ``counter.runs()``.
    """
    counter_file = tmp_path / "counter.txt"

    def make(succeed_on=None, fail_code=1):
        limit = succeed_on if succeed_on is not None else 0
        code = (
            "import pathlib, sys\n"
            f"p = pathlib.Path({str(counter_file)!r})\n"
            "n = int(p.read_text()) + 1 if p.exists() else 1\n"
            "p.write_text(str(n))\n"
            f"sys.exit(0 if {limit} and n >= {limit} else {fail_code})\n"
        )
        return py(code)

    def runs():
        return int(counter_file.read_text()) if counter_file.exists() else 0

    make.runs = runs
    return make


@pytest.fixture
def py_cmd():
    return py
