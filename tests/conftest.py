from __future__ import annotations

from pathlib import Path

import pytest

from seqci.env import RunContext
from seqci.ui.console import Console, set_console


class FakeLauncher:
    """Records every launch; exit status per step name (default 0)."""

    def __init__(self, statuses=None, on_launch=None):
        self.statuses = dict(statuses or {})
        self.on_launch = on_launch
        self.calls = []

    def launch(self, step, env, cwd: Path) -> int:
        self.calls.append((step.display_name, env, cwd))
        if self.on_launch is not None:
            self.on_launch(step, env)
        return self.statuses.get(step.display_name, 0)

    @property
    def names(self):
        return [c[0] for c in self.calls]


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def context(tmp_path):
    return RunContext(environment={"CI": "true"}, workdir=tmp_path)


@pytest.fixture(autouse=True)
def console():
    c = Console()
    set_console(c)
    return c
