"""Smoke tests for the pygame UI.

The main loop must initialise and run a handful of frames without raising
when the SDL dummy video driver is used. Rendering correctness and user
interaction are not checked here.
"""

from __future__ import annotations

import os

# Use the dummy drivers before importing pygame or the application
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


def test_app_runs_headless() -> None:
    # Import inside the test so that environment variables take effect
    from drill_trainer.app import run

    exit_code = run(max_frames=3)
    assert exit_code == 0


def test_main_entry_point_runs_app(monkeypatch) -> None:
    import drill_trainer.__main__ as entry

    calls: list[int] = []

    def fake_run() -> int:
        calls.append(1)
        return 0

    monkeypatch.setattr(entry, "run", fake_run)
    assert entry.main() == 0
    assert calls == [1]
