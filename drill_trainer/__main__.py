from __future__ import annotations

import sys
from pathlib import Path


def _ensure_repo_root_on_path() -> None:
    """Put the repository root (parent of this package) on ``sys.path``.

    Running ``python drill_trainer/__main__.py`` directly does not make the
    package importable, so the parent directory is inserted by hand.
    """
    repo_root = str(Path(__file__).resolve().parent.parent)
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


try:
    # python -m drill_trainer
    from .app import run  # type: ignore[attr-defined]
except ImportError:
    # Executed as a plain script.
    _ensure_repo_root_on_path()
    from drill_trainer.app import run  # type: ignore[attr-defined]


def main() -> int:
    """Entry point for the ``drill-trainer`` command."""
    return run()


if __name__ == "__main__":
    raise SystemExit(main())
