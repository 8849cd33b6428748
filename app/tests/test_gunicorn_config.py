import runpy
from pathlib import Path

CONFIG = Path(__file__).resolve().parents[2] / "gunicorn.conf.py"


def test_single_worker_unless_overridden(monkeypatch):
    monkeypatch.delenv("TOURBOOK_WORKERS", raising=False)
    assert runpy.run_path(str(CONFIG))["workers"] == 1

    monkeypatch.setenv("TOURBOOK_WORKERS", "4")
    assert runpy.run_path(str(CONFIG))["workers"] == 4
