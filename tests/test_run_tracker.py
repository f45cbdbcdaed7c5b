from __future__ import annotations

import pytest

from wcsim.config import SimulationConfig
from wcsim.run_tracker import main


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("WCSIM_TRIALS", "WCSIM_SEED", "WCSIM_WORKERS"):
        monkeypatch.delenv(var, raising=False)


def test_config_from_env(monkeypatch) -> None:
    monkeypatch.setenv("WCSIM_TRIALS", "250")
    monkeypatch.setenv("WCSIM_SEED", "9")
    config = SimulationConfig.from_env(workers=2, tie_break=None)
    assert (config.n_trials, config.seed, config.workers, config.tie_break) == (250, 9, 2, "input")


def test_config_rejects_unknown_tie_break() -> None:
    with pytest.raises(ValueError):
        SimulationConfig(tie_break="fair_play")


def test_tracker_reports_arlington_opener(capsys) -> None:
    assert main(["--offline", "--trials", "40", "--seed", "1"]) == 0
    out = capsys.readouterr().out
    assert "Match 78" in out
    assert "Group E finishing positions" in out
    assert "Group I finishing positions" in out
    assert "AT&T Stadium" in out


def test_tracker_match_odds(capsys) -> None:
    assert main(["--offline", "--odds", "Germany", "Ecuador"]) == 0
    out = capsys.readouterr().out
    assert "Germany" in out and "p_draw" in out


def test_tracker_saves_charts(tmp_path) -> None:
    out = tmp_path / "advancement.png"
    assert main(["--offline", "--trials", "20", "--seed", "2", "--match", "88", "--plot", str(out)]) == 0
    assert out.exists()
    assert (tmp_path / "advancement_match_88.png").exists()


def test_tracker_bad_override_file_fails(tmp_path) -> None:
    bad = tmp_path / "groups.csv"
    bad.write_text("group,home_team\nA,Mexico\n")
    assert main(["--offline", "--trials", "10", "--group-results", str(bad)]) == 1
