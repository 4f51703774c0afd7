import csv
import json

import pytest

from flocksim.app.headless import run_headless


def _read_csv(path):
    with path.open(newline="") as handle:
        return list(csv.reader(handle))


def _write_small_config(tmp_path, population=30):
    path = tmp_path / "small.yaml"
    path.write_text(f"population: {population}\nworkers: 2\n")
    return path


def test_headless_basic_log_header(tmp_path):
    log_path = tmp_path / "basic.csv"
    run_headless(
        steps=2,
        seed=1,
        log_path=log_path,
        deterministic_log=True,
        log_format="basic",
        config_path=_write_small_config(tmp_path),
    )
    rows = _read_csv(log_path)
    assert len(rows) == 3
    assert rows[0] == ["tick", "population", "avg_speed", "polarization", "tick_ms"]
    assert rows[1][1] == "30"
    assert rows[1][4] == "0.000"


def test_headless_detailed_log_header_and_ratios(tmp_path):
    log_path = tmp_path / "detailed.csv"
    run_headless(
        steps=3,
        seed=2,
        log_path=log_path,
        deterministic_log=True,
        log_format="detailed",
        config_path=_write_small_config(tmp_path),
    )
    rows = _read_csv(log_path)
    assert len(rows) == 4
    header = rows[0]
    assert header == [
        "tick",
        "population",
        "avg_speed",
        "polarization",
        "boundary_nudges",
        "raised_to_min",
        "lowered_to_max",
        "at_rest",
        "index_generation",
        "index_age_ms",
        "tick_ms",
        "tick_ms_per_agent",
        "min_speed",
        "max_speed",
        "centroid_x",
        "centroid_y",
        "outside_region",
    ]
    idx = {name: i for i, name in enumerate(header)}
    for row in rows[1:]:
        assert 2.0 - 1e-3 <= float(row[idx["min_speed"]]) <= float(row[idx["max_speed"]]) <= 4.0 + 1e-3
        assert float(row[idx["tick_ms"]]) == 0.0
        assert float(row[idx["index_age_ms"]]) == 0.0
        assert 0.0 <= float(row[idx["polarization"]]) <= 1.0
    assert [int(row[idx["index_generation"]]) for row in rows[1:]] == [2, 3, 4]


def test_headless_deterministic_logs_match(tmp_path):
    config_path = _write_small_config(tmp_path, population=40)
    first = tmp_path / "a.csv"
    second = tmp_path / "b.csv"
    run_headless(steps=5, seed=8, log_path=first, deterministic_log=True, config_path=config_path)
    run_headless(steps=5, seed=8, log_path=second, deterministic_log=True, config_path=config_path, workers=1)
    assert first.read_text() == second.read_text()


def test_headless_summary_output(tmp_path):
    log_path = tmp_path / "summary.csv"
    summary_path = tmp_path / "summary.json"
    metrics = run_headless(
        steps=4,
        seed=3,
        log_path=log_path,
        deterministic_log=True,
        log_format="basic",
        summary_path=summary_path,
        summary_window=2,
        config_path=_write_small_config(tmp_path),
        target=(10.0, -5.0),
    )
    payload = json.loads(summary_path.read_text())
    assert payload["steps"] == 4
    assert payload["seed"] == 3
    assert payload["population"] == 30
    assert payload["log_format"] == "basic"
    assert "tick_ms" in payload
    assert "polarization" in payload
    assert payload["tail_window"]["window"] == 2
    assert metrics.tick == 3


def test_headless_rejects_unknown_log_format(tmp_path):
    with pytest.raises(ValueError):
        run_headless(steps=1, seed=1, log_path=None, log_format="verbose")
