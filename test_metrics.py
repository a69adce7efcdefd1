import csv
import json
import sys

import pytest

import main
from bottleneck_sim.scenarios import get_scenario, run_scenario
from bottleneck_sim.utils.metrics import (
    calculate_fairness_index,
    format_report,
    save_flows_to_csv,
    save_metrics_to_json,
)


@pytest.fixture(scope="module")
def report():
    return run_scenario(get_scenario("ip_spoofing"))


def test_fairness_index():
    assert calculate_fairness_index(flow_throughputs={1: 5.0, 2: 5.0}) == pytest.approx(1.0)
    assert calculate_fairness_index(flow_throughputs={1: 1.0, 2: 0.0}) == pytest.approx(0.5)
    assert calculate_fairness_index(flow_throughputs={}) == 0.0
    with pytest.raises(ValueError):
        calculate_fairness_index()


def test_fairness_of_report_without_receivers(report):
    assert calculate_fairness_index(report) == 0.0


def test_save_metrics_to_json(report, tmp_path):
    path = tmp_path / "out" / "spoof.json"
    save_metrics_to_json(report, str(path))

    data = json.loads(path.read_text())
    assert data["totals"]["flagged_packets"] == 6
    assert data["totals"]["tx_packets"] == 12
    assert len(data["flows"]) == 2
    assert data["flagged"][0]["source"] == "10.1.2.10"


def test_save_flows_to_csv(report, tmp_path):
    path = tmp_path / "flows.csv"
    save_flows_to_csv(report, str(path))

    with open(path, newline="") as f:
        rows = list(csv.DictReader(f))
    assert [row["source"] for row in rows] == ["10.1.1.10", "10.1.2.10"]
    assert {row["lost_packets"] for row in rows} == {"6"}


def test_format_report(report):
    text = "\n".join(format_report(report, "IP_SPOOFING"))
    assert "attacker TX packets: 12" in text
    assert "Spoofed packets flagged: 6" in text
    assert "Lost packets: 6" in text


def test_cli_lists_scenarios(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["main.py", "--list"])
    assert main.main() == 0
    output = capsys.readouterr().out
    assert "aqm_red" in output
    assert "ip_spoofing" in output


def test_cli_runs_scenario_and_saves(monkeypatch, capsys, tmp_path):
    output = tmp_path / "p2p.json"
    monkeypatch.setattr(
        sys, "argv", ["main.py", "--scenario", "point_to_point", "--output", str(output)]
    )
    assert main.main() == 0
    assert "POINT_TO_POINT SUMMARY" in capsys.readouterr().out
    assert json.loads(output.read_text())["totals"]["rx_packets"] == 1


def test_cli_reports_bad_config(monkeypatch, tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("name: bad\nduration: 1\nnodes: [a]\nlinks: [{a: a, b: z}]\n")
    monkeypatch.setattr(sys, "argv", ["main.py", "--config", str(path)])
    assert main.main() == 2
