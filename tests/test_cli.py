"""Tests for the laundromat-audit command line entry point."""

import json

import pytest

from laundromat_audit.cli import (
    EXIT_CONFIGURATION_ERROR,
    EXIT_INPUT_ERROR,
    EXIT_OK,
    analyze_cli,
)


@pytest.fixture
def input_file(tmp_path):
    payload = {
        "transactions": [
            {"customer": "ana", "timestamp": "2024-03-02T10:00:00", "amount": "18", "store": "CENTRO"},
            {"customer": "ana", "timestamp": "2024-03-09T10:00:00", "amount": "18", "store": "CENTRO"},
            {"customer": "ana", "timestamp": "not a date", "amount": "18"},
        ],
        "orders": [
            {"timestamp": "2024-03-02T10:00:00", "store": "CENTRO", "machine": "L2"},
            {"timestamp": "2024-03-09T10:00:00", "store": "CENTRO", "machine": "L2"},
        ],
        "customer_directory": [{"customer": "Ana", "phone": "11955554444", "gender": "F"}],
    }
    path = tmp_path / "input.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


class TestAnalyzeCli:
    def test_writes_output_file(self, input_file, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        output = tmp_path / "out" / "result.json"

        assert analyze_cli([str(input_file), "--output", str(output)]) == EXIT_OK

        payload = json.loads(output.read_text(encoding="utf-8"))
        assert payload["profiles"][0]["name"] == "ANA"
        assert payload["profiles"][0]["phone"] == "11955554444"
        assert payload["profiles"][0]["gender"] == "F"
        assert payload["skipped_records"]["count"] == 1

    def test_prints_to_stdout(self, input_file, capsys):
        assert analyze_cli([str(input_file), "--parallel"]) == EXIT_OK
        payload = json.loads(capsys.readouterr().out)
        assert payload["summary"]["total_customers"] == 1

    def test_config_overrides(self, input_file, tmp_path, capsys):
        config = tmp_path / "config.json"
        config.write_text(json.dumps({"equipment_cost": "1000"}), encoding="utf-8")
        assert analyze_cli([str(input_file), "--config", str(config)]) == EXIT_OK
        payload = json.loads(capsys.readouterr().out)
        assert payload["expansion_roi"]["equipment_cost"] == "1000"

    def test_invalid_config(self, input_file, tmp_path):
        config = tmp_path / "config.json"
        config.write_text(json.dumps({"capture_rate": 2}), encoding="utf-8")
        assert analyze_cli([str(input_file), "--config", str(config)]) == EXIT_CONFIGURATION_ERROR

    def test_missing_collection(self, tmp_path):
        path = tmp_path / "input.json"
        path.write_text(json.dumps({"transactions": []}), encoding="utf-8")
        assert analyze_cli([str(path)]) == EXIT_INPUT_ERROR

    def test_non_object_payload(self, tmp_path):
        path = tmp_path / "input.json"
        path.write_text("[]", encoding="utf-8")
        assert analyze_cli([str(path)]) == EXIT_INPUT_ERROR

    def test_output_outside_cwd_rejected(self, input_file, tmp_path, monkeypatch):
        work = tmp_path / "work"
        work.mkdir()
        monkeypatch.chdir(work)
        with pytest.raises(ValueError, match="current working directory"):
            analyze_cli([str(input_file), "--output", str(tmp_path / "escape.json")])
