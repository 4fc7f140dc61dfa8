import json
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from state_review.config import load_settings
from state_review.display import field_diffs, format_balance
from state_review.hexwords import int_to_word
from state_review.run import EXIT_BLOCKED, EXIT_OK, EXIT_STRUCTURAL, main
from state_review.steps import StepId

ADDR = "0x" + "aa" * 20
DOMAIN = "0x" + "ab" * 32
MESSAGE = "0x" + "cd" * 32


def _config(after="0x05", **fields) -> dict:
    config = {
        "ledgerId": 4,
        "taskName": "Upgrade 16",
        "expectedChanges": [
            {"contractAddress": ADDR, "slot": "0x01", "afterValue": after, "stepId": "taskOrigin"}
        ],
    }
    config.update(fields)
    return config


def _simulation(after="0x05", data_to_sign=True) -> dict:
    simulation = {
        "stateDiff": [
            {"contractAddress": ADDR, "slot": "0x01", "beforeValue": "0x00", "afterValue": after}
        ]
    }
    if data_to_sign:
        simulation["dataToSign"] = "0x1901" + DOMAIN[2:] + MESSAGE[2:]
    return simulation


def _write(tmp_path: Path, config, simulation) -> list[str]:
    config_path = tmp_path / "task.json"
    diff_path = tmp_path / "simulation.json"
    config_path.write_text(config if isinstance(config, str) else json.dumps(config))
    diff_path.write_text(json.dumps(simulation))
    return [str(config_path), str(diff_path)]


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def test_settings_defaults():
    settings = load_settings({})
    assert settings.log_level == "WARNING"
    assert settings.unexpected_step is StepId.NESTED_CALLS
    assert settings.scoped is False
    assert settings.tasks_dir == Path("validations")

def test_settings_from_environment():
    settings = load_settings(
        {
            "STATE_REVIEW_LOG_LEVEL": "debug",
            "STATE_REVIEW_UNEXPECTED_STEP": "stateChanges",
            "STATE_REVIEW_SCOPED": "true",
            "STATE_REVIEW_TASKS_DIR": "/srv/tasks",
        }
    )
    assert settings.log_level == "DEBUG"
    assert settings.unexpected_step is StepId.STATE_CHANGES
    assert settings.scoped is True
    assert settings.tasks_dir == Path("/srv/tasks")

def test_settings_reject_unknown_values():
    with pytest.raises(ValidationError):
        load_settings({"STATE_REVIEW_LOG_LEVEL": "chatty"})
    with pytest.raises(ValidationError):
        load_settings({"STATE_REVIEW_UNEXPECTED_STEP": "elsewhere"})


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def test_field_diffs():
    assert field_diffs("0x05", "0x05") == [("unchanged", "0x05")]
    assert field_diffs("0x0005", "0x0006") == [
        ("unchanged", "0x000"),
        ("removed", "5"),
        ("added", "6"),
    ]
    assert field_diffs("abc", "abxc") == [("unchanged", "ab"), ("added", "x"), ("unchanged", "c")]

def test_format_balance():
    assert format_balance(int_to_word(10**18)) == "1 ETH (1000000000000000000 wei)"
    assert format_balance(int_to_word(15 * 10**17)) == "1.5 ETH (1500000000000000000 wei)"
    assert format_balance(int_to_word(1)) == "0.000000000000000001 ETH (1 wei)"
    assert format_balance("not hex") == "not hex"


# ---------------------------------------------------------------------------
# check command
# ---------------------------------------------------------------------------

def test_check_passes_and_opens_gate(tmp_path, capsys):
    code = main(["check", *_write(tmp_path, _config(), _simulation())])
    out = capsys.readouterr().out
    assert code == EXIT_OK
    assert "SIGNING GATE: OPEN" in out
    assert DOMAIN in out

def test_check_mismatch_closes_gate(tmp_path, capsys):
    code = main(["check", *_write(tmp_path, _config(), _simulation(after="0x06"))])
    assert code == EXIT_BLOCKED
    assert "SIGNING GATE: CLOSED" in capsys.readouterr().out

def test_check_reports_blocking_count(tmp_path):
    with patch("state_review.run.display") as mock_display:
        code = main(["check", *_write(tmp_path, _config(), _simulation(after="0x06"))])
    assert code == EXIT_BLOCKED
    mock_display.gate_closed.assert_called_once_with(1)
    mock_display.gate_open.assert_not_called()

def test_check_invalid_config(tmp_path, capsys):
    code = main(["check", *_write(tmp_path, _config(after="0xnothex"), _simulation())])
    assert code == EXIT_STRUCTURAL
    out = capsys.readouterr().out
    assert "CONFIG INVALID" in out
    assert "afterValue" in out

def test_check_malformed_simulation(tmp_path, capsys):
    simulation = {"stateDiff": [{"contractAddress": "0x1234", "slot": "0x01"}]}
    code = main(["check", *_write(tmp_path, _config(), simulation)])
    assert code == EXIT_STRUCTURAL
    assert "HALT" in capsys.readouterr().out

def test_check_unreadable_input(tmp_path, capsys):
    code = main(["check", str(tmp_path / "missing.json"), str(tmp_path / "also-missing.json")])
    assert code == EXIT_STRUCTURAL
    assert "HALT" in capsys.readouterr().out

def test_check_hash_mismatch_blocks(tmp_path, capsys):
    hashes = {"address": ADDR, "domainHash": DOMAIN, "messageHash": "0x" + "00" * 32}
    config = _config(expectedDomainAndMessageHashes=hashes)
    code = main(["check", *_write(tmp_path, config, _simulation())])
    assert code == EXIT_BLOCKED
    assert "HALT" in capsys.readouterr().out

def test_check_disabled_step_does_not_block(tmp_path):
    config = _config(disabledSteps=["taskOrigin"])
    assert main(["check", *_write(tmp_path, config, _simulation(after="0x06"))]) == EXIT_OK

def test_check_json_output(tmp_path, capsys):
    code = main(["check", "--json", *_write(tmp_path, _config(), _simulation(after="0x06"))])
    out = capsys.readouterr().out
    assert code == EXIT_BLOCKED
    assert "blockingErrorsExist" in out
    assert "SIGNING GATE" not in out

def test_check_json_output_is_one_document_on_hash_mismatch(tmp_path, capsys):
    hashes = {"address": ADDR, "domainHash": DOMAIN, "messageHash": "0x" + "00" * 32}
    config = _config(expectedDomainAndMessageHashes=hashes)
    code = main(["check", "--json", *_write(tmp_path, config, _simulation())])
    payload = json.loads(capsys.readouterr().out)
    assert code == EXIT_BLOCKED
    assert payload["blockingErrorsExist"] is False
    assert payload["signing"]["hashesVerified"] is False
    assert payload["signing"]["domainHash"] == DOMAIN

def test_check_json_output_without_signing_payload(tmp_path, capsys):
    code = main(["check", "--json", *_write(tmp_path, _config(), _simulation(data_to_sign=False))])
    payload = json.loads(capsys.readouterr().out)
    assert code == EXIT_OK
    assert payload["signing"] is None

def test_check_json_invalid_config_reports_error_document(tmp_path, capsys):
    code = main(["check", "--json", *_write(tmp_path, _config(after="0xnothex"), _simulation())])
    payload = json.loads(capsys.readouterr().out)
    assert code == EXIT_STRUCTURAL
    assert "failed validation" in payload["error"]["message"]
    assert any("afterValue" in issue for issue in payload["error"]["issues"])

def test_check_json_malformed_simulation_reports_error_document(tmp_path, capsys):
    simulation = {"stateDiff": [{"contractAddress": "0x1234", "slot": "0x01"}]}
    code = main(["check", "--json", *_write(tmp_path, _config(), simulation)])
    payload = json.loads(capsys.readouterr().out)
    assert code == EXIT_STRUCTURAL
    assert "contractAddress" in payload["error"]["message"]
    assert payload["error"]["issues"] == []

def test_check_allowed_difference_does_not_block(tmp_path, capsys):
    config = _config()
    config["expectedChanges"][0]["allowDifference"] = True
    code = main(["check", *_write(tmp_path, config, _simulation(after="0x06"))])
    out = capsys.readouterr().out
    assert code == EXIT_OK
    assert "SIGNING GATE: OPEN" in out

def test_check_verifies_state_overrides(tmp_path):
    override = {"key": "0x04", "value": "0x01", "description": "Owner threshold"}
    config = _config(stateOverrides=[{"name": "Safe", "address": ADDR, "overrides": [override]}])
    simulation = _simulation()
    simulation["stateOverrides"] = [{"name": "Safe", "address": ADDR, "overrides": [override]}]
    assert main(["check", *_write(tmp_path, config, simulation)]) == EXIT_OK

    simulation["stateOverrides"][0]["overrides"][0]["value"] = "0x02"
    assert main(["check", *_write(tmp_path, config, simulation)]) == EXIT_BLOCKED

def test_check_scoped_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("STATE_REVIEW_SCOPED", "1")
    other = "0x" + "bb" * 20
    simulation = _simulation(data_to_sign=False)
    simulation["stateDiff"].append({"contractAddress": other, "slot": "0x01", "afterValue": "0xZZ"})
    # Scoping happens after every record is validated.
    assert main(["check", *_write(tmp_path, _config(), simulation)]) == EXIT_STRUCTURAL


# ---------------------------------------------------------------------------
# list command
# ---------------------------------------------------------------------------

def test_list_command(tmp_path, capsys):
    (tmp_path / "base-sc.json").write_text(json.dumps(_config()))
    (tmp_path / "broken.json").write_text("{")
    code = main(["list", str(tmp_path)])
    out = capsys.readouterr().out
    assert code == EXIT_OK
    assert "Base Sc" in out
    assert "config invalid" in out
