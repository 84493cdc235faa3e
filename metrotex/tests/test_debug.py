import json

from metrotex.debug import DebugLogger


def test_enabled_category_prints(tmp_path, capsys):
    path = tmp_path / "debug.json"
    path.write_text(json.dumps({"enabled": True, "backend": {"polling": True}}))
    logger = DebugLogger(str(path))

    logger.debug_polling("job-1 attempt 1")
    logger.debug_horde_requests("hidden")

    out = capsys.readouterr().out
    assert "[DEBUG POLLING] job-1 attempt 1" in out
    assert "hidden" not in out


def test_master_switch_disables_everything(tmp_path):
    path = tmp_path / "debug.json"
    path.write_text(json.dumps({"enabled": False, "backend": {"polling": True}}))
    assert DebugLogger(str(path)).is_enabled("polling") is False


def test_missing_file_falls_back_to_defaults(tmp_path):
    logger = DebugLogger(str(tmp_path / "missing.json"))
    assert logger.is_enabled("llm_requests") is False
    assert "backend" in logger.config
