import json

from webiscriptura.chat_proxy.logging_utils import JsonlLogger


def test_jsonl_logger_rotates(tmp_path, monkeypatch):
    log_file = tmp_path / "logs" / "requests.jsonl"
    logger = JsonlLogger(str(log_file), max_bytes=5)

    monkeypatch.setattr(
        "webiscriptura.chat_proxy.logging_utils.time.strftime",
        lambda *_: "19700101-000000",
    )

    logger.log({"status": "ok"})
    assert log_file.exists()

    logger.log({"status": "error", "error": "UpstreamError"})

    rotated = log_file.with_name(log_file.name + ".19700101-000000")
    assert rotated.exists(), "Rotated file missing"
    content = log_file.read_text(encoding="utf-8").strip()
    assert json.loads(content)["error"] == "UpstreamError"


def test_jsonl_logger_keeps_unicode(tmp_path):
    log_file = tmp_path / "missing" / "requests.jsonl"
    JsonlLogger(str(log_file)).log({"model": "Éternel"})
    assert "Éternel" in log_file.read_text(encoding="utf-8")


def test_jsonl_logger_swallows_write_errors(tmp_path, caplog):
    target = tmp_path / "as_dir"
    target.mkdir()
    # Writing to a directory path fails; the request must not.
    JsonlLogger(str(target)).log({"status": "ok"})
    assert "Could not write" in caplog.text
