"""Unit tests for the run logs written by the commands."""

import json
import logging

import yaml

from detection_refinery.io import get_logger, get_timestamped_log_path, log_json, log_yaml


class TestRunLogs:
    """Tests for run log files."""

    def test_timestamped_path(self, tmp_path):
        path = get_timestamped_log_path(tmp_path / "quantify.log")
        assert path.parent == tmp_path
        assert path.name.startswith("quantify_")
        assert path.suffix == ".log"

    def test_records_of_child_loggers_are_written(self, tmp_path):
        logger, path = get_logger("detection_refinery.tests", tmp_path / "run.log", timestamped=False)
        logging.getLogger("detection_refinery.tests.child").info("3 detections")
        for handler in logger.handlers:
            handler.flush()
        assert path == tmp_path / "run.log"
        assert "3 detections" in path.read_text()

    def test_previous_file_handler_replaced(self, tmp_path):
        logger, _ = get_logger("detection_refinery.tests", tmp_path / "first.log")
        logger, _ = get_logger("detection_refinery.tests", tmp_path / "second.log")
        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert "second" in file_handlers[0].baseFilename

    def test_json_lines(self, tmp_path):
        path = tmp_path / "runs.jsonl"
        log_json(path, {"command": "quantify", "output": tmp_path})
        log_json(path, {"command": "detect"})
        lines = path.read_text().splitlines()
        assert [json.loads(line)["command"] for line in lines] == ["quantify", "detect"]
        assert json.loads(lines[0])["output"] == str(tmp_path)

    def test_yaml_documents(self, tmp_path):
        path = tmp_path / "config_used.yaml"
        log_yaml(path, {"class_for_detections": "Region"})
        log_yaml(path, {"class_for_detections": None})
        documents = [d for d in yaml.safe_load_all(path.read_text()) if d is not None]
        assert documents == [{"class_for_detections": "Region"}, {"class_for_detections": None}]
