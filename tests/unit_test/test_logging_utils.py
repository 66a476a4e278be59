import io
import logging

import pytest

from autodrive.utils.logging_utils import setup_run_logging


@pytest.fixture
def root_handlers():
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    yield root
    for h in list(root.handlers):
        if h not in before:
            root.removeHandler(h)
            h.close()
    root.setLevel(level)


def test_run_log_file_and_run_id_field(tmp_path, root_handlers):
    stream = io.StringIO()
    log_file = setup_run_logging(str(tmp_path), "r1", stream=stream)
    assert log_file.endswith("run_r1.log")

    logging.getLogger("autodrive.test").info("[Drive] hello")
    for h in root_handlers.handlers:
        h.flush()

    assert "run=r1" in stream.getvalue()
    with open(log_file) as f:
        content = f.read()
    assert "run=r1 | autodrive.test | [Drive] hello" in content
    assert logging.getLogger("openai").level == logging.WARNING


def test_repeated_setup_reuses_handlers(tmp_path, root_handlers):
    setup_run_logging(str(tmp_path), "r2", stream=io.StringIO())
    count = len(root_handlers.handlers)
    setup_run_logging(str(tmp_path), "r2", stream=io.StringIO())
    assert len(root_handlers.handlers) == count


def test_new_run_detaches_previous_run_handlers(tmp_path, root_handlers):
    first = setup_run_logging(str(tmp_path), "r3", stream=io.StringIO())
    count = len(root_handlers.handlers)
    second = setup_run_logging(str(tmp_path), "r4", stream=io.StringIO())

    assert len(root_handlers.handlers) == count
    files = [getattr(h, "baseFilename", None) for h in root_handlers.handlers]
    assert second in files
    assert first not in files


if __name__ == "__main__":
    pytest.main(["-v", __file__])
