import logging
import os
import sys
from dataclasses import dataclass
from typing import Optional

_RUN_LOG_ATTR = "_autodrive_run_log"


@dataclass(frozen=True)
class _RunContext:
    run_id: str


class _RunFilter(logging.Filter):
    def __init__(self, ctx: _RunContext):
        super().__init__()
        self._ctx = ctx

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        # Inject run fields so formatters can use %(run_id)s.
        record.run_id = self._ctx.run_id
        return True


def setup_run_logging(
    output_path: str,
    run_id: str,
    *,
    level: int = logging.INFO,
    log_subdir: str = "logs",
    stream: Optional[object] = None,
) -> str:
    """
    Configure logging for one driving run:
    - always write to a per-run file: {output_path}/{log_subdir}/run_{run_id}.log
    - also stream to console (stdout by default)

    Calling it again for the same run reuses the existing handlers; calling it
    for a new run detaches the previous run's handlers first.
    Returns the absolute log file path.
    """
    if stream is None:
        stream = sys.stdout

    run_id = str(run_id or "default")
    log_dir = os.path.join(output_path, log_subdir)
    os.makedirs(log_dir, exist_ok=True)

    log_file = os.path.abspath(os.path.join(log_dir, f"run_{run_id}.log"))
    run_filter = _RunFilter(_RunContext(run_id=run_id))

    fmt = logging.Formatter("%(asctime)s | %(levelname)s | run=%(run_id)s | %(name)s | %(message)s")

    root = logging.getLogger()
    root.setLevel(level)

    for h in list(root.handlers):
        owner = getattr(h, _RUN_LOG_ATTR, None)
        if owner is None:
            continue
        if owner == log_file:
            return log_file
        root.removeHandler(h)
        h.close()

    file_handler = logging.FileHandler(log_file, mode="a")
    file_handler.setLevel(level)
    file_handler.setFormatter(fmt)
    file_handler.addFilter(run_filter)
    setattr(file_handler, _RUN_LOG_ATTR, log_file)
    root.addHandler(file_handler)

    stream_handler = logging.StreamHandler(stream=stream)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(fmt)
    stream_handler.addFilter(run_filter)
    setattr(stream_handler, _RUN_LOG_ATTR, log_file)
    root.addHandler(stream_handler)

    # Common noisy libs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

    return log_file
