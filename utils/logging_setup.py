# utils/logging_setup.py
import logging
import sys
from pathlib import Path
from typing import Optional

FMT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(level=logging.INFO, log_file: Optional[str] = None):
    # level 可以是 logging.INFO 或 "INFO"（由 config.toml 帶入）
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
        if not isinstance(level, int):
            level = logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        p = Path(log_file)
        p.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(p, encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format=FMT,
        handlers=handlers,
        force=True,
    )
    # paho 的網路迴圈很吵，只留警告
    logging.getLogger("paho").setLevel(max(level, logging.WARNING))
