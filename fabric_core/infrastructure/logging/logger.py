import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Union

logger = logging.getLogger("fabric_core")


class JsonFormatter(logging.Formatter):
    def __init__(self, redact: bool = False):
        super().__init__()
        self._redact = redact

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if self._redact:
            msg = (msg or "")[:64]
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger(
    log_dir: Union[str, Path],
    level: Union[int, str] = logging.INFO,
    redact: bool = False,
) -> logging.Logger:
    """为 fabric_core 日志树挂载 JSON 行格式的文件 handler（重复调用只生效一次）。"""

    logger.setLevel(level)
    for handler in logger.handlers:
        if getattr(handler, "_fabric_json", False):
            handler.setLevel(level)
            return logger
    path = Path(log_dir).expanduser()
    path.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(path / "fabric.log", encoding="utf-8")
    fh.setLevel(level)
    fh.setFormatter(JsonFormatter(redact=redact))
    fh._fabric_json = True  # type: ignore[attr-defined]
    logger.addHandler(fh)
    return logger
