from server_logs.base import Logger
from datetime import datetime, timezone
from pathlib import Path
import json


class FileLogger(Logger):
    """Appends one JSON object per event to <base_path>/<log_type>.log."""

    def __init__(self, log_type="server", base_path="logs"):
        self.log_type = log_type
        self.path = Path(base_path) / f"{log_type}.log"

        self.path.parent.mkdir(parents=True, exist_ok=True)

    def emit(self, level, msg, data):
        ts = datetime.now(timezone.utc).isoformat()
        with open(self.path, "a") as f:
            f.write(json.dumps({
                "ts": ts,
                "log_type": self.log_type,
                "level": level,
                "event": msg,
                **data
            }, default=str) + "\n")
