from server_logs.base import Logger, LEVELS
from datetime import datetime, timezone


class StdoutLogger(Logger):

    def __init__(self, log_type="server", min_level="DEBUG"):
        self.log_type = log_type
        self.min_level = LEVELS.get(min_level, 10)

    def emit(self, level, msg, data):
        if LEVELS.get(level, 0) < self.min_level:
            return
        ts = datetime.now(timezone.utc).isoformat()
        print(f"[{ts}] [{self.log_type}] {level} {msg} {data}")
