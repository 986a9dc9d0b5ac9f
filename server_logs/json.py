from server_logs.base import Logger
from datetime import datetime, timezone
import json


class JSONLogger(Logger):
    def __init__(self, log_type="server"):
        self.log_type = log_type

    def emit(self, level, msg, data):
        print(json.dumps({
            "ts": datetime.now(timezone.utc).isoformat(),
            "log_type": self.log_type,
            "level": level,
            "event": msg,
            "data": data
        }, default=str))
