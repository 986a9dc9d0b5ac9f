from server_logs.base import Logger


class CompositeLogger(Logger):
    """Fans every event out to each wrapped logger."""

    def __init__(self, *loggers: Logger):
        self.loggers = loggers

    def emit(self, level, msg, data):
        for l in self.loggers:
            l.emit(level, msg, data)
