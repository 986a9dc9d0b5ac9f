from abc import ABC, abstractmethod

LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40}


class Logger(ABC):
    """Structured logger: an event name plus keyword fields."""

    @abstractmethod
    def emit(self, level: str, msg: str, data: dict): ...

    def info(self, msg: str, **data):
        self.emit("INFO", msg, data)

    def debug(self, msg: str, **data):
        self.emit("DEBUG", msg, data)

    def warning(self, msg: str, **data):
        self.emit("WARN", msg, data)

    def error(self, msg: str, **data):
        self.emit("ERROR", msg, data)
