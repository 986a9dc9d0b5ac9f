from server_logs.stdout import StdoutLogger
from server_logs.file import FileLogger
from server_logs.json import JSONLogger
from server_logs.composite import CompositeLogger


def get_logger(mode="dev", log_type="server", log_dir="logs"):
    # prod writes JSON lines to disk (read back by the admin log routes) and to stdout
    if mode == "prod":
        return CompositeLogger(
            FileLogger(log_type=log_type, base_path=log_dir),
            JSONLogger(log_type=log_type)
        )
    return StdoutLogger(log_type=log_type)
