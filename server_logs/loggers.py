from server_logs.chooseLogType import get_logger
import os

env = os.getenv("ENV", "dev")
log_dir = os.getenv("LOG_DIR", "logs")

server_logger = get_logger(mode=env, log_type="server", log_dir=log_dir)
state_logger = get_logger(mode=env, log_type="state", log_dir=log_dir)
webhook_logger = get_logger(mode=env, log_type="webhook", log_dir=log_dir)
analytics_logger = get_logger(mode=env, log_type="analytics", log_dir=log_dir)
realtime_logger = get_logger(mode=env, log_type="realtime", log_dir=log_dir)
