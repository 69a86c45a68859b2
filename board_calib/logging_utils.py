import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(session)s] %(message)s"


class SessionNameFilter(logging.Filter):
    def __init__(self, session_name: str):
        super().__init__()
        self.session_name = session_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.session = self.session_name
        return True


def _attach(logger: logging.Logger, handler: logging.Handler, session_name: str) -> logging.Handler:
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(SessionNameFilter(session_name))
    logger.addHandler(handler)
    return handler


def setup_logger(session_name: str, level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(f"board_calib.{session_name}")
    logger.setLevel(level)

    if not logger.handlers:
        _attach(logger, logging.StreamHandler(), session_name)

    return logger


def add_file_handler(logger: logging.Logger, session_name: str, log_path: str) -> logging.Handler:
    return _attach(logger, logging.FileHandler(log_path), session_name)
