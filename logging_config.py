import logging
import logging.handlers
import os


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [RequestID: %(request_id)s] - %(message)s'


class RequestIDFilter(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "request_id"):
            record.request_id = "N/A"
        return True


class LoggerConfig:
    """Console + rotating file logging for the ingest service.

    Console gets INFO and up, the file under ``log_dir`` gets everything.
    Building a second config for the same logger name replaces the handlers
    of the first one.
    """

    def __init__(self, name: str = "ingest_api", log_dir: str = "logs"):
        os.makedirs(log_dir, exist_ok=True)
        self.log_file = os.path.join(log_dir, f"{name}.log")
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)
        for h in list(self.logger.handlers):
            self.logger.removeHandler(h)
            h.close()
        # console
        ch = logging.StreamHandler()
        ch.setLevel(logging.INFO)
        # file
        fh = logging.handlers.RotatingFileHandler(
            filename=self.log_file, maxBytes=10_485_760, backupCount=10, encoding="utf-8"
        )
        fh.setLevel(logging.DEBUG)
        fmt = logging.Formatter(LOG_FORMAT)
        for h in (ch, fh):
            h.setFormatter(fmt)
            h.addFilter(RequestIDFilter())
            self.logger.addHandler(h)
