import json
import logging
from logging.handlers import HTTPHandler

# LogRecord attributes that are not user supplied `extra` fields
_RECORD_FIELDS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_FIELDS:
                payload[name] = value
        if record.exc_info:
            payload['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_json_logging(siem_endpoint: str | None = None, level=logging.INFO, logger_name: str | None = None):
    """Send log records as JSON lines to stderr, and optionally to a SIEM over HTTP.

    Handlers installed by an earlier call are replaced, not duplicated.
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        if isinstance(handler.formatter, JSONFormatter):
            logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)

    if siem_endpoint:
        # siem_endpoint format: host:port
        host, port = siem_endpoint.rsplit(':', 1)
        http = HTTPHandler(f"{host}:{port}", '/ingest', method='POST')
        http.setFormatter(JSONFormatter())
        logger.addHandler(http)

    return logger
