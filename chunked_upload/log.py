import json
import logging

from chunked_upload.tracing import current_trace_id

request_logger = logging.getLogger("chunked_upload.request")
upload_logger = logging.getLogger("chunked_upload.upload")


def configure_logging(level: int = logging.INFO) -> None:
    for logger in (request_logger, upload_logger):
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(message)s"))
            logger.addHandler(handler)
        logger.setLevel(level)


def _emit(logger: logging.Logger, level: int, payload: dict) -> None:
    payload.setdefault("trace_id", current_trace_id())
    logger.log(level, json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str))


def log_request(payload: dict, level: int = logging.INFO) -> None:
    _emit(request_logger, level, payload)


def log_upload(payload: dict, level: int = logging.INFO) -> None:
    _emit(upload_logger, level, payload)
