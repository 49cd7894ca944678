import logging
import os


def _to_level(name: str, default: int) -> int:
    level = logging.getLevelName((name or "").upper())
    return level if isinstance(level, int) else default


def configure_logging() -> None:
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format = os.getenv("LOG_FORMAT",
                           "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    level = _to_level(log_level_name, logging.INFO)

    logging.basicConfig(level=level, format=log_format, force=True)
    logging.captureWarnings(True)

    # Library loggers that are chatty at INFO
    desired_levels = {
        "uvicorn": os.getenv("UVICORN_LEVEL", log_level_name),
        "uvicorn.error": os.getenv("UVICORN_ERROR_LEVEL", log_level_name),
        "uvicorn.access": os.getenv("UVICORN_ACCESS_LEVEL", "WARNING"),
        "httpx": os.getenv("HTTPX_LEVEL", "WARNING"),
        "httpcore": os.getenv("HTTPX_LEVEL", "WARNING"),
        "kubernetes": os.getenv("KUBERNETES_LEVEL", "WARNING"),
        "urllib3": os.getenv("URLLIB3_LEVEL", "WARNING"),
        "asyncio": os.getenv("ASYNCIO_LEVEL", "WARNING"),
    }

    for name, lvl_name in desired_levels.items():
        lg = logging.getLogger(name)
        for h in list(lg.handlers):
            lg.removeHandler(h)
        lg.propagate = True
        lg.setLevel(_to_level(lvl_name, level))
