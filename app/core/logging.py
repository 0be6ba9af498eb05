import logging
import logging.config


LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _build_dict_config(level: str) -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": LOG_FORMAT},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "app": {"level": level, "handlers": ["console"], "propagate": False},
            # uvicorn keeps its own handlers, we only align the level
            "uvicorn": {"level": level},
            "sqlalchemy.engine": {"level": "WARNING"},
        },
        "root": {"level": "WARNING", "handlers": ["console"]},
    }


def setup_logging(level: str = "INFO") -> None:
    """
    Console logging for the whole service.
    Every module logs through logging.getLogger(__name__), so all
    application loggers live under the "app" namespace.
    """
    logging.config.dictConfig(_build_dict_config(level.upper()))
    logging.getLogger(__name__).debug("Logging configured (level=%s)", level)
