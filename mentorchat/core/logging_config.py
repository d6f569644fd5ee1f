import logging

from mentorchat.core.config import get_settings


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
