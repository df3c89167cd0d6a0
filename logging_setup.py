import logging
import sys

log = logging.getLogger("coast2cart")


def setup_logging(level: str = "INFO") -> None:
    """Configures the application logger."""
    log.setLevel(level.upper())
    if not log.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - [%(levelname)-7s] - %(message)s")
        )
        log.addHandler(handler)
    log.info("Logging configured at %s", level.upper())
