"""Logging configuration for the clipstash launcher."""
import logging


def configure_logging(verbose: bool) -> None:
    """Configure logging level based on verbosity setting.

    Args:
        verbose: If True, set DEBUG level; otherwise WARNING level.

    Dropped captures and storage errors are always printed to stderr
    regardless of verbosity.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        handlers=[logging.StreamHandler()],
    )
    # PIL logs every plugin import at DEBUG
    logging.getLogger("PIL").setLevel(logging.INFO)
