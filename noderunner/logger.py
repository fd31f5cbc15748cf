import logging

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'


def setup_logger(level='INFO', logfile=None):
    """Send noderunner logs to the console and, optionally, to `logfile` at DEBUG level.
    Returns the root logger."""
    log_formatter = logging.Formatter(LOG_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel('DEBUG' if logfile else level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    if logfile:
        file_handler = logging.FileHandler(logfile)
        file_handler.setFormatter(log_formatter)
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)

    return root_logger
