import logging

from noderunner.logger import setup_logger


def test_setup_logger_writes_debug_to_file(tmp_path):
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    logfile = tmp_path / 'supervisor.log'
    try:
        setup_logger('WARNING', str(logfile))
        logging.getLogger('noderunner.test').debug('probe details')
        for h in root.handlers:
            h.flush()
        assert '[DEBUG] probe details' in logfile.read_text()
    finally:
        for h in root.handlers[:]:
            if h not in handlers:
                root.removeHandler(h)
                h.close()
        root.setLevel(level)
