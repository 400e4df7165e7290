import logging
import os
import sys
from logging.handlers import RotatingFileHandler


class Logger:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Logger, cls).__new__(cls)
            cls._instance._setup_logger()
        return cls._instance

    def _setup_logger(self):
        self.logger = logging.getLogger('CheckVPN')
        self.logger.setLevel(logging.INFO)
        self.formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(name)s:%(lineno)d - %(pathname)s - %(message)s')

        log_dir = os.environ.get(
            'CHECK_VPN_LOG_DIR',
            os.path.join(os.path.dirname(os.path.dirname(__file__)), 'logs'),
        )
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, 'check_vpn.log')

        # stdout carries the plugin result line, so everything else goes to a file
        file_handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024,
                                           backupCount=3)
        file_handler.setFormatter(self.formatter)

        self.logger.addHandler(file_handler)

    def enable_console(self, level=logging.DEBUG):
        """Mirror log records to stderr (used by --verbose)."""
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(self.formatter)
        handler.setLevel(level)
        self.logger.addHandler(handler)
        self.logger.setLevel(level)

    def get_logger(self):
        return self.logger


logger = Logger().get_logger()
