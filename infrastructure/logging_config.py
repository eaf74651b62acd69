"""
Logging configuration for courtbot.

Installs a console handler plus rotating files for the main log, errors and
the scheduler components. Verbosity follows ``PRODUCTION_MODE``.
"""

import logging
import logging.handlers
import os
from datetime import datetime
from typing import Optional

# Components whose records also land in scheduler.log
SCHEDULER_LOGGERS = (
    'ScheduleState',
    'TriggerRegistry',
    'ScheduleRunner',
    'WebhookGate',
    'RetryController',
    'BookingService',
)

OTHER_LOGGERS = (
    'CronJobClient',
    'NtfyNotifier',
    'TfcCourtBooker',
    'JsonFileStore',
    'RedisStore',
)

DEFAULT_LOG_DIR = os.path.join(os.getcwd(), 'logs', 'latest_log')


def setup_logging(log_dir: Optional[str] = None, production_mode: Optional[bool] = None) -> str:
    """
    Set up logging with console and rotating file handlers.

    Returns the directory the log files are written to.
    """
    if production_mode is None:
        production_mode = os.getenv('PRODUCTION_MODE', 'false').lower() == 'true'
    log_dir = log_dir or DEFAULT_LOG_DIR
    os.makedirs(log_dir, exist_ok=True)

    main_log_file = os.path.join(log_dir, 'courtbot.log')
    error_log_file = os.path.join(log_dir, 'courtbot_errors.log')
    scheduler_log_file = os.path.join(log_dir, 'scheduler.log')

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO if production_mode else logging.DEBUG)
    root_logger.handlers = []

    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d in %(funcName)s()] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING if production_mode else logging.INFO)
    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    main_file_handler = logging.handlers.RotatingFileHandler(
        main_log_file,
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )
    main_file_handler.setLevel(logging.INFO)
    main_file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(main_file_handler)

    error_file_handler = logging.handlers.RotatingFileHandler(
        error_log_file,
        maxBytes=5*1024*1024,  # 5MB
        backupCount=5,
        encoding='utf-8'
    )
    error_file_handler.setLevel(logging.ERROR)
    error_file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(error_file_handler)

    scheduler_handler = logging.handlers.RotatingFileHandler(
        scheduler_log_file,
        maxBytes=20*1024*1024,  # 20MB
        backupCount=5,
        encoding='utf-8'
    )
    scheduler_handler.setLevel(logging.INFO if production_mode else logging.DEBUG)
    scheduler_handler.setFormatter(detailed_formatter)

    component_level = logging.INFO if production_mode else logging.DEBUG
    for name in SCHEDULER_LOGGERS:
        component_logger = logging.getLogger(name)
        component_logger.addHandler(scheduler_handler)
        component_logger.setLevel(component_level)
    for name in OTHER_LOGGERS:
        logging.getLogger(name).setLevel(component_level)

    # Reduce noise from external libraries
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    root_logger.info("="*80)
    root_logger.info(f"courtbot logging initialized - {datetime.now()}")
    root_logger.info(f"Production Mode: {'ON' if production_mode else 'OFF'}")
    root_logger.info(f"Main log: {main_log_file}")
    root_logger.info(f"Error log: {error_log_file}")
    root_logger.info(f"Scheduler log: {scheduler_log_file}")
    root_logger.info("="*80)
    return log_dir


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)
