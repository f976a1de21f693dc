"""
Logging configuration for the exam monitor
Console output plus rotating log files for debugging polling and booking runs
"""

import logging
import logging.handlers
import os
import shutil
from datetime import datetime
from typing import Optional

# Define the log directory to be a fixed 'latest_log'
LOG_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'logs', 'latest_log'
)

# Loggers whose records also go to the dedicated batch log
BATCH_LOGGERS = ('BookingOrchestrator', 'ExamScheduler', 'SlotPool', 'BookingExecutor')

COMPONENT_LOGGERS = (
    'ExamApiMonitor',
    'EndpointCapturer',
    'SlotPool',
    'ExecutionContextFactory',
    'BookingOrchestrator',
    'BookingExecutor',
    'ExamScheduler',
    'ScheduleRepository',
    'AccountManager',
    'TelegramNotifier',
)


def _clear_previous_logs(log_dir: str) -> None:
    if not os.path.exists(log_dir):
        return
    for filename in os.listdir(log_dir):
        file_path = os.path.join(log_dir, filename)
        try:
            if os.path.isfile(file_path) or os.path.islink(file_path):
                os.unlink(file_path)
            elif os.path.isdir(file_path):
                shutil.rmtree(file_path)
        except OSError as e:
            print(f'Failed to delete {file_path}. Reason: {e}')


def setup_logging(production_mode: Optional[bool] = None, log_dir: str = LOG_DIR) -> None:
    """
    Set up console and rotating file handlers.

    Previous logs in ``log_dir`` are cleared before the new session starts.
    Production mode keeps the console and main file at WARNING and skips the
    debug file.
    """
    if production_mode is None:
        production_mode = os.getenv('PRODUCTION_MODE', 'false').lower() == 'true'

    _clear_previous_logs(log_dir)
    os.makedirs(log_dir, exist_ok=True)

    main_log_file = os.path.join(log_dir, 'bot.log')
    debug_log_file = os.path.join(log_dir, 'bot_debug.log')
    error_log_file = os.path.join(log_dir, 'bot_errors.log')
    batch_log_file = os.path.join(log_dir, 'booking_batches.log')

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO if production_mode else logging.DEBUG)
    root_logger.handlers = []

    # Detailed formatter with file, line, and function information
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
    main_file_handler.setLevel(logging.WARNING if production_mode else logging.INFO)
    main_file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(main_file_handler)

    if not production_mode:
        debug_file_handler = logging.handlers.RotatingFileHandler(
            debug_log_file,
            maxBytes=50*1024*1024,  # 50MB
            backupCount=3,
            encoding='utf-8'
        )
        debug_file_handler.setLevel(logging.DEBUG)
        debug_file_handler.setFormatter(detailed_formatter)
        root_logger.addHandler(debug_file_handler)

    error_file_handler = logging.handlers.RotatingFileHandler(
        error_log_file,
        maxBytes=5*1024*1024,  # 5MB
        backupCount=5,
        encoding='utf-8'
    )
    error_file_handler.setLevel(logging.ERROR)
    error_file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(error_file_handler)

    # Batch runs get their own file so a booking window can be reviewed end to end
    batch_handler = logging.handlers.RotatingFileHandler(
        batch_log_file,
        maxBytes=20*1024*1024,  # 20MB
        backupCount=5,
        encoding='utf-8'
    )
    batch_handler.setLevel(logging.INFO if production_mode else logging.DEBUG)
    batch_handler.setFormatter(detailed_formatter)
    for name in BATCH_LOGGERS:
        batch_logger = logging.getLogger(name)
        for handler in list(batch_logger.handlers):
            handler.close()
            batch_logger.removeHandler(handler)
        batch_logger.addHandler(batch_handler)

    component_level = logging.INFO if production_mode else logging.DEBUG
    for name in COMPONENT_LOGGERS:
        logging.getLogger(name).setLevel(component_level)

    # Reduce noise from external libraries
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('telegram').setLevel(logging.INFO)

    root_logger.info("="*80)
    root_logger.info(f"Exam monitor logging initialized - {datetime.now()}")
    root_logger.info(f"Production Mode: {'ON' if production_mode else 'OFF'}")
    root_logger.info(f"Main log: {main_log_file}")
    if not production_mode:
        root_logger.info(f"Debug log: {debug_log_file}")
    root_logger.info(f"Error log: {error_log_file}")
    root_logger.info(f"Batch log: {batch_log_file}")
    root_logger.info("="*80)
