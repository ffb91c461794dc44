import os
import logging

# ===== CONFIGURATION =====
RELAY_CONFIG = {
    'host': os.getenv('RELAY_HOST', '127.0.0.1'),
    'port': int(os.getenv('RELAY_PORT', 8888)),
    'backlog': int(os.getenv('RELAY_BACKLOG', 50)),
    'exit_keyword': os.getenv('RELAY_EXIT_KEYWORD', 'exit'),
}

ADMIN_CONFIG = {
    'host': os.getenv('RELAY_ADMIN_HOST', '127.0.0.1'),
    # 0 keeps the admin HTTP server off
    'port': int(os.getenv('RELAY_ADMIN_PORT', 0)),
}

LOG_CONFIG = {
    'level': os.getenv('RELAY_LOG_LEVEL', 'INFO'),
    'file': os.getenv('RELAY_LOG_FILE', ''),
    'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
}


# ===== LOGGING SETUP =====
def setup_logging(level: str | None = None, log_file: str | None = None) -> None:
    """Configure root logging for an entry point process"""
    level = (level or LOG_CONFIG['level']).upper()
    log_file = LOG_CONFIG['file'] if log_file is None else log_file

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_CONFIG['format'],
        handlers=handlers,
        force=True,
    )
