"""
config.py
~~~~~~~~~

Environment-driven settings and logging setup.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() not in ('0', 'false', 'no', 'off', '')


@dataclass
class Settings:
    """
    Process settings, read from the environment.

    Attributes:
        log_level: Name of the root log level (``LOG_LEVEL``)
        is_production: True when ``FLASK_ENV`` is ``production``
        port: Port the API server listens on (``PORT``)
        model_dir: Directory holding the model database
            (``NEURO_MODEL_DIR``)
        data_path: Path of the MNIST ``.npz`` archive (``NEURO_DATA_PATH``)
        cleanup_days: Age in days after which saved networks are deleted
            (``NEURO_CLEANUP_DAYS``)
        cleanup_task: Whether the server starts its cleanup task
            (``NEURO_CLEANUP_TASK``)
    """

    log_level: str = 'INFO'
    is_production: bool = False
    port: int = 8000
    model_dir: str = 'models'
    data_path: str = os.path.join('data', 'mnist.npz')
    cleanup_days: int = 2
    cleanup_task: bool = True

    @classmethod
    def from_env(cls) -> 'Settings':
        return cls(
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
            is_production=os.getenv('FLASK_ENV') == 'production',
            port=int(os.getenv('PORT', 8000)),
            model_dir=os.getenv('NEURO_MODEL_DIR', 'models'),
            data_path=os.getenv(
                'NEURO_DATA_PATH', os.path.join('data', 'mnist.npz')
            ),
            cleanup_days=int(os.getenv('NEURO_CLEANUP_DAYS', 2)),
            cleanup_task=_env_flag('NEURO_CLEANUP_TASK', True),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get or create the process-wide settings.

    Returns:
        Settings: Settings read from the environment on first use
    """
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep our own logs
    - In development: Show more detailed logs for debugging
    """
    settings = settings or get_settings()
    log_level = getattr(logging, settings.log_level, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if settings.is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('neuro').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)
