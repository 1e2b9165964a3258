"""
settings.py
~~~~~~~~~~~

Environment-driven configuration for the persistence layer and API server.

Values are read from the environment each time ``load_settings`` is called,
so tests and deployments can change them without reimporting modules.
"""

import os
from typing import NamedTuple, Optional

from nnengine.exceptions import InvalidConfig


class Settings(NamedTuple):
    log_level: str
    flask_env: Optional[str]
    model_dir: str
    port: int
    cleanup_days: int
    default_epochs: int
    default_batch_size: int
    default_learning_rate: float

    @property
    def is_production(self) -> bool:
        return self.flask_env == 'production'


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise InvalidConfig(f"{name} must be a {cast.__name__}, got {raw!r}") from e


def load_settings() -> Settings:
    """
    Read settings from the environment.

    Raises:
        InvalidConfig: If a numeric variable cannot be parsed
    """
    return Settings(
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        flask_env=os.getenv('FLASK_ENV'),
        model_dir=os.getenv('MODEL_DIR', 'models'),
        port=_env_number('PORT', 8000, int),
        cleanup_days=_env_number('CLEANUP_DAYS', 2, int),
        default_epochs=_env_number('DEFAULT_EPOCHS', 5, int),
        default_batch_size=_env_number('DEFAULT_BATCH_SIZE', 16, int),
        default_learning_rate=_env_number('DEFAULT_LEARNING_RATE', 0.01, float),
    )
