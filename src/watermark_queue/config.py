"""Configuration for the processing queue.

Usage:
    from watermark_queue.config import Config

    # Access config values
    database_url = Config.QUEUE_DATABASE_URL
    max_concurrent = Config.QUEUE_MAX_CONCURRENT
"""

import os


class Config:
    """Centralized configuration for the processing queue.

    All configuration values are class variables that can be accessed directly.
    Values are loaded from environment variables with sensible defaults.

    Example:
        from watermark_queue.config import Config

        print(Config.QUEUE_DATABASE_URL)
        print(Config.QUEUE_TIMEOUT_SECONDS)
    """

    # ========================================================================
    # Helper methods (static)
    # ========================================================================

    @staticmethod
    def _get_value(key: str, default: str) -> str:
        """Get configuration value from environment with optional default."""
        return os.getenv(key, default)

    @staticmethod
    def _get_int(key: str, default: int) -> int:
        """Get integer configuration value."""
        return int(os.getenv(key, str(default)))

    @staticmethod
    def _get_bool(key: str, default: bool = False) -> bool:
        """Get boolean configuration value."""
        return os.getenv(key, str(default)).lower() in ("true", "1", "yes")

    # ========================================================================
    # Database Configuration
    # ========================================================================

    # Every server instance must point at the same database
    QUEUE_DATABASE_URL: str = _get_value("QUEUE_DATABASE_URL", "sqlite:///./watermark_queue.db")
    QUEUE_DATABASE_ECHO: bool = _get_bool("QUEUE_DATABASE_ECHO", False)

    # ========================================================================
    # Admission Control
    # ========================================================================

    QUEUE_MAX_CONCURRENT: int = _get_int("QUEUE_MAX_CONCURRENT", 1)

    # ========================================================================
    # Reaper
    # ========================================================================

    QUEUE_TIMEOUT_SECONDS: int = _get_int("QUEUE_TIMEOUT_SECONDS", 10 * 60)
    QUEUE_RETENTION_SECONDS: int = _get_int("QUEUE_RETENTION_SECONDS", 24 * 60 * 60)

    # ========================================================================
    # Telemetry
    # ========================================================================

    STATUS_RECORDER: str = _get_value("STATUS_RECORDER", "database")
    QUEUE_STATUS_WINDOW_SECONDS: int = _get_int("QUEUE_STATUS_WINDOW_SECONDS", 60 * 60)
    LOG_LEVEL: str = _get_value("LOG_LEVEL", "INFO")

    # ========================================================================
    # MQTT Configuration
    # ========================================================================

    BROADCAST_TYPE: str = _get_value("BROADCAST_TYPE", "mqtt")
    MQTT_BROKER: str = _get_value("MQTT_BROKER", "localhost")
    MQTT_PORT: int = _get_int("MQTT_PORT", 1883)
    MQTT_TOPIC: str = _get_value("MQTT_TOPIC", "watermark/queue/events")
