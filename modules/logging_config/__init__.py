"""
Logging Configuration Module
============================

Responsibility:
- Root logger setup with a colored console handler (colorama).
- Rotating UTF-8 file log under the configured log directory.
"""

from .logging_config import LoggingConfigurator, ColoredFormatter

__all__ = ['LoggingConfigurator', 'ColoredFormatter']
