"""
Shared helpers such as logging configuration.
"""

from spacetime_link.utils.logging import LOGGER, configure_logging, get_logger
