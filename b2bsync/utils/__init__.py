from .logging_config import StructuredFormatter, setup_logging

__all__ = ["StructuredFormatter", "setup_logging"]
