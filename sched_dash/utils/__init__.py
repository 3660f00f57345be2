from .jsonio import read_json_object, write_json_atomic
from .logging import set_log_level, setup_logger

__all__ = ["read_json_object", "set_log_level", "setup_logger", "write_json_atomic"]
