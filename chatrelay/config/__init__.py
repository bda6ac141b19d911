"""chatrelay 的配置模块。"""

from chatrelay.config.loader import get_config_path, load_config, save_config
from chatrelay.config.schema import Config

__all__ = ["Config", "load_config", "save_config", "get_config_path"]
