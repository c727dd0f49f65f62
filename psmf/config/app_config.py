#!filepath: psmf/config/app_config.py
import yaml
from pydantic import BaseModel
from dotenv import load_dotenv
import os

from .log_config import LogConfig
from .training_config import MFConfig


def project_root() -> str:
    """
    返回项目根目录（基于当前文件位置推导）:
    psmf/config/app_config.py → psmf/config → psmf → project_root
    """
    return os.path.abspath(os.path.join(os.path.dirname(__file__), "../../"))


def default_config_path() -> str:
    return os.path.join(os.path.dirname(__file__), "base.yml")


class AppConfig(BaseModel):
    log: LogConfig
    training: MFConfig

    @classmethod
    def load(cls, path: str | None = None) -> "AppConfig":
        """
        加载 YAML 配置 + .env
        - 默认使用 psmf/config/base.yml
        - PSMF_LOG_LEVEL / PSMF_LOG_DIR 覆盖 log 段
        """
        root = project_root()

        # 1) 先加载 .env（在项目根目录下）
        load_dotenv(os.path.join(root, ".env"))

        # 2) 决定配置文件路径
        if path is None:
            path = default_config_path()

        if not os.path.exists(path):
            raise FileNotFoundError(f"Config file not found: {path}")

        # 3) 读取 YAML
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

        # 4) env 覆盖
        log_section = dict(raw.get("log") or {})
        if os.getenv("PSMF_LOG_LEVEL"):
            log_section["level"] = os.getenv("PSMF_LOG_LEVEL")
        if os.getenv("PSMF_LOG_DIR"):
            log_section["dir"] = os.getenv("PSMF_LOG_DIR")
        raw["log"] = log_section

        return cls(**raw)
