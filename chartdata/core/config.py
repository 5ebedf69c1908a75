"""服务配置"""

from pathlib import Path
from typing import Dict, List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """服务设置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )

    # 数据源
    database_path: str = ":memory:"
    connections: Dict[str, str] = {}
    max_connections: int = 10
    read_only: bool = False
    # 是否允许 SQL 读取服务器文件和网络资源（read_csv、httpfs 等）
    allow_external_access: bool = False

    # 查询限制
    max_query_rows: int = 10000
    default_limit: int = 50
    max_batch_size: int = 50

    # 自定义 EXEC 语句允许调用的存储过程
    stored_procedure_whitelist: List[str] = []

    # 限流
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60

    # 服务
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = True

    # 日志
    log_level: str = "INFO"
    log_file: Path = Path("./logs/app.log")

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.log_file.parent.mkdir(parents=True, exist_ok=True)


# 全局配置实例
settings = Settings()
