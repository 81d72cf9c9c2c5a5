from typing import List, Union
from decimal import Decimal
import logging

from pydantic import AnyHttpUrl, Field, validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

class Settings(BaseSettings):
    PROJECT_NAME: str = "翻译公司财务回款系统"
    API_PREFIX: str = "/api/finance"

    # CORS配置
    BACKEND_CORS_ORIGINS: List[Union[str, AnyHttpUrl]] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    @validator("BACKEND_CORS_ORIGINS", pre=True)
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # 数据库配置
    SQLITE_DATABASE_URI: str = "sqlite:///./agency_finance.db"

    # 金额比较容差（判断是否结清、是否对平）
    MONEY_EPSILON: Decimal = Field(default=Decimal("0.01"), gt=0)

    # 导出CSV编码（GB18030 向下兼容 GBK，Excel 中文可直接打开，且不丢生僻字）
    EXPORT_ENCODING: str = "gb18030"

    # 可作为收款人的角色
    PAYMENT_RECEIVER_ROLES: List[str] = ["finance", "sales", "admin"]

    @validator("PAYMENT_RECEIVER_ROLES", pre=True)
    def assemble_receiver_roles(cls, v: Union[str, List[str]]) -> List[str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        return v

    # 日志配置
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # 回款汇总巡检（每天重算一次项目回款汇总并修正偏差）
    AGGREGATE_CHECK_ENABLED: bool = True
    AGGREGATE_CHECK_HOUR: int = 2
    AGGREGATE_CHECK_MINUTE: int = 30

    class Config:
        case_sensitive = True
        env_file = ".env"


settings = Settings()
logger.info(f"加载配置: API_PREFIX={settings.API_PREFIX}, CORS={settings.BACKEND_CORS_ORIGINS}")
