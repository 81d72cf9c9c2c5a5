from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime

from app.db.base import Base


class Customer(Base):
    """客户（仅保留回款报表需要的字段）"""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, index=True, comment="客户名称")
    short_name = Column(String(50), comment="简称")
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Customer {self.name}>"
