"""API 路由聚合"""
from fastapi import APIRouter

from app.api import invoices, payments, reports

api_router = APIRouter()

api_router.include_router(payments.router, prefix="/payment", tags=["回款管理"])
api_router.include_router(invoices.router, prefix="/invoice", tags=["发票管理"])
api_router.include_router(reports.router, tags=["应收与对账"])
