"""FastAPI 应用"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chartdata.core.config import settings
from chartdata.engines.batch import BatchOrchestrator, get_batch_orchestrator
from chartdata.engines.chart_engine import ChartDataService, get_chart_service
from chartdata.engines.connection_pool import PoolRegistry, get_pool_registry
from chartdata.engines.errors import ChartDataError
from chartdata.engines.schema_validator import SchemaValidator, get_schema_validator
from chartdata.models.chart import BatchChartDataRequest, BatchRequest, ChartDataRequest, apply_date_range
from chartdata.models.response import (
    BatchChartDataResponse,
    ChartDataResponse,
    ColumnInfo,
    TableInfo,
    TableSchemaResponse,
    TablesResponse,
)
from chartdata.utils.logger import log
from chartdata.utils.rate_limiter import get_rate_limiter


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期：退出时关闭所有数据源连接"""
    yield
    get_pool_registry().close_all()
    log.info("已关闭所有数据源连接")


# 创建应用
app = FastAPI(
    title="Chart Data Engine",
    description="基于 SQL 数据源和导入数据集的声明式图表查询",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@app.exception_handler(ChartDataError)
async def chart_data_error_handler(request: Request, exc: ChartDataError):
    return error_response(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    )
    return error_response(400, f"Invalid request: {details}")


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception(f"未处理的异常: {request.url.path}")
    return error_response(500, str(exc) or "Internal server error")


def check_rate_limit(req: Request):
    """拒绝超过请求配额的客户端"""
    rate_limiter = get_rate_limiter()
    client_ip = req.client.host if req.client else "unknown"
    if not rate_limiter.is_allowed(client_ip):
        raise HTTPException(
            status_code=429,
            detail=f"Too many requests, try again later. Remaining: {rate_limiter.get_remaining(client_ip)}"
        )


@app.get("/")
async def root():
    """服务信息"""
    return {
        "name": "Chart Data Engine",
        "version": "0.1.0",
        "status": "running"
    }


@app.get("/health")
async def health():
    """健康检查"""
    return {"status": "healthy"}


@app.post(
    "/api/database/chart-data",
    response_model=ChartDataResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(check_rate_limit)]
)
async def chart_data(request: ChartDataRequest, service: ChartDataService = Depends(get_chart_service)):
    """
    获取单个图表的数据

    规格错误返回 400，表或连接不存在返回 404，执行失败返回 500。
    """
    source = request.to_source()
    result = await asyncio.to_thread(service.run, source)
    return ChartDataResponse(
        data=jsonable_encoder(result.rows),
        warnings=result.warnings or None
    )


@app.post(
    "/api/database/chart-data/batch",
    response_model=BatchChartDataResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(check_rate_limit)]
)
async def chart_data_batch(
    request: BatchChartDataRequest,
    orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator)
):
    """
    一次获取多个图表的数据（最多 50 个）

    失败的组件记录在 errors 中，其余组件照常返回数据。
    """
    requests = request.requests
    if request.date_range:
        date_from, date_to = request.date_range.from_, request.date_range.to
        requests = [
            BatchRequest(widget_id=r.widget_id, config=apply_date_range(r.config, date_from, date_to))
            for r in requests
        ]

    results = await orchestrator.run_batch(requests)
    data, errors, warnings = orchestrator.to_maps(results)
    return BatchChartDataResponse(
        data=jsonable_encoder(data),
        errors=errors or None,
        warnings=warnings or None
    )


@app.get("/api/database/tables", response_model=TablesResponse, response_model_by_alias=True)
async def list_tables(
    connection_id: Optional[str] = Query(None, alias="connectionId"),
    registry: PoolRegistry = Depends(get_pool_registry),
    validator: SchemaValidator = Depends(get_schema_validator)
):
    """数据源中的表和视图"""
    pool = registry.get_pool(connection_id)
    tables = await asyncio.to_thread(validator.list_tables, pool)
    return TablesResponse(data=[TableInfo(schema_name=t.schema, name=t.table) for t in tables])


@app.get("/api/database/schema/{table}", response_model=TableSchemaResponse)
async def table_schema(
    table: str,
    connection_id: Optional[str] = Query(None, alias="connectionId"),
    registry: PoolRegistry = Depends(get_pool_registry),
    validator: SchemaValidator = Depends(get_schema_validator)
):
    """单个表的列"""
    pool = registry.get_pool(connection_id)
    columns = await asyncio.to_thread(validator.describe_table, pool, table)
    return TableSchemaResponse(table=table, columns=[ColumnInfo(**c) for c in columns])


if __name__ == "__main__":
    import uvicorn

    log.info(f"启动服务器: {settings.api_host}:{settings.api_port}")

    uvicorn.run(
        "chartdata.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
