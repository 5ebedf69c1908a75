"""批量编排器 - 并发获取整个仪表盘的图表数据"""

import asyncio
import time
from typing import Dict, List, Optional, Sequence, Tuple

from chartdata.core.config import settings
from chartdata.engines.chart_engine import ChartDataService, get_chart_service
from chartdata.engines.errors import ChartDataError, PoolResolutionError, ValidationError
from chartdata.models.chart import BatchRequest, BatchResult
from chartdata.utils.logger import log


class BatchOrchestrator:
    """并发执行 N 个图表请求，各请求的错误相互隔离"""

    def __init__(self, service: Optional[ChartDataService] = None, max_batch_size: Optional[int] = None):
        self.service = service or get_chart_service()
        self.max_batch_size = max_batch_size or settings.max_batch_size

    def validate_envelope(self, requests: Sequence[BatchRequest]):
        """执行前拒绝空批次和超限批次"""
        if not requests:
            raise ValidationError("Requests array is required and must not be empty")
        if len(requests) > self.max_batch_size:
            raise ValidationError(f"Maximum {self.max_batch_size} charts per batch request")

    async def run_one(self, request: BatchRequest) -> Tuple[BatchResult, Optional[Exception]]:
        """执行一个组件；失败时把错误信息写入其结果"""
        try:
            result = await asyncio.to_thread(self.service.run, request.config)
        except ChartDataError as e:
            log.warning(f"组件 {request.widget_id} 执行失败: {e.message}")
            return BatchResult(widget_id=request.widget_id, error=e.message), e
        except Exception as e:
            log.exception(f"组件 {request.widget_id} 出现未预期的错误")
            return BatchResult(widget_id=request.widget_id, error=str(e) or "Query execution failed"), e

        return BatchResult(widget_id=request.widget_id, rows=result.rows, warnings=result.warnings), None

    async def run_batch(self, requests: Sequence[BatchRequest]) -> List[BatchResult]:
        """
        执行一批图表请求

        所有请求都执行完毕后才返回结果。

        Args:
            requests: 组件请求

        Returns:
            每个请求一个 BatchResult，顺序与请求一致

        Raises:
            ValidationError: 批次为空或超限
            PoolResolutionError: 没有任何请求能解析到数据源
        """
        self.validate_envelope(requests)
        log.info(f"处理批量图表数据请求: {len(requests)} 个图表")
        start_time = time.time()

        outcomes = await asyncio.gather(*(self.run_one(r) for r in requests))

        errors = [error for _, error in outcomes]
        if all(isinstance(error, PoolResolutionError) for error in errors):
            log.error("批量请求失败: 没有可解析的数据源")
            raise PoolResolutionError(f"No data source could be resolved: {errors[0]}")

        failed = sum(1 for error in errors if error is not None)
        log.info(f"批量请求完成，耗时 {(time.time() - start_time) * 1000:.2f} ms，失败 {failed} 个")
        return [result for result, _ in outcomes]

    @staticmethod
    def to_maps(results: Sequence[BatchResult]) -> Tuple[Dict[str, list], Dict[str, str], Dict[str, List[str]]]:
        """把结果拆分为以 widgetId 为键的 (data, errors, warnings) 映射"""
        data: Dict[str, list] = {}
        errors: Dict[str, str] = {}
        warnings: Dict[str, List[str]] = {}
        for result in results:
            if result.error is not None:
                errors[result.widget_id] = result.error
            else:
                data[result.widget_id] = result.rows
            if result.warnings:
                warnings[result.widget_id] = result.warnings
        return data, errors, warnings


# 全局单例
_batch_orchestrator = None


def get_batch_orchestrator() -> BatchOrchestrator:
    """获取 BatchOrchestrator 单例"""
    global _batch_orchestrator
    if _batch_orchestrator is None:
        _batch_orchestrator = BatchOrchestrator()
    return _batch_orchestrator
