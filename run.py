"""启动脚本"""

import uvicorn
from chartdata.core.config import settings
from chartdata.utils.logger import log


if __name__ == "__main__":
    log.info("="*60)
    log.info("Chart Data Engine - 启动中")
    log.info("="*60)
    log.info(f"服务地址: http://{settings.api_host}:{settings.api_port}")
    log.info(f"API 文档: http://{settings.api_host}:{settings.api_port}/docs")
    log.info(f"调试模式: {settings.debug}")
    log.info(f"默认数据源: {settings.database_path}")
    log.info(f"其他数据源: {', '.join(settings.connections) or '无'}")
    log.info(f"批量请求上限: {settings.max_batch_size}")
    log.info("="*60)

    uvicorn.run(
        "chartdata.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level="info"
    )
