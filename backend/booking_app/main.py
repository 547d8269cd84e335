"""
酒店预订核心 - 主应用入口
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from booking_app.config import settings
from booking_app.database import init_db
from booking_app.routers import bookings, rooms, payments, operations
from booking_core.errors import BookingError, ErrorCode

logger = logging.getLogger(__name__)

# 错误分类 -> HTTP 状态码
ERROR_STATUS = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_TRANSITION: 409,
    ErrorCode.INVALID_BOOKING_STATE: 409,
    ErrorCode.ROOM_UNAVAILABLE: 409,
    ErrorCode.CAPACITY_EXCEEDED: 422,
    ErrorCode.INVALID_REFUND_AMOUNT: 422,
    ErrorCode.CONCURRENCY_CONFLICT: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logging.basicConfig(level=settings.LOG_LEVEL)

    # 初始化数据库
    init_db()

    # 注册事件处理器
    from booking_app.services.event_handlers import register_event_handlers
    register_event_handlers()

    # 未到店定时扫描
    scheduler = None
    if settings.NO_SHOW_SWEEP_ENABLED:
        from booking_app.services.scheduler import BookingScheduler
        scheduler = BookingScheduler()
        scheduler.schedule_no_show_sweep(settings.NO_SHOW_SWEEP_CRON)
        scheduler.start()

    logger.info(f"{settings.APP_NAME} started")
    yield

    if scheduler is not None:
        scheduler.shutdown()


# 创建应用
app = FastAPI(
    title=settings.APP_NAME,
    description="预订生命周期与房间分配核心",
    version="1.0.0",
    lifespan=lifespan
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境应限制具体域名
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    """把类型化错误转换为 HTTP 响应（携带实体、状态、操作上下文）"""
    status_code = ERROR_STATUS.get(exc.code, 400)
    if status_code >= 409:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code.value} {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# 注册路由
app.include_router(bookings.router)
app.include_router(rooms.router)
app.include_router(payments.router)
app.include_router(operations.router)


@app.get("/")
def root():
    """根路径"""
    return {
        "name": settings.APP_NAME,
        "version": "1.0.0",
    }


@app.get("/health")
def health_check():
    """健康检查"""
    return {"status": "healthy"}
