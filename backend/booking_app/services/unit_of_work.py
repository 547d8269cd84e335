"""
事务辅助 - 冲突重试与提交

房晚锁、网关事件账本、预订号序列都依赖唯一约束串行化并发写入。
写入时撞上唯一约束说明并发的另一方先提交了：回滚整个事务，
抛出 ConcurrencyConflictError，由 run_with_retry 从存储重新推导状态后重试。
"""
from datetime import datetime
from typing import Callable, Optional, TypeVar, Any, Dict
import logging

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from booking_app.config import settings
from booking_core.errors import ConcurrencyConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    """默认时钟（本地时间）；核心逻辑只通过注入的 clock 读取时间"""
    return datetime.now()


def get_clock() -> Clock:
    """依赖注入：获取时钟（测试中覆盖为固定时间）"""
    return system_clock


def flush_or_conflict(db: Session, context: Optional[Dict[str, Any]] = None) -> None:
    """flush；唯一约束冲突转换为 ConcurrencyConflictError"""
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Write conflict during flush: {context or {}}")
        raise ConcurrencyConflictError("并发写入冲突，请重试", context or {}) from e


def commit_or_conflict(db: Session, context: Optional[Dict[str, Any]] = None) -> None:
    """
    提交事务

    - 唯一约束冲突 -> ConcurrencyConflictError
    - 超时等存储错误：结果未知，回滚后原样抛出；调用方重试时从存储重新推导状态
    """
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Write conflict during commit: {context or {}}")
        raise ConcurrencyConflictError("并发写入冲突，请重试", context or {}) from e
    except OperationalError:
        db.rollback()
        logger.error(f"Store error during commit, outcome unknown: {context or {}}")
        raise


def run_with_retry(db: Session, operation: Callable[[], T],
                   max_retries: Optional[int] = None) -> T:
    """
    执行一个完整的工作单元，遇到 ConcurrencyConflictError 时回滚并有限次重试

    其他异常回滚后原样抛出：失败的操作不会留下部分修改

    Args:
        db: 数据库会话
        operation: 工作单元（每次重试都从存储重新读取）
        max_retries: 最大尝试次数，默认读取配置

    Returns:
        工作单元的返回值
    """
    attempts = max(max_retries if max_retries is not None else settings.CONCURRENCY_MAX_RETRIES, 1)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConcurrencyConflictError:
            db.rollback()
            if attempt == attempts:
                logger.warning(f"Concurrency conflict persisted after {attempts} attempts")
                raise
            logger.info(f"Concurrency conflict, retrying ({attempt}/{attempts})")
        except Exception:
            db.rollback()
            raise
    raise AssertionError("unreachable")
