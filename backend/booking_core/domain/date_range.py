"""
半开日期区间 [check_in, check_out)

退房当天可以被新的入住使用：同一房间 N 日退房与 N 日入住不冲突。
"""
import math
from datetime import date, datetime, time, timedelta
from typing import List, Tuple, Union

DateLike = Union[date, datetime]

_ONE_DAY = timedelta(days=1)


def _as_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def overlaps(a_start: DateLike, a_end: DateLike, b_start: DateLike, b_end: DateLike) -> bool:
    """[a_start, a_end) 与 [b_start, b_end) 是否重叠"""
    return _as_datetime(a_start) < _as_datetime(b_end) and _as_datetime(b_start) < _as_datetime(a_end)


def nights_between(check_in: DateLike, check_out: DateLike) -> int:
    """
    入住晚数 = ceil((check_out - check_in) 的天数)

    不做截断：结果可能为 0 或负数，由调用方决定如何报错
    """
    delta = _as_datetime(check_out) - _as_datetime(check_in)
    return math.ceil(delta / _ONE_DAY)


def stay_nights(check_in: DateLike, check_out: DateLike) -> List[date]:
    """返回区间内每一晚对应的日期（以入住日期为第一晚）"""
    first = check_in.date() if isinstance(check_in, datetime) else check_in
    return [first + timedelta(days=i) for i in range(max(nights_between(check_in, check_out), 0))]


def stay_bounds(check_in: date, check_out: date,
                check_in_hour: int, check_out_hour: int) -> Tuple[datetime, datetime]:
    """把日期转换为固定入住/退房时刻的时间戳"""
    return (
        datetime.combine(_as_date(check_in), time(hour=check_in_hour)),
        datetime.combine(_as_date(check_out), time(hour=check_out_hour)),
    )


def _as_date(value: DateLike) -> date:
    return value.date() if isinstance(value, datetime) else value
