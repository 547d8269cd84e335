"""
booking_core - 预订核心框架

与持久化、HTTP 无关的纯逻辑层：
- errors: 类型化错误（携带实体ID、当前状态、尝试的操作）
- engine: 状态机引擎（预订生命周期、房间状态）
- domain: 纯计算（半开区间、定价、支付状态推导）

使用方式:
    >>> from booking_core.engine.state_machine import booking_state_machine
    >>> from booking_core.domain.pricing import compute_breakdown
"""
