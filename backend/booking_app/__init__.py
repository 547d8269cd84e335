"""
booking_app - 酒店预订核心应用层

SQLAlchemy 持久化、业务服务、FastAPI 路由
"""
