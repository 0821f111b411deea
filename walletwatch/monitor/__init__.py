from .service import AdminResult, MonitorService, ServiceStats

__all__ = ["AdminResult", "MonitorService", "ServiceStats"]
