from shiplog.middleware.request_id import RequestIdMiddleware

__all__ = ["RequestIdMiddleware"]
