from .log import InterceptHandler, Loggin, account_context

__all__ = ["InterceptHandler", "Loggin", "account_context"]
