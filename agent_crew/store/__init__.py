from .redis_store import RedisTaskStore

__all__ = ["RedisTaskStore"]
