import os
import logging
from pydantic import BaseModel
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings(BaseModel):
    redis_url: str = "redis://localhost:6379"
    use_fake_redis: bool = False

    use_groq: bool = False
    groq_api_key: str = ""
    planner_model: str = "llama-3.3-70b-versatile"
    worker_model: str = "llama-3.1-8b-instant"

    completion_timeout_seconds: float = 120.0
    completion_max_retries: int = 2
    retry_backoff_seconds: float = 1.0

    max_plan_steps: int = 6
    fallback_plan_with_writer: bool = False

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Reads settings from the environment.

        A local .env is only loaded when REDIS_URL is missing, so values
        injected by docker-compose are never overridden by a mounted file.
        """
        if not os.getenv("REDIS_URL"):
            load_dotenv()

        return cls(
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            use_fake_redis=_env_bool("USE_FAKE_REDIS"),
            use_groq=_env_bool("USE_GROQ"),
            groq_api_key=os.getenv("GROQ_API_KEY", ""),
            planner_model=os.getenv("PLANNER_MODEL", "llama-3.3-70b-versatile"),
            worker_model=os.getenv("WORKER_MODEL", "llama-3.1-8b-instant"),
            completion_timeout_seconds=float(os.getenv("COMPLETION_TIMEOUT_SECONDS", "120")),
            completion_max_retries=int(os.getenv("COMPLETION_MAX_RETRIES", "2")),
            retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "1.0")),
            max_plan_steps=int(os.getenv("MAX_PLAN_STEPS", "6")),
            fallback_plan_with_writer=_env_bool("FALLBACK_PLAN_WITH_WRITER"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
