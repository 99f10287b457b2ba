import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    CHECKS_PATH: str = os.getenv("SCOREPROBE_CHECKS_PATH", "checks.yml")
    TIMEOUT_S: float = float(os.getenv("SCOREPROBE_TIMEOUT_S", "30"))
    INTERVAL_S: int = int(os.getenv("SCOREPROBE_INTERVAL_S", 60))
    MAX_WORKERS: int = int(os.getenv("SCOREPROBE_MAX_WORKERS", 32))
    # Extra time given to a probe after its deadline before the engine
    # stops waiting for it.
    GRACE_S: float = float(os.getenv("SCOREPROBE_GRACE_S", "5"))
    LOG_LEVEL: str = os.getenv("SCOREPROBE_LOG_LEVEL", "INFO")


settings = Settings()
