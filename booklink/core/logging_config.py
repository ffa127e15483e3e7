# booklink/core/logging_config.py
import logging


def configure_logging(level: str = "INFO") -> None:
    """
    Configure root logging once for the service process.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Reduce verbosity of third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def mask_token(token: str | None) -> str:
    """
    Shorten an opaque token for log lines so the full credential never lands in logs.
    """
    if not token:
        return "<none>"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}…{token[-4:]}"
