from loguru import logger
import sys
import os
from pathlib import Path
import contextvars
import asyncio
from dotenv import load_dotenv

load_dotenv()
# ----------------------------------------------------
# Environment & Paths
# ----------------------------------------------------
ENV = os.getenv("APP_ENV", "development")
APP_NAME = "VaultMigrator"
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if ENV == "development" else "INFO")

DEFAULT_LOG_DIR = Path(__file__).resolve().parent.parent.parent / "logs"

# ----------------------------------------------------
# Context Management (Async + Threads safe)
# ----------------------------------------------------
env_var = contextvars.ContextVar("env", default=ENV)
app_name_var = contextvars.ContextVar("app_name", default=APP_NAME)
extra_context_var = contextvars.ContextVar("extra", default={})


class ContextFilter:
    """Inject environment, app name, and custom context (run id etc.) into logs."""
    def set_context(self, **kwargs):
        extra_context_var.set(kwargs)

    def __call__(self, record):
        record["extra"]["env"] = env_var.get()
        record["extra"]["app_name"] = app_name_var.get()
        record["extra"].update(extra_context_var.get())
        return record


context_filter = ContextFilter()
logger.configure(patcher=context_filter)

# ----------------------------------------------------
# Formats
# ----------------------------------------------------
CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<magenta>{extra[env]}</magenta> | <blue>{extra[app_name]}</blue> | "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{name}:{function}:{line} | env={extra[env]} | app={extra[app_name]} | {message}"
)

# ----------------------------------------------------
# Handlers
# ----------------------------------------------------
logger.remove()

# Console logging
logger.add(
    sys.stderr,
    colorize=True,
    format=CONSOLE_FORMAT,
    level=LOG_LEVEL,
    backtrace=True,
    diagnose=False,
)

_file_sinks_configured = False


def configure_file_logging(log_dir=None, level: str = "INFO"):
    """Add rotating file sinks. Only the CLI entry point opts into this."""
    global _file_sinks_configured
    if _file_sinks_configured:
        return

    target = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    target.mkdir(parents=True, exist_ok=True)

    # Migration log
    logger.add(
        target / "migration.log",
        format=FILE_FORMAT,
        level=level,
        rotation="10 MB",
        retention="30 days",
        compression="zip",
        enqueue=True
    )

    # Error log
    logger.add(
        target / "error.log",
        format=FILE_FORMAT,
        level="ERROR",
        rotation="5 MB",
        retention="60 days",
        compression="zip",
        enqueue=True
    )

    # Structured JSON logs
    try:
        logger.add(
            target / "structured.json",
            serialize=True,
            level="DEBUG",
            rotation="10 MB",
            retention="15 days",
            compression="gz",
            enqueue=True,
            delay=True
        )
    except Exception as e:
        logger.warning(f"Failed to setup structured JSON logging: {e}. Using console only.")

    _file_sinks_configured = True


# ----------------------------------------------------
# Exception Handling
# ----------------------------------------------------
def log_exceptions(exc_type, exc_value, exc_traceback):
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logger.opt(exception=(exc_type, exc_value, exc_traceback)).error("Unhandled exception")


sys.excepthook = log_exceptions


def asyncio_exception_handler(loop, context):
    msg = context.get("exception", context["message"])
    logger.error(f"Unhandled async exception: {msg}")


def install_asyncio_exception_handler(loop=None):
    """Route otherwise-unhandled task errors to the log instead of stderr noise."""
    loop = loop or asyncio.get_running_loop()
    loop.set_exception_handler(asyncio_exception_handler)


# ----------------------------------------------------
# Export
# ----------------------------------------------------
def get_logger():
    return logger


def get_context_filter():
    return context_filter
