import logging
import logging.handlers
import os
import sys

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
LOG_FILE_NAME = "app.log"

# 模型 SDK 与 Streamlit 文件监听的调试输出过于嘈杂
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "urllib3", "watchdog")


def setup_logging(log_dir: str = None, level: str = None) -> logging.Logger:
    """
    初始化根记录器：按大小轮转的文件日志 + 控制台输出，普通文本格式。

    Args:
        log_dir (str): 日志目录，缺省读取 LOG_DIR 环境变量 (默认 logs)。
        level (str): 日志级别，缺省读取 LOG_LEVEL 环境变量 (默认 INFO)。

    Returns:
        logging.Logger: 已配置的根记录器。
    """
    log_dir = log_dir or os.getenv("LOG_DIR", "logs")
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT)
    root = logging.getLogger()

    # Streamlit 每次重跑脚本都会调用，先移除旧 handler 避免重复输出
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    root.setLevel(level)

    file_handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, LOG_FILE_NAME),
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))

    logging.captureWarnings(True)
    return root
