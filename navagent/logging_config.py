import logging
import sys
from typing import Optional, TextIO

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'


def setup_logging(level: Optional[str] = None, stream: Optional[TextIO] = None, force: bool = False) -> logging.Logger:
    """为 navagent logger 安装一个 stream handler。

    重复调用不会叠加 handler，除非 force=True。
    """
    logger = logging.getLogger('navagent')
    if logger.handlers and not force:
        return logger

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel((level or 'INFO').upper())
    logger.propagate = False

    # 第三方库太吵
    for name in ('httpx', 'openai', 'asyncio'):
        logging.getLogger(name).setLevel(logging.WARNING)
    return logger
