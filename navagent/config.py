"""
配置模块：从环境变量 / .env 文件读取配置。
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from .exceptions import ConfigError

DEFAULTS = {
    'model': 'gpt-4o',
    'temperature': 0.0,
    'max_code_retries': 3,
    'max_iterations': None,  # None 表示不限制，由调用方自行控制
    'start_timeout_ms': 5000,
    'action_delay': 1.0,
    'fault_delay': 2.0,
    'execute_timeout': 30.0,
    'headless': False,
    'visual_mode': False,
    'backtrack_on_failure': False,
    'rank_code': True,
    'log_level': 'INFO',
}

_TRUE = {'1', 'true', 'yes', 'on'}
_FALSE = {'0', 'false', 'no', 'off', ''}


def _as_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def _as_number(name: str, raw: str, cast):
    try:
        return cast(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be {cast.__name__}, got {raw!r}") from None


@dataclass
class AgentConfig:
    """Agent 配置"""

    # API
    api_key: str = ""
    base_url: Optional[str] = None
    model: str = DEFAULTS['model']
    temperature: float = DEFAULTS['temperature']

    # 循环
    max_code_retries: int = DEFAULTS['max_code_retries']
    max_iterations: Optional[int] = DEFAULTS['max_iterations']
    backtrack_on_failure: bool = DEFAULTS['backtrack_on_failure']
    action_delay: float = DEFAULTS['action_delay']
    fault_delay: float = DEFAULTS['fault_delay']

    # Surface
    start_timeout_ms: int = DEFAULTS['start_timeout_ms']
    execute_timeout: float = DEFAULTS['execute_timeout']
    headless: bool = DEFAULTS['headless']
    visual_mode: bool = DEFAULTS['visual_mode']
    rank_code: bool = DEFAULTS['rank_code']

    log_level: str = DEFAULTS['log_level']

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "AgentConfig":
        if dotenv:
            load_dotenv()
        env = os.environ if environ is None else environ

        config = cls(api_key=env.get('OPENAI_API_KEY', ''))
        if env.get('OPENAI_BASE_URL'):
            config.base_url = env['OPENAI_BASE_URL']
        if env.get('OPENAI_MODEL'):
            config.model = env['OPENAI_MODEL']

        numbers = {
            'NAVAGENT_TEMPERATURE': ('temperature', float),
            'NAVAGENT_MAX_CODE_RETRIES': ('max_code_retries', int),
            'NAVAGENT_MAX_ITERATIONS': ('max_iterations', int),
            'NAVAGENT_START_TIMEOUT_MS': ('start_timeout_ms', int),
            'NAVAGENT_ACTION_DELAY': ('action_delay', float),
            'NAVAGENT_FAULT_DELAY': ('fault_delay', float),
            'NAVAGENT_EXECUTE_TIMEOUT': ('execute_timeout', float),
        }
        for name, (attr, cast) in numbers.items():
            if env.get(name):
                setattr(config, attr, _as_number(name, env[name], cast))

        flags = {
            'NAVAGENT_HEADLESS': 'headless',
            'NAVAGENT_VISUAL_MODE': 'visual_mode',
            'NAVAGENT_BACKTRACK': 'backtrack_on_failure',
            'NAVAGENT_RANK_CODE': 'rank_code',
        }
        for name, attr in flags.items():
            if name in env:
                setattr(config, attr, _as_bool(name, env[name]))

        if env.get('NAVAGENT_LOG_LEVEL'):
            config.log_level = env['NAVAGENT_LOG_LEVEL'].upper()

        config.validate()
        return config

    def validate(self) -> None:
        if self.max_code_retries < 1:
            raise ConfigError("max_code_retries must be at least 1")
        if self.max_iterations is not None and self.max_iterations < 1:
            raise ConfigError("max_iterations must be at least 1")
        if self.action_delay < 0:
            raise ConfigError("action_delay must not be negative")
        if self.fault_delay < 0:
            raise ConfigError("fault_delay must not be negative")

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigError("OPENAI_API_KEY is not set, e.g. export OPENAI_API_KEY='sk-...'")
        return self.api_key
