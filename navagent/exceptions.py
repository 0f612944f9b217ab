"""异常定义：只有致命错误会传播到 run() 的调用方"""


class NavAgentError(Exception):
    """navagent 所有异常的基类"""


class ConfigError(NavAgentError):
    pass


class StartLocationError(NavAgentError):
    """无法解析起始位置，没有可操作的 surface"""


class SurfaceUnavailableError(NavAgentError):
    """surface 无法打开或无法截取快照"""


class IterationBudgetExceeded(NavAgentError):
    """超出调用方设置的迭代上限"""

    def __init__(self, max_iterations: int, history=None):
        super().__init__(f"goal not met within {max_iterations} iterations")
        self.max_iterations = max_iterations
        self.history = list(history or [])
