"""记忆模块：保存动作历史和访问记录"""

from typing import Iterator, List, Optional

from .models import Action


class ActionHistory:
    """
    只追加的有序动作历史。

    每轮循环恰好追加一个 Action；失败的动作同样保留，作为后续预测的负反馈。
    """

    def __init__(self):
        self._actions: List[Action] = []
        self.visited_locations: List[str] = []

    def append(self, action: Action) -> None:
        self._actions.append(action)

    def record_location(self, location: str):
        """记录访问过的位置"""
        if location and location not in self.visited_locations:
            self.visited_locations.append(location)

    @property
    def last(self) -> Optional[Action]:
        return self._actions[-1] if self._actions else None

    def snapshot(self) -> List[Action]:
        return list(self._actions)

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self) -> Iterator[Action]:
        return iter(list(self._actions))

    def __getitem__(self, index) -> Action:
        return self._actions[index]

    def is_repeated_action(self, action: Action, threshold: int = 2) -> bool:
        """判断最近是否重复执行了相同动作"""
        recent = self._actions[-threshold:]
        count = sum(
            1 for a in recent
            if a.kind == action.kind and a.target == action.target and a.value == action.value
        )
        return count >= threshold

    def format_history(self, last_n: int = 5) -> str:
        if not self._actions:
            return "(no history)"

        lines = []
        start = max(len(self._actions) - last_n, 0)
        for num, action in enumerate(self._actions[start:], start=start + 1):
            value_str = f" = '{action.value}'" if action.value else ""
            lines.append(
                f"Step {num}: {action.kind.value} {action.target}{value_str} → {action.outcome.value}"
            )
        return "\n".join(lines)
