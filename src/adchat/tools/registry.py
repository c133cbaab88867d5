"""Tool registration helpers."""

from collections.abc import Iterable
from typing import Any

from adchat.tools.contracts import CATALOG, ToolCategory, ToolContract


class ToolRegistry:
    def __init__(self, contracts: Iterable[ToolContract] = ()) -> None:
        self._tools: dict[str, ToolContract] = {}
        for contract in contracts:
            self.register(contract)

    def register(self, contract: ToolContract) -> None:
        if contract.name in self._tools:
            raise ValueError(f"tool already registered: {contract.name}")
        self._tools[contract.name] = contract

    def get(self, name: str) -> ToolContract | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def contracts(self) -> list[ToolContract]:
        return list(self._tools.values())

    def in_categories(self, categories: Iterable[ToolCategory]) -> list[ToolContract]:
        wanted = set(categories)
        return [tool for tool in self._tools.values() if tool.category in wanted]

    def schemas(self, names: Iterable[str] | None = None) -> list[dict[str, Any]]:
        selected = self._tools.values() if names is None else [
            self._tools[name] for name in names if name in self._tools
        ]
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters(),
            }
            for tool in selected
        ]


def build_default_registry() -> ToolRegistry:
    return ToolRegistry(CATALOG)
