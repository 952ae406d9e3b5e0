"""
Capability catalog - static, read-only.

The catalog is built once when a session is constructed. Lookups are
case-insensitive and exact, and accept either the logical name or the tool
name used on the capability server.
"""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional

from kpc_assistant.core.capability import CapabilityDescriptor


class CapabilityCatalog:
    def __init__(self, descriptors: Iterable[CapabilityDescriptor]):
        self._by_name: Dict[str, CapabilityDescriptor] = {}
        self._aliases: Dict[str, str] = {}
        self._locked = False
        for descriptor in descriptors:
            self._register(descriptor)
        self._locked = True

    def _register(self, descriptor: CapabilityDescriptor) -> None:
        """
        Register a capability during construction only.
        """
        if self._locked:
            raise RuntimeError("Capability catalog is locked. No runtime registration allowed.")

        key = descriptor.name.lower()
        if key in self._aliases:
            raise ValueError(f"Capability '{descriptor.name}' already registered")

        self._by_name[descriptor.name] = descriptor
        self._aliases[key] = descriptor.name
        remote_key = descriptor.tool_name.lower()
        if remote_key != key:
            if remote_key in self._aliases:
                raise ValueError(f"Tool name '{descriptor.tool_name}' already registered")
            self._aliases[remote_key] = descriptor.name

    def resolve(self, name: Optional[str]) -> Optional[CapabilityDescriptor]:
        """
        Find the descriptor for a logical or remote name.
        Returns None if not found.
        """
        if not isinstance(name, str):
            return None
        canonical = self._aliases.get(name.strip().lower())
        if canonical is None:
            return None
        return self._by_name[canonical]

    def is_known(self, name: Optional[str]) -> bool:
        return self.resolve(name) is not None

    def get(self, name: str) -> CapabilityDescriptor:
        descriptor = self.resolve(name)
        if descriptor is None:
            raise KeyError(name)
        return descriptor

    def names(self) -> List[str]:
        return list(self._by_name)

    def describe_all(self) -> str:
        """
        Render every descriptor for the classification prompt.
        """
        return "\n".join(d.describe() for d in self._by_name.values())

    def __iter__(self) -> Iterator[CapabilityDescriptor]:
        return iter(self._by_name.values())

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.is_known(name)


# =========================
# KPC component library capabilities
# =========================

GET_COMPONENT = CapabilityDescriptor(
    name="get_component",
    remote_name="get_kpc_component",
    description="获取指定KPC组件的详细信息（属性、事件、插槽、API）",
    parameters={"component": "组件名称，例如 Button、Form、Table"},
    examples=("Button组件有哪些属性？", "Table的API是什么"),
    required=("component",),
    empty_message="未获取到结果",
)

SEARCH = CapabilityDescriptor(
    name="search",
    remote_name="search_kpc_components",
    description="按关键词或分类搜索KPC组件，支持模糊匹配",
    parameters={
        "query": "搜索关键词",
        "category": "可选，组件分类",
        "fuzzy": "可选，是否模糊匹配（true/false）",
    },
    examples=("搜索表单相关的组件", "查找弹窗类组件"),
    required=("query",),
    empty_message="未找到匹配的组件",
)

LIST_COMPONENTS = CapabilityDescriptor(
    name="list_components",
    remote_name="list_kpc_components",
    description="列出KPC组件，可按分类过滤",
    parameters={
        "category": "可选，组件分类",
        "summary": "可选，是否只返回摘要（true/false）",
    },
    examples=("列出所有表单类组件",),
    empty_message="未获取到组件列表",
)

GET_USAGE_EXAMPLES = CapabilityDescriptor(
    name="get_usage_examples",
    remote_name="get_kpc_usage_examples",
    description="获取KPC组件的使用示例代码，可指定场景和目标框架",
    parameters={
        "component": "组件名称",
        "scenario": "可选，使用场景，例如 基础用法、表单验证、分页",
        "framework": "可选，目标框架，默认 vue3",
    },
    examples=("如何使用Form组件进行表单验证？", "Table组件如何实现分页？"),
    required=("component",),
    defaults={"framework": "vue3"},
    empty_message="未获取到示例",
)

VALIDATE_USAGE = CapabilityDescriptor(
    name="validate_usage",
    remote_name="validate_kpc_usage",
    description="验证KPC组件的属性配置是否正确",
    parameters={
        "component": "组件名称",
        "props": "要验证的属性对象（JSON）",
        "context": "可选，使用上下文说明",
    },
    examples=('验证这个Button配置是否正确：{"type": "primary"}',),
    required=("component",),
    empty_message="验证失败",
)

GET_STATS = CapabilityDescriptor(
    name="get_stats",
    remote_name="get_kpc_stats",
    description="获取KPC组件库的统计信息（组件总数、分类数量等）",
    examples=("KPC组件库总共有多少个组件？",),
    empty_message="未获取到统计信息",
)

KPC_CAPABILITIES = (
    GET_COMPONENT,
    SEARCH,
    LIST_COMPONENTS,
    GET_USAGE_EXAMPLES,
    VALIDATE_USAGE,
    GET_STATS,
)


def default_catalog() -> CapabilityCatalog:
    return CapabilityCatalog(KPC_CAPABILITIES)
