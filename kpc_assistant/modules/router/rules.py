# kpc_assistant/modules/router/rules.py
import json
import re
from typing import Any, Dict, List, Optional, Tuple

from kpc_assistant.core.capability import CapabilityCall

# Lower-cased key -> canonical component name. Longer keys are matched first
# so "datepicker" wins over anything it contains.
KNOWN_COMPONENTS: Dict[str, str] = {
    "button": "Button",
    "form": "Form",
    "table": "Table",
    "input": "Input",
    "select": "Select",
    "dialog": "Dialog",
    "message": "Message",
    "tooltip": "Tooltip",
    "checkbox": "Checkbox",
    "radio": "Radio",
    "switch": "Switch",
    "pagination": "Pagination",
    "tabs": "Tabs",
    "tree": "Tree",
    "upload": "Upload",
    "dropdown": "Dropdown",
    "drawer": "Drawer",
    "datepicker": "DatePicker",
    "date picker": "DatePicker",
    "timepicker": "TimePicker",
    "time picker": "TimePicker",
    "treeselect": "TreeSelect",
    "tree select": "TreeSelect",
}

_COMPONENT_PATTERNS: List[Tuple[re.Pattern, str]] = [
    # ASCII letters on either side mean the key is part of a longer word ("format").
    (re.compile(r"(?<![a-z])" + re.escape(key) + r"(?![a-z])"), name)
    for key, name in sorted(KNOWN_COMPONENTS.items(), key=lambda kv: -len(kv[0]))
]

STATS_KEYWORDS = ("多少个", "总共", "统计", "数量", "stats")
SEARCH_KEYWORDS = ("搜索", "查找", "找", "相关组件", "search")
PROPS_KEYWORDS = ("属性", "props", "api", "参数")
USAGE_KEYWORDS = ("如何使用", "怎么用", "示例", "例子", "用法")
VALIDATE_KEYWORDS = ("验证", "检查", "正确", "配置")

SCENARIOS = ("基础用法", "表单验证", "高级配置", "事件处理", "自定义样式", "分页", "排序", "筛选")

_SEARCH_STRIP = re.compile(r"搜索|查找|找|相关组件|的组件|组件|search", re.I)
_JSON_OBJECT = re.compile(r"\{[^}]+\}")
_PROP_PATTERNS = {
    "type": re.compile(r"type[：:]\s*[\"']?(\w+)[\"']?"),
    "size": re.compile(r"size[：:]\s*[\"']?(\w+)[\"']?"),
}


def _contains_any(text: str, keywords) -> bool:
    return any(k in text for k in keywords)


def find_component(text: str) -> Optional[str]:
    """
    Return the canonical name of the first known component mentioned in text.
    Matching is case-insensitive and exact on the table keys.
    """
    lowered = (text or "").lower()
    for pattern, name in _COMPONENT_PATTERNS:
        if pattern.search(lowered):
            return name
    return None


def extract_scenario(text: str) -> Optional[str]:
    for scenario in SCENARIOS:
        if scenario in text:
            return scenario
    if "验证" in text:
        return "表单验证"
    if "事件" in text:
        return "事件处理"
    return None


def extract_props(text: str) -> Dict[str, Any]:
    """
    Pull a props object out of an utterance: an embedded JSON object first,
    then simple `type:` / `size:` pairs.
    """
    match = _JSON_OBJECT.search(text)
    if match:
        try:
            value = json.loads(match.group(0))
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value

    props: Dict[str, Any] = {}
    for key, pattern in _PROP_PATTERNS.items():
        m = pattern.search(text)
        if m:
            props[key] = m.group(1)
    return props


def extract_search_query(text: str) -> str:
    return _SEARCH_STRIP.sub("", text).strip()


def rule_based_call(text: str) -> Optional[CapabilityCall]:
    """
    Deterministic keyword routing. Returns None when no rule applies.

    Order: statistics, then search (only with a non-empty query), then rules
    that need a component mention.
    """
    text = (text or "").strip()
    if not text:
        return None
    lowered = text.lower()

    if _contains_any(lowered, STATS_KEYWORDS):
        return CapabilityCall("get_stats", {})

    if _contains_any(lowered, SEARCH_KEYWORDS):
        query = extract_search_query(text)
        # nothing left to search for: let the component rules look at it
        if query:
            return CapabilityCall("search", {"query": query})

    component = find_component(lowered)
    if component is None:
        return None

    if _contains_any(lowered, PROPS_KEYWORDS):
        return CapabilityCall("get_component", {"component": component})

    if _contains_any(lowered, USAGE_KEYWORDS):
        arguments: Dict[str, Any] = {"component": component}
        scenario = extract_scenario(text)
        if scenario:
            arguments["scenario"] = scenario
        return CapabilityCall("get_usage_examples", arguments)

    if _contains_any(lowered, VALIDATE_KEYWORDS):
        return CapabilityCall("validate_usage", {"component": component, "props": extract_props(text)})

    return CapabilityCall("get_component", {"component": component})
