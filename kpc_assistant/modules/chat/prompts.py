"""
All prompt templates and canned user-facing messages live here.
"""

CLASSIFY_PROMPT = """
你是KPC组件库助手的意图分类器。判断回答用户问题是否需要调用下面的工具。

可用工具：
%s

用户问题：%s

如果需要调用工具，只输出一个JSON对象，格式为：
{"name": "工具名", "arguments": {"参数名": "参数值"}}
如果不需要调用工具，只输出：NONE
不要输出任何其他内容。
""".strip()

DIRECT_ANSWER_PROMPT = """
你是一个专业的前端开发助手，特别擅长Vue组件开发。

用户问题：%s

请用友好、专业的语调回答用户的问题。如果问题与KPC组件库相关但你需要更具体的信息，请引导用户提供更多细节。
""".strip()

SYNTHESIS_PROMPT = """
你是KPC组件库专家，基于以下信息回答用户问题：

用户问题：%s

工具查询结果：
%s

请根据查询结果，用友好、专业的语调回答用户问题：
1. 直接回答用户的问题
2. 提供实用的建议和代码示例
3. 如果合适，补充相关的最佳实践
4. 保持回答简洁明了
""".strip()

BACKEND_UNAVAILABLE_MESSAGE = """
您好！我是KPC组件库助手。您的问题"%s"需要AI回答，但Ollama服务当前不可用。

请确保：
1. Ollama服务正在运行: ollama serve
2. 模型已下载: ollama pull %s
3. 服务地址正确: %s

或者您可以询问具体的KPC组件问题，我可以为您查询准确的组件信息。
""".strip()

ERROR_MESSAGE = "抱歉，处理您的问题时出现错误：%s"
TOOL_FAILURE_MESSAGE = "工具执行失败：%s"
UNKNOWN_TOOL_MESSAGE = "未知工具：%s"
STATUS_NOTICE = "🔧 正在查询%s...\n\n"


def build_classify_prompt(catalog_description: str, utterance: str) -> str:
    return CLASSIFY_PROMPT % (catalog_description, utterance)


def build_direct_answer_prompt(utterance: str) -> str:
    return DIRECT_ANSWER_PROMPT % utterance


def build_synthesis_prompt(utterance: str, tool_output: str) -> str:
    return SYNTHESIS_PROMPT % (utterance, tool_output)


def backend_unavailable_message(utterance: str, model: str, url: str) -> str:
    return BACKEND_UNAVAILABLE_MESSAGE % (utterance, model, url)
