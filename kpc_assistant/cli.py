"""
Interactive command line chat for the KPC assistant.

    kpc-assistant            # REPL, buffered answers
    kpc-assistant --stream   # REPL, streamed answers
    kpc-assistant --demo     # run the demo questions and exit
"""

from __future__ import annotations

import argparse
import atexit
import signal
import sys
from dataclasses import replace
from typing import Iterable, Optional

from kpc_assistant.core.config import LOG_LEVEL, AssistantSettings
from kpc_assistant.core.errors import AssistantError
from kpc_assistant.core.observability import setup_logging
from kpc_assistant.core.session import AssistantSession

PROMPT = "KPC助手> "

DEMO_QUESTIONS = (
    "Button组件有哪些属性？",
    "如何使用Form组件进行表单验证？",
    "搜索所有表单相关的组件",
    "Table组件如何实现分页？",
    '验证这个Button配置是否正确：{"type": "primary", "size": "large"}',
    "KPC组件库总共有多少个组件？",
    "你好，请介绍一下你自己",
)

HELP_TEXT = """
KPC AI助手使用帮助:

问题示例:
  - "Button组件有哪些属性？"
  - "如何使用Form组件？"
  - "搜索表单相关组件"
  - "Table组件的分页怎么实现？"
  - "验证这个配置：{"type": "primary"}"

命令:
  - help       显示帮助
  - stream     用流式模式回答下一个问题
  - exit/quit  退出程序
  - Ctrl+C     退出
"""


def _write(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def ask(session: AssistantSession, question: str, stream: bool) -> None:
    if stream:
        session.chat_stream(question, on_chunk=_write)
        print("\n")
    else:
        answer = session.chat(question)
        print("\n回答:")
        print(answer)
        print()


def run_demo(session: AssistantSession, questions: Iterable[str] = DEMO_QUESTIONS) -> None:
    for i, question in enumerate(questions, start=1):
        print(f"问题 {i}: {question}")
        print(session.chat(question))
        print("\n" + "=" * 80 + "\n")
    print("演示完成！")


def repl(session: AssistantSession, stream: bool = False, input_fn=input) -> None:
    print("您可以问我关于KPC组件的任何问题")
    print('输入 "help" 查看帮助，"exit" 或 "quit" 退出\n')
    while True:
        try:
            line = input_fn(PROMPT)
        except EOFError:
            print()
            return

        question = line.strip()
        if not question:
            continue
        command = question.lower()
        if command in ("exit", "quit"):
            print("再见！")
            return
        if command == "help":
            print(HELP_TEXT)
            continue
        if command == "stream":
            try:
                follow_up = input_fn("问题> ").strip()
            except EOFError:
                return
            if follow_up:
                ask(session, follow_up, stream=True)
            continue

        ask(session, question, stream=stream)


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="KPC component library assistant")
    parser.add_argument("--stream", action="store_true", help="stream answers as they are generated")
    parser.add_argument("--demo", action="store_true", help="run the demo questions and exit")
    parser.add_argument("--ollama-url", help="override KPC_OLLAMA_URL")
    parser.add_argument("--model", help="override KPC_CHAT_MODEL")
    parser.add_argument("--server-command", help="override KPC_MCP_SERVER_COMMAND")
    parser.add_argument("--log-level", default=LOG_LEVEL)
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    overrides = {}
    if args.ollama_url:
        overrides["ollama_url"] = args.ollama_url
    if args.model:
        overrides["model"] = args.model
    if args.server_command:
        overrides["server_command"] = args.server_command
    settings = AssistantSettings.from_env()
    if overrides:
        settings = replace(settings, **overrides)

    session = AssistantSession(settings)

    def signal_handler(signum, frame):
        session.shutdown()
        sys.exit(0)

    atexit.register(session.shutdown)
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    print("KPC AI助手启动中...")
    try:
        session.initialize()
    except AssistantError as exc:
        print(f"初始化失败: {exc}", file=sys.stderr)
        print("请确保 kpc-mcp-server 已安装并可在 PATH 中找到，或通过 --server-command 指定。", file=sys.stderr)
        return 1

    try:
        if args.demo:
            run_demo(session)
        else:
            repl(session, stream=args.stream)
    finally:
        session.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
