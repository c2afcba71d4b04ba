"""
编排器模块 - 入站事件的访问控制、命令路由与外部服务调用。
"""

from gptron.agent.commands import CommandRouter
from gptron.agent.context import ContextBuilder
from gptron.agent.exchange import ExchangeService
from gptron.agent.loop import AgentLoop

__all__ = ["AgentLoop", "CommandRouter", "ContextBuilder", "ExchangeService"]
