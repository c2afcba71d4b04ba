"""
消息总线模块 - 实现渠道、编排器与用户信箱之间的解耦通信。

消息流向：
  用户输入 → 渠道(Channel) → InboundMessage → MessageBus → 编排器处理
  编排器决定回复 → OutboundMessage → 用户信箱(Mailbox) → 渠道(Channel) → 用户

【Java 开发者类比】
- MessageBus 类似于一个 BlockingQueue 的简单包装
- Mailbox 类似于每个用户一个的单线程 Executor
- InboundMessage / OutboundMessage 类似于入站/出站 DTO
"""

from gptron.bus.events import InboundMessage, OutboundMessage, EffectKind, MessageRef, Keyboard, Button
from gptron.bus.queue import MessageBus
from gptron.bus.mailbox import Mailbox, MailboxRegistry

__all__ = [
    "MessageBus",
    "InboundMessage",
    "OutboundMessage",
    "EffectKind",
    "MessageRef",
    "Keyboard",
    "Button",
    "Mailbox",
    "MailboxRegistry",
]
