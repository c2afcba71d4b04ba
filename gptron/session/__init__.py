"""
会话模块 - 用户表、会话存储、菜单状态机与用量账本。
"""

from gptron.session.conversation import Active, Conversation, Deleted, Message, Role
from gptron.session.manager import SessionManager
from gptron.session.menu import MenuState
from gptron.session.usage import TokenUsage, UsageLedger
from gptron.session.user import Access, User, UserStatus

__all__ = [
    "Access",
    "Active",
    "Conversation",
    "Deleted",
    "MenuState",
    "Message",
    "Role",
    "SessionManager",
    "TokenUsage",
    "UsageLedger",
    "User",
    "UserStatus",
]
