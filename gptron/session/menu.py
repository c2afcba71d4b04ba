"""
菜单状态机模块 - UI 屏幕之间的转换规则与每个屏幕的提示/键盘渲染。

五个状态：
  MAIN → LIST → SELECTED ⇄ SELECT_MODEL / SELECT_PERSONALITY

SELECTED 是"惰性细化"的：选中的会话还没有模型时实际显示的是 SELECT_MODEL，
有模型但没有人设时显示 SELECT_PERSONALITY，两者都有时才真正停留在 SELECTED，
也只有这时自由文本和语音才会被当作对话输入。

没有终止状态；/home 从任何状态回到 MAIN。
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from gptron.bus.events import Keyboard
from gptron.catalog.models import MODELS, ModelCatalog
from gptron.catalog.personalities import PERSONALITIES, PersonalityCatalog

if TYPE_CHECKING:
    from gptron.session.conversation import Conversation
    from gptron.session.user import User


class MenuState(str, Enum):
    MAIN = "main"
    LIST = "list"
    SELECTED = "selected"
    SELECT_MODEL = "select_model"
    SELECT_PERSONALITY = "select_personality"


_PARENTS = {
    MenuState.SELECTED: MenuState.LIST,
}

PROMPTS = {
    MenuState.MAIN: "Main menu, select an action",
    MenuState.LIST: "Select a conversation from the list",
    MenuState.SELECTED: "Conversation menu, write a message or select an action",
    MenuState.SELECT_MODEL: "Select a model for the conversation",
    MenuState.SELECT_PERSONALITY: "Select a personality for the conversation",
}


def back(state: MenuState) -> MenuState:
    """/back 的目标状态：SELECTED 回到 LIST，其余全部回到 MAIN。"""
    return _PARENTS.get(state, MenuState.MAIN)


def refine(user: User) -> MenuState:
    """
    根据选中会话的完整程度，计算 SELECTED 的实际屏幕。

    没有选中会话时回到 MAIN。
    """
    conv = user.selected
    if conv is None:
        return MenuState.MAIN
    if conv.model is None:
        return MenuState.SELECT_MODEL
    if conv.personality is None:
        return MenuState.SELECT_PERSONALITY
    return MenuState.SELECTED


def select_label(conv: Conversation) -> str:
    """会话列表中的按钮文字：/select <标题> <id>，无标题时只有 id。"""
    if conv.title:
        return f"/select {conv.title} {conv.id}"
    return f"/select {conv.id}"


def keyboard(
    user: User,
    models: ModelCatalog = MODELS,
    personalities: PersonalityCatalog = PERSONALITIES,
) -> Keyboard:
    """渲染用户当前状态对应的回复键盘。"""
    kb = Keyboard()
    state = user.menu_state

    if state is MenuState.MAIN:
        kb.add_row("/list", "/new")
        kb.add_row("/stats")
        if user.is_privileged:
            kb.add_row("/users_list", "/global_stats")
    elif state is MenuState.LIST:
        kb.add_row("/back")
        for conv in user.active_conversations():
            kb.add_row(select_label(conv))
    elif state is MenuState.SELECTED:
        kb.add_row("/back", "/stats")
        kb.add_row("/summarize", "/delete")
        kb.add_row("/generate_report", "/home")
    elif state is MenuState.SELECT_MODEL:
        kb.add_row("/back")
        for spec in models.available_to(user.is_privileged):
            kb.add_row(f"/model {spec.name}")
    elif state is MenuState.SELECT_PERSONALITY:
        kb.add_row("/back")
        for name in personalities.names:
            kb.add_row(f"/ask {name}")
    return kb


def render(
    user: User,
    models: ModelCatalog = MODELS,
    personalities: PersonalityCatalog = PERSONALITIES,
) -> tuple[str, Keyboard]:
    """返回 (提示文字, 键盘)。"""
    return PROMPTS[user.menu_state], keyboard(user, models, personalities)
