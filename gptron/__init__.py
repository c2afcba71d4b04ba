"""
gptron - 面向 Telegram 的多用户 ChatGPT 会话管理器

模块概述：
    本文件是 gptron 包的入口文件（__init__.py），定义了包的元信息。

    整个框架的核心功能包括：
    - 用户准入控制（待审核 / 白名单 / 黑名单 / 管理员）
    - 每个用户的多会话管理（新建、选择、软删除、摘要、报告）
    - 基于有限状态机的菜单导航
    - token 用量与费用核算（费用始终由价格表实时推导）
    - 每用户一个串行出站信箱，保证回复顺序不乱
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出等场景
__logo__ = "🤖"
