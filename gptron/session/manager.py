"""
会话管理器实现模块 - 用户表的所有权、按用户加锁与磁盘持久化。

SessionManager 是用户表唯一的所有者：
- 内存层：{user_id: User}，编排器只在持有该用户锁时修改对应的 User；
- 磁盘层：data_dir/users.json，整表覆盖写入（"最后写入者获胜"）。

【按用户串行】
lock(user_id) 返回该用户专属的 asyncio.Lock（FIFO 公平）。同一用户的事件
依次处理，不同用户之间完全并发。

【存储格式】
{
  "42": { ...User.model_dump(mode="json")... },
  ...
}

【Java 开发者类比】
- SessionManager 类似于一个带有文件持久化的 ConcurrentHashMap<Long, User>
- lock() 类似于 Guava Striped<Lock> 按键分段加锁
"""

import asyncio
import json
import os
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from gptron.errors import PersistenceError
from gptron.session.user import Access, User, UserStatus
from gptron.utils.helpers import ensure_dir

USERS_FILE = "users.json"


class SessionManager:
    """
    用户表管理器。

    属性:
        data_dir: 数据目录
        path: 用户表文件路径
        admin_id: 管理员 ID（该 ID 的用户创建时即为 PRIVILEGED）
    """

    def __init__(self, data_dir: Path, admin_id: int):
        self.data_dir = data_dir
        self.path = data_dir / USERS_FILE
        self.admin_id = admin_id
        self._users: dict[int, User] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # 查找与创建
    # ------------------------------------------------------------------

    def get(self, user_id: int) -> User | None:
        return self._users.get(user_id)

    def classify(self, user_id: int) -> Access:
        """访问门：返回 NOT_FOUND 或该用户当前的状态。"""
        return Access.of(self._users.get(user_id))

    def create(self, user_id: int) -> User:
        """创建新用户：管理员为 PRIVILEGED，其他人为 UNREVIEWED。"""
        status = UserStatus.PRIVILEGED if user_id == self.admin_id else UserStatus.UNREVIEWED
        user = User(id=user_id, status=status)
        self._users[user_id] = user
        logger.info(f"Created user {user_id} with status {status.value}")
        return user

    def all(self) -> list[User]:
        """所有用户，按 ID 排序。"""
        return [self._users[k] for k in sorted(self._users)]

    def __len__(self) -> int:
        return len(self._users)

    def lock(self, user_id: int) -> asyncio.Lock:
        """获取用户专属锁（不存在则创建）。"""
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # 持久化
    # ------------------------------------------------------------------

    def load_all(self) -> int:
        """
        从磁盘加载整张用户表（启动时调用一次）。

        文件不存在视为空表。配置的管理员 ID 总是被提升为 PRIVILEGED。

        返回:
            加载的用户数量

        异常:
            PersistenceError: 文件无法读取或内容损坏
        """
        if not self.path.exists():
            logger.info(f"No user table at {self.path}, starting empty")
            return 0
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
            users = {int(k): User.model_validate(v) for k, v in raw.items()}
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Failed to load user table from {self.path}: {e}")
            raise PersistenceError(f"Failed to load user table: {e}") from e

        admin = users.get(self.admin_id)
        if admin is not None and admin.status is not UserStatus.PRIVILEGED:
            admin.status = UserStatus.PRIVILEGED
        self._users = users
        logger.info(f"Loaded {len(users)} users from {self.path}")
        return len(users)

    def save_all(self) -> None:
        """
        把整张用户表覆盖写入磁盘。

        先写入同目录下的 users.json.tmp，再用 os.replace 原子替换，
        中途崩溃不会留下写了一半的 users.json。

        异常:
            PersistenceError: 写盘失败（内存状态保持不变）
        """
        data = {str(uid): user.model_dump(mode="json") for uid, user in self._users.items()}
        try:
            ensure_dir(self.data_dir)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            logger.error(f"Failed to save user table to {self.path}: {e}")
            raise PersistenceError("Failed to save your data, please try again later") from e
        logger.debug(f"Saved {len(data)} users to {self.path}")
