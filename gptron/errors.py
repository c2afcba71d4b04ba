"""
错误类型定义模块 - gptron 的统一异常体系。

所有业务异常都继承自 GptronError，并携带一条可以直接展示给用户的文本。
编排器（agent/loop.py）在处理单个事件时捕获这些异常，把 str(e) 投递到
该用户的信箱，然后结束本次事件处理；任何一种异常都不会终止用户的工作协程。

异常分类：
- AccessDenied     : 权限不足（待审核/黑名单/非管理员使用管理命令）
- NotFound         : 找不到会话、人设或模型
- InvalidInput     : 命令参数格式错误
- ServiceError     : 外部服务（补全/转录/语音合成）的暂时性失败
- PersistenceError : 用户表写盘失败（内存状态不回滚）
"""


class GptronError(Exception):
    """所有 gptron 业务异常的基类。"""


class AccessDenied(GptronError):
    """调用者无权执行该操作。"""


class NotFound(GptronError):
    """引用的会话、人设或模型不存在（或不可用）。"""


class InvalidInput(GptronError):
    """命令参数不合法。"""


class ServiceError(GptronError):
    """外部服务调用失败（网络、配额、超时、非 200 响应等）。"""


class PersistenceError(GptronError):
    """用户表保存失败。"""
