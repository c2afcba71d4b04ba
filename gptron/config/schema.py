"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 gptron 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── telegram       - Telegram 机器人令牌与代理
├── admin_id       - 唯一管理员（特权用户）的 Telegram ID
├── providers      - 外部服务凭据（OpenAI 补全/转录，ElevenLabs 语音合成）
├── transcription  - 语音转文字参数
├── session        - 数据目录、用量上限、摘要窗口、外部调用超时
└── mailbox        - 出站信箱的重试策略

对于 Java 开发者：
- BaseSettings 类似于 Spring 的 @ConfigurationProperties，额外支持从环境变量读取配置
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings


class TelegramConfig(BaseModel):
    """Telegram 渠道配置。使用 Bot API 长轮询方式接收消息。"""
    token: str = ""  # 从 @BotFather 获取的 Bot Token
    proxy: str | None = None  # HTTP/SOCKS5 代理地址，如 "http://127.0.0.1:7890"


class ProviderConfig(BaseModel):
    """补全服务提供商配置（经由 LiteLLM 调用）。"""
    api_key: str = ""
    api_base: str | None = None  # 自定义 API 基础 URL（私有部署或代理）


class ElevenLabsConfig(BaseModel):
    """ElevenLabs 语音合成配置。api_key 为空时语音回复退化为文字回复。"""
    api_key: str = ""
    voice_id: str = "21m00Tcm4TlvDq8ikWAM"
    model_id: str = "eleven_multilingual_v2"
    output_format: str = "mp3_44100_128"
    api_base: str = "https://api.elevenlabs.io/v1"


class ProvidersConfig(BaseModel):
    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    elevenlabs: ElevenLabsConfig = Field(default_factory=ElevenLabsConfig)


class TranscriptionConfig(BaseModel):
    """Whisper 语音转文字配置。凭据复用 providers.openai.api_key。"""
    model: str = "whisper-1"
    api_url: str = "https://api.openai.com/v1/audio/transcriptions"


class SessionConfig(BaseModel):
    """会话编排相关参数。"""
    data_dir: str = "~/.gptron"  # 用户表 users.json 所在目录
    usage_limit: float = 1.0  # 普通用户的费用上限（美元）
    summarize_window: int = 10  # /summarize 使用的最近消息条数
    service_timeout: float = 120.0  # 每次外部服务调用的超时时间（秒）


class MailboxConfig(BaseModel):
    """出站信箱重试策略。"""
    max_retries: int = 2
    retry_delay: float = 1.0  # 两次重试之间的间隔（秒）


class Config(BaseSettings):
    """
    gptron 根配置类。

    除了支持从 JSON 文件加载外，还支持从环境变量读取配置：
    - 环境变量前缀: GPTRON_
    - 嵌套分隔符: __ (双下划线)
    - 示例: GPTRON_SESSION__USAGE_LIMIT=5 可覆盖 session.usage_limit
    """
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    admin_id: int = 0  # 0 表示未配置
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    transcription: TranscriptionConfig = Field(default_factory=TranscriptionConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    mailbox: MailboxConfig = Field(default_factory=MailboxConfig)

    @property
    def data_path(self) -> Path:
        """获取展开后的数据目录绝对路径。"""
        return Path(self.session.data_dir).expanduser()

    def missing_settings(self) -> list[str]:
        """
        列出启动网关所必需但尚未配置的项。

        缺少 Telegram 令牌、管理员 ID 或补全 API Key 都属于致命配置错误。
        """
        missing = []
        if not self.telegram.token:
            missing.append("telegram.token")
        if not self.admin_id:
            missing.append("adminId")
        if not self.providers.openai.api_key:
            missing.append("providers.openai.apiKey")
        return missing

    model_config = ConfigDict(
        env_prefix="GPTRON_",
        env_nested_delimiter="__"
    )
