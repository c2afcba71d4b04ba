"""
语音转文字（Speech-to-Text）提供者模块。

  用户语音 → 渠道下载音频字节 → WhisperTranscriptionProvider.transcribe() → 文字 → 编排器

技术说明：
  - 使用 httpx 异步客户端，通过 OpenAI 的 /audio/transcriptions 接口上传音频
  - 任何失败都抛出 ServiceError，由编排器编辑进度消息展示错误
"""

import httpx
from loguru import logger

from gptron.errors import ServiceError


class WhisperTranscriptionProvider:
    """
    基于 OpenAI Whisper API 的语音转文字服务。

    属性：
        api_key: OpenAI API 密钥
        api_url: 转录接口地址
        model: Whisper 模型名
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.openai.com/v1/audio/transcriptions",
        model: str = "whisper-1",
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        # 测试时可注入带 MockTransport 的客户端
        self._client = client

    async def transcribe(self, audio: bytes, filename: str = "voice.ogg") -> str:
        """
        将音频字节转录为文字。

        参数：
            audio: 音频内容（Telegram 语音为 ogg/opus）
            filename: 上传时使用的文件名（Whisper 依据扩展名识别格式）

        返回：
            转录后的文本

        异常：
            ServiceError: 未配置密钥、网络错误或非 2xx 响应
        """
        if not self.api_key:
            raise ServiceError("Transcription is not configured")

        files = {
            "file": (filename, audio),
            "model": (None, self.model),
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            if self._client is not None:
                response = await self._client.post(self.api_url, headers=headers, files=files)
            else:
                async with httpx.AsyncClient(timeout=60.0) as client:
                    response = await client.post(self.api_url, headers=headers, files=files)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Whisper transcription error: {e}")
            raise ServiceError(f"Error transcribing the message: {e}") from e
        except ValueError as e:
            logger.error(f"Whisper returned invalid JSON: {e}")
            raise ServiceError("Error transcribing the message: invalid response") from e

        text = data.get("text", "")
        logger.debug(f"Transcribed {len(audio)} bytes into {len(text)} chars")
        return text
