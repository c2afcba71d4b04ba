"""
文字转语音（Text-to-Speech）提供者模块 - ElevenLabs。

  助手回复文本 → ElevenLabsSpeechProvider.synthesize() → mp3 字节 → 信箱发送语音

先检查传输层错误（连接失败、超时），再检查状态码；任何非 200 响应都是 ServiceError。
"""

import httpx
from loguru import logger

from gptron.errors import ServiceError


class ElevenLabsSpeechProvider:
    """
    基于 ElevenLabs text-to-speech 接口的语音合成服务。

    属性：
        api_key: ElevenLabs API 密钥
        voice_id: 音色 ID
        model_id: 合成模型
        output_format: 输出音频格式
    """

    def __init__(
        self,
        api_key: str,
        voice_id: str = "21m00Tcm4TlvDq8ikWAM",
        model_id: str = "eleven_multilingual_v2",
        output_format: str = "mp3_44100_128",
        api_base: str = "https://api.elevenlabs.io/v1",
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.output_format = output_format
        self.api_base = api_base.rstrip("/")
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    @property
    def url(self) -> str:
        return f"{self.api_base}/text-to-speech/{self.voice_id}"

    async def synthesize(self, text: str) -> bytes:
        """
        合成语音。

        返回：
            音频内容（audio/mpeg）

        异常：
            ServiceError: 未配置、传输失败或非 200 响应
        """
        if not self.api_key:
            raise ServiceError("Speech synthesis is not configured")

        headers = {
            "xi-api-key": self.api_key,
            "accept": "audio/mpeg",
            "content-type": "application/json",
        }
        params = {"optimize_streaming_latency": 0, "output_format": self.output_format}
        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {
                "stability": 0.5,
                "similarity_boost": 0,
                "style": 0,
                "use_speaker_boost": True,
            },
        }

        try:
            if self._client is not None:
                response = await self._client.post(self.url, headers=headers, params=params, json=payload)
            else:
                async with httpx.AsyncClient(timeout=60.0) as client:
                    response = await client.post(self.url, headers=headers, params=params, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"ElevenLabs request failed: {e}")
            raise ServiceError(f"Error obtaining audio: {e}") from e

        if response.status_code != 200:
            logger.error(f"ElevenLabs returned {response.status_code}: {response.text[:200]}")
            raise ServiceError(f"Error obtaining audio: unexpected status code {response.status_code}")

        logger.debug(f"Synthesized {len(response.content)} bytes of audio")
        return response.content
