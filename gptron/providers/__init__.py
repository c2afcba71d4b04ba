"""
外部服务提供者模块 - 补全（LiteLLM）、语音转文字（Whisper）、文字转语音（ElevenLabs）。
"""

from gptron.providers.base import LLMProvider, LLMResponse
from gptron.providers.litellm_provider import LiteLLMProvider
from gptron.providers.speech import ElevenLabsSpeechProvider
from gptron.providers.transcription import WhisperTranscriptionProvider

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "LiteLLMProvider",
    "WhisperTranscriptionProvider",
    "ElevenLabsSpeechProvider",
]
