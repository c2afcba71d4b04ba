"""
LiteLLM 提供者实现模块 - 补全服务的统一调用层。

LiteLLM 把各家 LLM 服务商的 API 统一为 OpenAI 兼容格式。gptron 的模型目录
全部是 OpenAI 模型，因此这里不需要前缀解析和网关检测，只负责：
  1. 传入认证信息和自定义端点；
  2. 把响应解析为 LLMResponse；
  3. 把任何调用失败统一转换为 ServiceError。

数据流：
  编排器 → LiteLLMProvider.chat() → litellm.acompletion() → OpenAI API
"""

from typing import Any

import litellm
from litellm import acompletion
from loguru import logger

from gptron.errors import ServiceError
from gptron.providers.base import LLMProvider, LLMResponse


class LiteLLMProvider(LLMProvider):
    """
    基于 LiteLLM 的 LLM 提供者实现类。

    构造参数：
        api_key: OpenAI API 密钥
        api_base: 自定义 API 基础 URL（代理或兼容端点）
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        super().__init__(api_key, api_base)
        # 禁用 LiteLLM 的调试日志输出（默认很啰嗦）
        litellm.suppress_debug_info = True
        litellm.drop_params = True

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int | None = None,
        temperature: float = 0.7,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base

        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            logger.error(f"Error calling {model}: {e}")
            raise ServiceError(f"Error calling the model: {e}") from e
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> LLMResponse:
        """将 LiteLLM 的原始响应（OpenAI 格式）解析为 LLMResponse。"""
        if not getattr(response, "choices", None):
            raise ServiceError("The model returned no choices")
        choice = response.choices[0]

        usage = {}
        if hasattr(response, "usage") and response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=choice.message.content or "",
            usage=usage,
            finish_reason=choice.finish_reason or "stop",
        )
