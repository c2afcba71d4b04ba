"""
模型注册表 - 所有可选 ChatGPT 模型元数据的唯一真相来源。

采用"数据驱动"的设计：每个模型的上下文窗口、单价、是否仅限管理员使用，
都集中在 MODELS 中声明，业务代码只通过 find() 按名称查找。

【费用推导】
价格表只存在于这里。会话和用户只记录 token 数量，费用永远通过
`tokens × 单价 / 1000` 实时计算，修正价格表后，历史费用会随之自动更新。

添加新模型只需在下方 MODELS 中新增一条 ModelSpec。
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Pricing:
    """每 1000 个 token 的价格（美元），按输入（prompt）和输出（completion）分别计价。"""

    prompt: float
    completion: float


@dataclass(frozen=True)
class Cost:
    """由 token 数推导出来的费用，不持久化。"""

    prompt: float = 0.0
    completion: float = 0.0

    @property
    def total(self) -> float:
        return self.prompt + self.completion

    def __add__(self, other: Cost) -> Cost:
        return Cost(self.prompt + other.prompt, self.completion + other.completion)


@dataclass(frozen=True)
class ModelSpec:
    """
    单个模型的元数据规格。

    属性:
        name: 模型名称（同时也是 LiteLLM 的模型标识）
        context: 上下文窗口大小（token）
        pricing: 单价
        restricted: 是否仅限管理员使用
    """

    name: str
    context: int
    pricing: Pricing
    restricted: bool = False

    def cost(self, prompt_tokens: int, completion_tokens: int) -> Cost:
        return Cost(
            prompt=prompt_tokens * self.pricing.prompt / 1000,
            completion=completion_tokens * self.pricing.completion / 1000,
        )

    def available_to(self, privileged: bool) -> bool:
        return privileged or not self.restricted


class ModelCatalog:
    """固定的、可枚举的模型目录。顺序即菜单中的显示顺序。"""

    def __init__(self, specs: tuple[ModelSpec, ...]):
        self._specs = specs

    def __iter__(self):
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    def find(self, name: str | None) -> ModelSpec | None:
        """按名称精确查找，不存在时返回 None。"""
        for spec in self._specs:
            if spec.name == name:
                return spec
        return None

    def available_to(self, privileged: bool) -> list[ModelSpec]:
        """列出某类用户可以选择的模型。"""
        return [s for s in self._specs if s.available_to(privileged)]

    def cost(self, name: str | None, prompt_tokens: int, completion_tokens: int) -> Cost:
        """
        按当前价格表计算费用。

        价格表中已不存在的模型按 0 计价（token 数仍然保留）。
        """
        spec = self.find(name)
        if spec is None:
            return Cost()
        return spec.cost(prompt_tokens, completion_tokens)


MODELS = ModelCatalog((
    ModelSpec(
        name="gpt-3.5-turbo",
        context=16385,
        pricing=Pricing(prompt=0.001, completion=0.002),
        restricted=False,
    ),
    ModelSpec(
        name="gpt-4-1106-preview",
        context=128000,
        pricing=Pricing(prompt=0.01, completion=0.03),
        restricted=True,
    ),
    ModelSpec(
        name="gpt-4-1106-vision-preview",
        context=128000,
        pricing=Pricing(prompt=0.01, completion=0.03),
        restricted=True,
    ),
    ModelSpec(
        name="gpt-4",
        context=8192,
        pricing=Pricing(prompt=0.03, completion=0.06),
        restricted=True,
    ),
))
