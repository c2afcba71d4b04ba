"""
目录模块 - 固定的模型与人设注册表。

- models.py        : ModelSpec / ModelCatalog，价格表与费用推导
- personalities.py : Personality / PersonalityCatalog，系统提示词预设

两个目录都是不可变的元组，按名称查找返回类型化结果（找不到返回 None），
而不是直接暴露一个裸字典。
"""

from gptron.catalog.models import Cost, ModelCatalog, ModelSpec, Pricing, MODELS
from gptron.catalog.personalities import (
    PERSONALITIES,
    SYNTHESIZER,
    TITLE_GENERATOR,
    Personality,
    PersonalityCatalog,
)

__all__ = [
    "Cost",
    "ModelCatalog",
    "ModelSpec",
    "Pricing",
    "MODELS",
    "Personality",
    "PersonalityCatalog",
    "PERSONALITIES",
    "SYNTHESIZER",
    "TITLE_GENERATOR",
]
