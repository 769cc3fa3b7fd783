"""来源偏向评级模型."""

from pydantic import BaseModel, ConfigDict, Field


class SourceRating(BaseModel):
    """媒体来源评级（外部只读数据）."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    display_name: str
    domain: str
    bias_score: int = Field(ge=-2, le=2, description="-2 左 .. +2 右")
    reliability_score: int = Field(default=3, ge=1, le=5)
