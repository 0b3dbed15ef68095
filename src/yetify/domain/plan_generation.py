from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

from yetify.domain.models import StrategyPlan, StrategyStep


class PlanGenerator(Protocol):
    async def generate(self, prompt: str, risk_hint: str | None = None) -> StrategyPlan: ...


class StrategyStepPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: str
    protocol: str
    asset: str
    amount: str | None = None
    expected_apy: float | None = Field(default=None, alias="expectedApy")

    @field_validator("amount", mode="before")
    def coerce_amount(cls, value: object) -> object:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class StrategyPlanPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    goal: str = Field(min_length=1)
    chains: list[str] = Field(default_factory=list)
    protocols: list[str] = Field(default_factory=list)
    steps: list[StrategyStepPayload] = Field(default_factory=list)
    risk_level: str = Field(default="medium", alias="riskLevel")
    estimated_apy: float | None = Field(default=None, alias="estimatedApy")
    estimated_tvl: str | None = Field(default=None, alias="estimatedTvl")
    confidence: float | None = None
    reasoning: str | None = None
    warnings: list[str] | None = None

    @field_validator("risk_level", mode="before")
    def normalize_risk_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower() or "medium"
        return value

    def to_plan(self) -> StrategyPlan:
        return StrategyPlan(
            id=self.id,
            goal=self.goal,
            chains=tuple(self.chains),
            protocols=tuple(self.protocols),
            steps=tuple(
                StrategyStep(
                    action=step.action,
                    protocol=step.protocol,
                    asset=step.asset,
                    amount=step.amount,
                    expected_apy=step.expected_apy,
                )
                for step in self.steps
            ),
            risk_level=self.risk_level,
            estimated_apy=self.estimated_apy,
            estimated_tvl=self.estimated_tvl,
            confidence=self.confidence,
            reasoning=self.reasoning,
            warnings=tuple(self.warnings) if self.warnings is not None else None,
        )


def parse_strategy_plan(payload: Mapping[str, Any]) -> StrategyPlan:
    """Validate a generator payload; raises ``pydantic.ValidationError`` (a ``ValueError``)."""
    return StrategyPlanPayload.model_validate(dict(payload)).to_plan()


def default_plan(goal: str, risk_hint: str | None = None) -> StrategyPlan:
    """Conservative fallback used when the generator is unavailable."""
    return StrategyPlan(
        goal=goal,
        chains=("NEAR", "Ethereum"),
        protocols=("Ref Finance", "Lido", "Aave"),
        steps=(
            StrategyStep(action="stake", protocol="Lido", asset="ETH", expected_apy=4.2),
            StrategyStep(action="deposit", protocol="Aave", asset="USDC", expected_apy=6.8),
            StrategyStep(
                action="yield_farm", protocol="Ref Finance", asset="NEAR", expected_apy=15.1
            ),
        ),
        risk_level=(risk_hint or "medium").strip().lower(),
        estimated_apy=8.7,
        estimated_tvl="$1,500",
        warnings=("Fallback plan: generated without live protocol data",),
    )
