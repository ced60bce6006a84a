"""Validation result models shared by the rules, the cache and the API."""

from typing import Literal

from pydantic import BaseModel

Severity = Literal["error", "warning"]
RiskLevel = Literal["low", "medium", "high"]


class Violation(BaseModel):
    """A finding against a composition.

    Only ``error`` findings land in ``violations``; ``warning`` findings
    are reported in ``warnings`` and never block.
    """
    type: Literal["weight", "volume", "height", "stability", "business_rule", "compatibility"]
    severity: Severity
    code: str
    message: str
    solution: str | None = None
    affected_products: list[int] = []


class Suggestion(BaseModel):
    type: Literal["optimization", "safety", "efficiency"]
    message: str
    impact: str | None = None
    priority: Literal["low", "medium", "high"] = "medium"


class ConstraintCheck(BaseModel):
    is_valid: bool
    current: float
    limit: float
    utilization: float
    safety_margin: float
    recommendation: str | None = None


class ConstraintChecks(BaseModel):
    weight: ConstraintCheck
    volume: ConstraintCheck
    height: ConstraintCheck
    stability: ConstraintCheck


class BusinessRuleCheck(BaseModel):
    kind: str
    rule_name: str
    is_valid: bool
    message: str | None = None
    severity: Severity


class ProductCompatibility(BaseModel):
    product_id: int
    is_compatible: bool
    issues: list[str] = []
    recommendations: list[str] = []


class PalletCompatibility(BaseModel):
    pallet_id: int
    is_compatible: bool
    capacity_check: bool
    dimension_check: bool
    weight_check: bool
    height_check: bool


class CompatibilityReport(BaseModel):
    products: list[ProductCompatibility]
    pallet: PalletCompatibility


class ValidationMetrics(BaseModel):
    total_weight: float
    total_volume: float
    max_height: float
    weight_utilization: float
    volume_utilization: float
    height_utilization: float
    efficiency: float
    stability: float
    risk_level: RiskLevel
    pallet_id: int
    product_count: int
    processing_time_ms: float = 0.0


class ValidationResult(BaseModel):
    is_valid: bool
    mode: Literal["quick", "business", "full"]
    violations: list[Violation] = []
    warnings: list[Violation] = []
    suggestions: list[Suggestion] = []
    metrics: ValidationMetrics
    constraints: ConstraintChecks
    business_rules: list[BusinessRuleCheck] = []
    compatibility: CompatibilityReport | None = None
    real_time_score: int
    cached: bool = False
