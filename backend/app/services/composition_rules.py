"""Pure composition checks: totals, physical constraints, business rules
and compatibility.

Nothing here touches the database.  Callers resolve products, pallet and
packaging types first and pass the ORM rows in.

Units:
  - product and pallet dimensions are centimetres, weights are kilograms
  - volume is m³ (w·l·h / 1_000_000)
  - pallet area for the density factor is m²
"""

import enum
from dataclasses import dataclass, field
from typing import Callable, Iterable

from app.middleware.exceptions import ResourceNotFoundError
from app.models.warehouse.pallet import Pallet
from app.models.warehouse.product import PackagingType, Product
from app.schemas.composition import CompositionConstraints, CompositionProduct, CompositionRequest
from app.schemas.validation import (
    BusinessRuleCheck,
    CompatibilityReport,
    ConstraintCheck,
    ConstraintChecks,
    PalletCompatibility,
    ProductCompatibility,
    Suggestion,
    Violation,
)

# ── Limits ───────────────────────────────────────────────────

DEFAULT_MAX_WEIGHT_KG = 1000.0
DEFAULT_MAX_HEIGHT_CM = 200.0
DEFAULT_STACK_HEIGHT_CM = 200.0  # used to derive the volume limit from the pallet footprint
HIGH_UTILIZATION = 0.9
LOW_EFFICIENCY = 0.6

STABILITY_THRESHOLD = 0.7
STABLE_HEIGHT_CM = 150.0
IDEAL_DENSITY_KG_M2 = 500.0

MAX_PRODUCTS = 50
MIN_QUANTITY = 0.1
MAX_TOTAL_QUANTITY = 1000.0
MAX_WEIGHT_OVERRIDE_KG = 2000.0
MAX_HEIGHT_OVERRIDE_CM = 300.0


# ── Totals ───────────────────────────────────────────────────

@dataclass(frozen=True)
class Totals:
    total_weight: float
    total_volume: float
    max_height: float


def calculate_totals(
    items: Iterable[CompositionProduct],
    products: dict[int, Product],
) -> Totals:
    """Aggregate weight (kg), volume (m³) and tallest product (cm).

    Height is not additive: products may sit side by side.
    """
    total_weight = 0.0
    total_volume = 0.0
    max_height = 0.0
    for item in items:
        product = products.get(item.product_id)
        if product is None:
            raise ResourceNotFoundError("Product", item.product_id)
        total_weight += (product.weight or 0) * item.quantity
        total_volume += product.unit_volume_m3 * item.quantity
        max_height = max(max_height, product.height or 0)
    return Totals(total_weight, total_volume, max_height)


# ── Constraint validator ─────────────────────────────────────

@dataclass
class ConstraintReport:
    checks: ConstraintChecks
    violations: list[Violation] = field(default_factory=list)
    warnings: list[Violation] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    efficiency: float = 0.0
    stability: float = 0.0

    @property
    def risk_level(self) -> str:
        return risk_level(self.violations, self.warnings)


def resolve_limits(
    pallet: Pallet, constraints: CompositionConstraints | None
) -> tuple[float, float, float]:
    """(weight kg, volume m³, height cm) limits for a pallet and optional overrides."""
    c = constraints or CompositionConstraints()
    weight_limit = c.max_weight or pallet.max_weight or DEFAULT_MAX_WEIGHT_KG
    volume_limit = c.max_volume or (
        pallet.width * pallet.length * DEFAULT_STACK_HEIGHT_CM / 1_000_000
    )
    height_limit = c.max_height or DEFAULT_MAX_HEIGHT_CM
    return weight_limit, volume_limit, height_limit


def stability_score(totals: Totals, pallet: Pallet) -> float:
    height_factor = min(1.0, STABLE_HEIGHT_CM / (totals.max_height or 1))
    area = pallet.area_m2 or 1
    density = totals.total_weight / area
    weight_factor = min(1.0, IDEAL_DENSITY_KG_M2 / max(density, 1))
    score = height_factor * (0.7 + 0.3 * weight_factor)
    return max(0.0, min(1.0, score))


def _check(current: float, limit: float, recommendation: str | None = None) -> ConstraintCheck:
    return ConstraintCheck(
        is_valid=current <= limit,
        current=current,
        limit=limit,
        utilization=current / limit if limit else 0.0,
        safety_margin=limit - current,
        recommendation=recommendation if current > limit else None,
    )


_DIMENSIONS = {
    # name: (unit, violation solution)
    "weight": ("kg", "Remove heavier products or use a pallet with a higher weight capacity"),
    "volume": ("m³", "Reduce quantities or split the composition across pallets"),
    "height": ("cm", "Use lower products or reduce stacking height"),
}


def validate_constraints(
    totals: Totals,
    pallet: Pallet,
    constraints: CompositionConstraints | None = None,
) -> ConstraintReport:
    """Compare totals against the pallet and override limits."""
    weight_limit, volume_limit, height_limit = resolve_limits(pallet, constraints)
    checks = {
        "weight": _check(totals.total_weight, weight_limit, _DIMENSIONS["weight"][1]),
        "volume": _check(totals.total_volume, volume_limit, _DIMENSIONS["volume"][1]),
        "height": _check(totals.max_height, height_limit, _DIMENSIONS["height"][1]),
    }

    violations: list[Violation] = []
    warnings: list[Violation] = []
    for name, check in checks.items():
        unit, solution = _DIMENSIONS[name]
        if check.current > check.limit:
            violations.append(Violation(
                type=name,
                severity="error",
                code=f"{name.upper()}_EXCEEDED",
                message=(
                    f"Total {name} {check.current:.2f} {unit} exceeds the limit "
                    f"of {check.limit:.2f} {unit}"
                ),
                solution=solution,
            ))
        elif check.utilization > HIGH_UTILIZATION:
            warnings.append(Violation(
                type=name,
                severity="warning",
                code=f"{name.upper()}_HIGH_UTILIZATION",
                message=f"{name.capitalize()} utilization at {check.utilization:.0%}",
                solution="Keep a safety margin for handling",
            ))

    suggestions: list[Suggestion] = []
    stability = stability_score(totals, pallet)
    stability_check = ConstraintCheck(
        is_valid=stability >= STABILITY_THRESHOLD,
        current=stability,
        limit=STABILITY_THRESHOLD,
        utilization=stability,
        safety_margin=stability - STABILITY_THRESHOLD,
        recommendation=None if stability >= STABILITY_THRESHOLD
        else "Place heavier products at the bottom and lower the stack",
    )
    if not stability_check.is_valid:
        suggestions.append(Suggestion(
            type="safety",
            message="Stability below the safe threshold: redistribute weight and lower the stack",
            impact=f"Stability score {stability:.2f} < {STABILITY_THRESHOLD}",
            priority="high",
        ))

    efficiency = min(c.utilization for c in checks.values())
    if efficiency < LOW_EFFICIENCY:
        suggestions.append(Suggestion(
            type="optimization",
            message="Pallet is under-used: add products or choose a smaller pallet",
            impact=f"Efficiency {efficiency:.0%}",
            priority="low",
        ))

    return ConstraintReport(
        checks=ConstraintChecks(stability=stability_check, **checks),
        violations=violations,
        warnings=warnings,
        suggestions=suggestions,
        efficiency=efficiency,
        stability=stability,
    )


def risk_level(violations: list[Violation], warnings: list[Violation]) -> str:
    if violations:
        return "high"
    if warnings:
        return "medium"
    return "low"


def real_time_score(efficiency: float, stability: float) -> int:
    return round((efficiency + stability) * 50)


# ── Business rules ───────────────────────────────────────────

class BusinessRuleKind(str, enum.Enum):
    MAX_PRODUCTS = "MAX_PRODUCTS"
    MIN_QUANTITY = "MIN_QUANTITY"
    NO_DUPLICATE_PRODUCTS = "NO_DUPLICATE_PRODUCTS"
    MAX_TOTAL_QUANTITY = "MAX_TOTAL_QUANTITY"
    WEIGHT_OVERRIDE_CAP = "WEIGHT_OVERRIDE_CAP"
    HEIGHT_OVERRIDE_CAP = "HEIGHT_OVERRIDE_CAP"


@dataclass(frozen=True)
class RuleOutcome:
    """Failure detail returned by a rule check; a passing rule returns None."""
    message: str
    affected_products: tuple[int, ...] = ()


@dataclass(frozen=True)
class BusinessRule:
    kind: BusinessRuleKind | str
    rule_name: str
    severity: str
    check: Callable[[CompositionRequest], RuleOutcome | None]
    solution: str | None = None


def _max_products(request: CompositionRequest) -> RuleOutcome | None:
    if len(request.products) > MAX_PRODUCTS:
        return RuleOutcome(f"{len(request.products)} products exceed the maximum of {MAX_PRODUCTS}")
    return None


def _min_quantity(request: CompositionRequest) -> RuleOutcome | None:
    low = [p.product_id for p in request.products if p.quantity < MIN_QUANTITY]
    if low:
        return RuleOutcome(f"Quantity below {MIN_QUANTITY} for products {low}", tuple(low))
    return None


def _no_duplicates(request: CompositionRequest) -> RuleOutcome | None:
    seen: set[int] = set()
    duplicates: list[int] = []
    for p in request.products:
        if p.product_id in seen and p.product_id not in duplicates:
            duplicates.append(p.product_id)
        seen.add(p.product_id)
    if duplicates:
        return RuleOutcome(f"Duplicate products in composition: {sorted(duplicates)}", tuple(sorted(duplicates)))
    return None


def _max_total_quantity(request: CompositionRequest) -> RuleOutcome | None:
    total = sum(p.quantity for p in request.products)
    if total > MAX_TOTAL_QUANTITY:
        return RuleOutcome(f"Total quantity {total:g} exceeds the recommended {MAX_TOTAL_QUANTITY:g}")
    return None


def _weight_override_cap(request: CompositionRequest) -> RuleOutcome | None:
    c = request.constraints
    if c and c.max_weight is not None and c.max_weight > MAX_WEIGHT_OVERRIDE_KG:
        return RuleOutcome(f"Weight limit override {c.max_weight:g} kg exceeds {MAX_WEIGHT_OVERRIDE_KG:g} kg")
    return None


def _height_override_cap(request: CompositionRequest) -> RuleOutcome | None:
    c = request.constraints
    if c and c.max_height is not None and c.max_height > MAX_HEIGHT_OVERRIDE_CM:
        return RuleOutcome(f"Height limit override {c.max_height:g} cm exceeds {MAX_HEIGHT_OVERRIDE_CM:g} cm")
    return None


DEFAULT_RULES: tuple[BusinessRule, ...] = (
    BusinessRule(BusinessRuleKind.MAX_PRODUCTS, "Maximum products per composition", "error",
                 _max_products, "Split the composition into smaller ones"),
    BusinessRule(BusinessRuleKind.MIN_QUANTITY, "Minimum quantity per product", "error",
                 _min_quantity, f"Use at least {MIN_QUANTITY} per product"),
    BusinessRule(BusinessRuleKind.NO_DUPLICATE_PRODUCTS, "No duplicate products", "error",
                 _no_duplicates, "Merge duplicate lines into a single quantity"),
    BusinessRule(BusinessRuleKind.MAX_TOTAL_QUANTITY, "Maximum total quantity", "warning",
                 _max_total_quantity, "Consider splitting across pallets"),
    BusinessRule(BusinessRuleKind.WEIGHT_OVERRIDE_CAP, "Weight override cap", "error",
                 _weight_override_cap, f"Keep max_weight at or below {MAX_WEIGHT_OVERRIDE_KG:g} kg"),
    BusinessRule(BusinessRuleKind.HEIGHT_OVERRIDE_CAP, "Height override cap", "error",
                 _height_override_cap, f"Keep max_height at or below {MAX_HEIGHT_OVERRIDE_CM:g} cm"),
)


@dataclass
class BusinessRuleReport:
    checks: list[BusinessRuleCheck]
    violations: list[Violation]
    warnings: list[Violation]


class BusinessRuleEngine:
    """Runs a registered list of rules over a raw request.

    Usage:
        engine = BusinessRuleEngine()
        engine.register(BusinessRule("MAX_SKUS_PER_LAYER", ..., check=my_check))
        report = engine.evaluate(request)
    """

    def __init__(self, rules: Iterable[BusinessRule] = DEFAULT_RULES):
        self.rules: list[BusinessRule] = list(rules)

    def register(self, rule: BusinessRule) -> None:
        self.rules.append(rule)

    def evaluate(self, request: CompositionRequest) -> BusinessRuleReport:
        checks: list[BusinessRuleCheck] = []
        violations: list[Violation] = []
        warnings: list[Violation] = []
        for rule in self.rules:
            kind = rule.kind.value if isinstance(rule.kind, BusinessRuleKind) else rule.kind
            outcome = rule.check(request)
            checks.append(BusinessRuleCheck(
                kind=kind,
                rule_name=rule.rule_name,
                is_valid=outcome is None,
                message=outcome.message if outcome else None,
                severity=rule.severity,
            ))
            if outcome is None:
                continue
            finding = Violation(
                type="business_rule",
                severity=rule.severity,
                code=kind,
                message=outcome.message,
                solution=rule.solution,
                affected_products=list(outcome.affected_products),
            )
            (violations if rule.severity == "error" else warnings).append(finding)
        return BusinessRuleReport(checks, violations, warnings)


# ── Compatibility ────────────────────────────────────────────

@dataclass
class CompatibilityResult:
    report: CompatibilityReport
    violations: list[Violation]


def check_compatibility(
    request: CompositionRequest,
    packaging_types: dict[int, PackagingType],
    pallet: Pallet,
    checks: ConstraintChecks,
) -> CompatibilityResult:
    """Per-product packaging checks plus pallet booleans taken from ``checks``."""
    product_reports: list[ProductCompatibility] = []
    violations: list[Violation] = []

    for item in request.products:
        issues: list[str] = []
        recommendations: list[str] = []
        if item.quantity <= 0:
            issues.append("Quantity must be greater than zero")
        if item.packaging_type_id is not None:
            pkg = packaging_types.get(item.packaging_type_id)
            if pkg is None:
                issues.append(f"Packaging type {item.packaging_type_id} not found")
                recommendations.append("Check the packaging type id")
            elif pkg.product_id != item.product_id:
                issues.append(
                    f"Packaging type {pkg.id} belongs to product {pkg.product_id}"
                )
                recommendations.append("Pick a packaging type registered for this product")
            elif not pkg.is_active:
                issues.append(f"Packaging type {pkg.id} is inactive")
                recommendations.append("Use an active packaging type")

        product_reports.append(ProductCompatibility(
            product_id=item.product_id,
            is_compatible=not issues,
            issues=issues,
            recommendations=recommendations,
        ))
        if issues:
            violations.append(Violation(
                type="compatibility",
                severity="error",
                code="INCOMPATIBLE_PRODUCT",
                message=f"Product {item.product_id}: " + "; ".join(issues),
                solution=recommendations[0] if recommendations else None,
                affected_products=[item.product_id],
            ))

    # Derived from the constraint report, never recomputed.
    pallet_report = PalletCompatibility(
        pallet_id=pallet.id,
        capacity_check=checks.volume.is_valid,
        dimension_check=checks.volume.is_valid and checks.height.is_valid,
        weight_check=checks.weight.is_valid,
        height_check=checks.height.is_valid,
        is_compatible=checks.weight.is_valid and checks.volume.is_valid and checks.height.is_valid,
    )
    return CompatibilityResult(
        report=CompatibilityReport(products=product_reports, pallet=pallet_report),
        violations=violations,
    )
