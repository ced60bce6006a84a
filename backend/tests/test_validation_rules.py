"""Tests for the pure composition checks (no database)."""

import pytest

from app.middleware.exceptions import ResourceNotFoundError
from app.models.warehouse import PackagingType, Pallet, Product
from app.schemas.composition import CompositionConstraints, CompositionProduct, CompositionRequest
from app.services.composition_rules import (
    BusinessRule,
    BusinessRuleEngine,
    RuleOutcome,
    calculate_totals,
    check_compatibility,
    real_time_score,
    resolve_limits,
    stability_score,
    validate_constraints,
)
from app.services.composition_validation import ResolvedComposition, evaluate


def make_product(id: int, weight: float = 2.0, width: float = 20.0, length: float = 25.0,
                 height: float = 20.0) -> Product:
    return Product(id=id, sku=f"SKU-{id}", name=f"Product {id}", weight=weight,
                   width=width, length=length, height=height, stock_quantity=0.0)


def make_pallet(max_weight: float | None = 1000.0) -> Pallet:
    return Pallet(id=1, code="PLT-1", width=100.0, length=120.0, height=15.0,
                  max_weight=max_weight, status="disponivel")


def request_for(*lines, constraints=None, pallet_id=1) -> CompositionRequest:
    return CompositionRequest(
        products=[CompositionProduct(product_id=pid, quantity=qty) for pid, qty in lines],
        pallet_id=pallet_id,
        constraints=constraints,
    )


def resolved(request, products, pallet=None, packaging_types=None) -> ResolvedComposition:
    return ResolvedComposition(
        request=request,
        products={p.id: p for p in products},
        pallet=pallet or make_pallet(),
        packaging_types=packaging_types or {},
    )


@pytest.mark.unit
class TestTotals:
    """Totals calculator."""

    def test_totals_sum_weight_and_volume_and_take_max_height(self):
        products = {1: make_product(1), 2: make_product(2, weight=5.0, height=40.0)}
        items = [CompositionProduct(product_id=1, quantity=10), CompositionProduct(product_id=2, quantity=2)]

        totals = calculate_totals(items, products)

        assert totals.total_weight == pytest.approx(30.0)
        assert totals.total_volume == pytest.approx(0.1 + 0.04)
        assert totals.max_height == 40.0

    def test_unknown_product_raises_not_found(self):
        with pytest.raises(ResourceNotFoundError) as exc:
            calculate_totals([CompositionProduct(product_id=99, quantity=1)], {})
        assert exc.value.error_code == "PRODUCT_NOT_FOUND"
        assert exc.value.status_code == 404


@pytest.mark.unit
class TestConstraintValidator:
    """Weight, volume, height and stability checks."""

    def test_light_composition_is_valid_with_low_risk(self):
        totals = calculate_totals(
            [CompositionProduct(product_id=1, quantity=10)], {1: make_product(1)}
        )

        report = validate_constraints(totals, make_pallet())

        assert totals.total_weight == pytest.approx(20.0)
        assert report.checks.weight.utilization == pytest.approx(0.02)
        assert report.violations == []
        assert report.risk_level == "low"

    def test_overweight_composition_yields_weight_exceeded(self):
        totals = calculate_totals(
            [CompositionProduct(product_id=1, quantity=10)], {1: make_product(1, weight=120.0)}
        )

        report = validate_constraints(totals, make_pallet())

        assert totals.total_weight == pytest.approx(1200.0)
        assert [v.code for v in report.violations] == ["WEIGHT_EXCEEDED"]
        assert report.violations[0].severity == "error"
        assert "weight" in report.violations[0].message
        assert report.violations[0].solution
        assert report.risk_level == "high"

    def test_high_utilization_is_a_warning_not_a_violation(self):
        totals = calculate_totals(
            [CompositionProduct(product_id=1, quantity=95)], {1: make_product(1, weight=10.0)}
        )

        report = validate_constraints(totals, make_pallet())

        assert report.violations == []
        assert [w.code for w in report.warnings] == ["WEIGHT_HIGH_UTILIZATION"]
        assert report.risk_level == "medium"

    def test_default_limits_without_pallet_capacity(self):
        weight, volume, height = resolve_limits(make_pallet(max_weight=None), None)

        assert weight == 1000.0
        assert volume == pytest.approx(100 * 120 * 200 / 1_000_000)
        assert height == 200.0

    def test_overrides_take_precedence(self):
        constraints = CompositionConstraints(max_weight=500, max_height=120, max_volume=1.5)

        assert resolve_limits(make_pallet(), constraints) == (500, 1.5, 120)

    def test_stability_drops_for_tall_stacks(self):
        totals = calculate_totals(
            [CompositionProduct(product_id=1, quantity=1)], {1: make_product(1, height=300.0)}
        )

        report = validate_constraints(totals, make_pallet(), CompositionConstraints(max_height=350))

        assert stability_score(totals, make_pallet()) == pytest.approx(0.5)
        assert report.checks.stability.is_valid is False
        assert any(s.type == "safety" for s in report.suggestions)

    def test_low_efficiency_adds_optimization_suggestion(self):
        totals = calculate_totals(
            [CompositionProduct(product_id=1, quantity=1)], {1: make_product(1)}
        )

        report = validate_constraints(totals, make_pallet())

        assert report.efficiency < 0.6
        assert any(s.type == "optimization" for s in report.suggestions)

    def test_real_time_score(self):
        assert real_time_score(0.5, 1.0) == 75
        assert real_time_score(0.0, 0.0) == 0


@pytest.mark.unit
class TestBusinessRules:
    """Business rule engine."""

    def test_all_rules_reported(self):
        report = BusinessRuleEngine().evaluate(request_for((1, 10)))

        kinds = {c.kind for c in report.checks}
        assert kinds == {
            "MAX_PRODUCTS", "MIN_QUANTITY", "NO_DUPLICATE_PRODUCTS",
            "MAX_TOTAL_QUANTITY", "WEIGHT_OVERRIDE_CAP", "HEIGHT_OVERRIDE_CAP",
        }
        assert all(c.is_valid for c in report.checks)
        assert report.violations == []

    def test_duplicate_products_are_an_error(self):
        report = BusinessRuleEngine().evaluate(request_for((1, 10), (1, 5)))

        assert [v.code for v in report.violations] == ["NO_DUPLICATE_PRODUCTS"]
        assert report.violations[0].type == "business_rule"
        assert report.violations[0].affected_products == [1]

    def test_total_quantity_is_only_a_warning(self):
        report = BusinessRuleEngine().evaluate(request_for((1, 600), (2, 600)))

        assert report.violations == []
        assert [w.code for w in report.warnings] == ["MAX_TOTAL_QUANTITY"]

    def test_override_caps(self):
        request = request_for(
            (1, 1), constraints=CompositionConstraints(max_weight=2500, max_height=310)
        )

        report = BusinessRuleEngine().evaluate(request)

        assert {v.code for v in report.violations} == {"WEIGHT_OVERRIDE_CAP", "HEIGHT_OVERRIDE_CAP"}

    def test_too_many_products(self):
        request = request_for(*[(i, 1) for i in range(1, 52)])

        report = BusinessRuleEngine().evaluate(request)

        assert "MAX_PRODUCTS" in [v.code for v in report.violations]

    def test_registered_rule_runs(self):
        engine = BusinessRuleEngine()
        engine.register(BusinessRule(
            kind="NO_PRODUCT_13",
            rule_name="Product 13 is quarantined",
            severity="error",
            check=lambda r: RuleOutcome("Product 13 is quarantined", (13,))
            if any(p.product_id == 13 for p in r.products) else None,
        ))

        report = engine.evaluate(request_for((13, 1)))

        assert [v.code for v in report.violations] == ["NO_PRODUCT_13"]


@pytest.mark.unit
class TestCompatibility:
    """Packaging and pallet compatibility."""

    def test_foreign_packaging_type_is_incompatible(self):
        request = CompositionRequest(
            products=[CompositionProduct(product_id=1, quantity=1, packaging_type_id=7)],
            pallet_id=1,
        )
        packaging = {7: PackagingType(id=7, product_id=2, name="Caixa", is_active=True)}
        totals = calculate_totals(request.products, {1: make_product(1)})
        checks = validate_constraints(totals, make_pallet()).checks

        result = check_compatibility(request, packaging, make_pallet(), checks)

        assert result.report.products[0].is_compatible is False
        assert [v.code for v in result.violations] == ["INCOMPATIBLE_PRODUCT"]
        assert result.report.pallet.is_compatible is True

    def test_pallet_flags_follow_constraint_checks(self):
        request = request_for((1, 10))
        totals = calculate_totals(request.products, {1: make_product(1, weight=120.0)})
        checks = validate_constraints(totals, make_pallet()).checks

        result = check_compatibility(request, {}, make_pallet(), checks)

        assert result.report.pallet.weight_check is False
        assert result.report.pallet.height_check is True
        assert result.report.pallet.is_compatible is False


@pytest.mark.unit
class TestOrchestrator:
    """Modes and determinism of evaluate()."""

    def test_modes_include_progressively_more_checks(self):
        products = [make_product(1)]
        quick = evaluate(resolved(request_for((1, 10)), products), "quick")
        business = evaluate(resolved(request_for((1, 10)), products), "business")
        full = evaluate(resolved(request_for((1, 10)), products), "full")

        assert quick.business_rules == [] and quick.compatibility is None
        assert business.business_rules and business.compatibility is None
        assert full.business_rules and full.compatibility is not None

    def test_example_light_composition(self):
        result = evaluate(resolved(request_for((1, 10)), [make_product(1)]), "full")

        assert result.is_valid is True
        assert result.metrics.total_weight == pytest.approx(20.0)
        assert result.metrics.weight_utilization == pytest.approx(0.02)
        assert result.metrics.risk_level == "low"

    def test_risk_level_accounts_for_business_violations(self):
        result = evaluate(resolved(request_for((1, 1), (1, 1)), [make_product(1)]), "business")

        assert result.is_valid is False
        assert result.metrics.risk_level == "high"

    def test_product_order_does_not_change_result(self):
        products = [make_product(1), make_product(2, weight=7.0, height=35.0)]
        a = evaluate(resolved(request_for((1, 10), (2, 4)), products), "full")
        b = evaluate(resolved(request_for((2, 4), (1, 10)), products), "full")

        exclude = {"metrics": {"processing_time_ms"}}
        assert a.model_dump(exclude=exclude) == b.model_dump(exclude=exclude)

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            evaluate(resolved(request_for((1, 1)), [make_product(1)]), "deep")
