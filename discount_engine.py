"""
discount_engine.py
==================
Core business logic for deciding collection-based discounts on a cart.

Every evaluation is a pure function of one cart snapshot and one
configuration. Nothing is stored between calls and inputs are never mutated.

Implemented Cases:
------------------
1. fixed-rule:
   - Raw cart total (every line, variant or not) must reach the threshold (>=).
   - Every line whose product is a flagged member (isMember) of the target
     collection becomes a cart-line target. No quantity override.
   - One flat percentage and a fixed message.

2. tiered:
   - Subtotal excludes lines whose product is a flagged member of any
     excluded collection. Non-variant lines never contribute.
   - Highest threshold cleared by the subtotal wins; equal thresholds keep
     the first tier in configuration order.
   - Lines whose product lists the winning collection (membership flag NOT
     checked) are scanned; the product's own discount schedule supplies the
     rate. Only the single strictly-best rate is applied, to that product
     variant, with the line quantity as override. Earlier lines win ties.

3. cart validation:
   - Per-collection maximum quantity per cart line, checked against flagged
     memberships only.

Failure modes:
--------------
- Soft: threshold not reached, no tier cleared, no target found, product
  without a schedule or without an entry for the winning collection.
  All of these yield the no-discount result.
- Hard: a configuration or discount schedule payload that is present but
  malformed raises a DiscountEngineError, as does a fixed-rule target line
  that carries no id. No partial result is produced.
"""

import logging
from decimal import Decimal
from typing import Callable, List, Optional

from pydantic import ValidationError

from schemas import (
    CartLine, CustomProduct, ProductVariant, Product,
    CollectionMapping, Configuration, DiscountSchedule, FixedRuleConfig, QuantityLimits,
    CartLineTarget, ProductVariantTarget, Target, Discount, Value, Percentage,
    FunctionRunResult, FunctionError,
)

logger = logging.getLogger(__name__)

ProductPredicate = Callable[[Product], bool]


class DiscountEngineError(ValueError):
    """The evaluation cannot produce a well-formed result."""


class ConfigurationError(DiscountEngineError):
    pass


class DiscountScheduleError(DiscountEngineError):
    pass


class CartLineError(DiscountEngineError):
    """A qualifying cart line cannot be addressed as a target."""


# ─────────────────────────── Parsing ───────────────────────────

def parse_configuration(raw: str) -> Configuration:
    try:
        return Configuration.model_validate_json(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Unable to parse configuration value from metafield: {e}") from e


def parse_discount_schedule(raw: str) -> DiscountSchedule:
    try:
        return DiscountSchedule.model_validate_json(raw)
    except ValidationError as e:
        raise DiscountScheduleError(f"Invalid discount metafield format: {e}") from e


def parse_quantity_limits(raw: str) -> QuantityLimits:
    try:
        return QuantityLimits.model_validate_json(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Unable to parse quantity limits from metafield: {e}") from e


def load_discount_schedule(product: Product) -> Optional[DiscountSchedule]:
    """None when the product carries no schedule; raises when it is malformed."""
    if product.metafield is None:
        return None
    return parse_discount_schedule(product.metafield.value)


# ─────────────────────────── Helpers ───────────────────────────

def no_discount() -> FunctionRunResult:
    return FunctionRunResult(discounts=[])


def _variant_of(line: CartLine) -> Optional[ProductVariant]:
    merchandise = line.merchandise
    if isinstance(merchandise, ProductVariant):
        return merchandise
    if isinstance(merchandise, CustomProduct):
        return None
    raise TypeError(f"Unsupported merchandise type: {type(merchandise).__name__}")


def _line_value(line: CartLine) -> float:
    return line.unit_cost * line.quantity


def is_flagged_member(product: Product, collection_id: str) -> bool:
    return any(c.is_member and c.collection_id == collection_id for c in product.in_collections)


def lists_collection(product: Product, collection_id: str) -> bool:
    # Membership flag intentionally ignored
    return any(c.collection_id == collection_id for c in product.in_collections)


def format_rate(rate: float) -> str:
    """Shortest plain-decimal rendering: 10.0 -> "10", 1e-05 -> "0.00001"."""
    if float(rate).is_integer():
        return str(int(rate))
    return format(Decimal(repr(float(rate))), "f")


# ─────────────────────────── Aggregator ───────────────────────────

def excluded_collections_predicate(collection_ids: List[str]) -> ProductPredicate:
    """Keeps products that are not a flagged member of any excluded collection."""
    excluded = set(collection_ids)

    def keep(product: Product) -> bool:
        return not any(c.is_member and c.collection_id in excluded for c in product.in_collections)

    return keep


def aggregate(lines: List[CartLine], predicate: Optional[ProductPredicate] = None) -> float:
    """
    Sum of unit cost * quantity.

    Without a predicate every line counts, whatever its merchandise. With one,
    only product-variant lines whose product satisfies it count.
    """
    total = 0.0
    for line in lines:
        if predicate is not None:
            variant = _variant_of(line)
            if variant is None or not predicate(variant.product):
                continue
        total += _line_value(line)
    return total


# ─────────────────────────── Selector ───────────────────────────

def passes_threshold(total: float, threshold: float) -> bool:
    return total >= threshold


def select_tier(total: float, mapping: List[CollectionMapping]) -> Optional[CollectionMapping]:
    """Highest threshold not above `total`; the first of equal thresholds wins."""
    winner = None
    for tier in mapping:
        if not passes_threshold(total, tier.threshold):
            continue
        if winner is None or tier.threshold > winner.threshold:
            winner = tier
    return winner


# ─────────────────────────── Targeter ───────────────────────────

def find_fixed_rule_targets(lines: List[CartLine], config: FixedRuleConfig) -> List[Target]:
    targets = []
    for line in lines:
        variant = _variant_of(line)
        if variant is None:
            continue
        if is_flagged_member(variant.product, config.target_collection):
            if line.id is None:
                raise CartLineError("Cart line in the target collection has no id")
            targets.append(Target(cart_line=CartLineTarget(id=line.id)))
    return targets


def find_best_tier_discount(lines: List[CartLine], tier: CollectionMapping) -> Optional[Discount]:
    """
    Pick the single best rate the winning collection unlocks.

    Rates come from each listed product's own discount schedule. A rate has
    to be strictly greater than the best seen so far (starting at 0) to
    replace it, so the earliest line wins a tie and non-positive rates never
    produce a discount.
    """
    highest = 0.0
    best = None

    for line in lines:
        variant = _variant_of(line)
        if variant is None:
            continue
        if not lists_collection(variant.product, tier.collection):
            continue

        schedule = load_discount_schedule(variant.product)
        if schedule is None:
            continue

        entry = next(
            (e for e in schedule.collection_discounts if e.collection_id == tier.collection),
            None,
        )
        if entry is None or entry.discount <= highest:
            continue

        highest = entry.discount
        best = Discount(
            message=f"{format_rate(entry.discount)}% off",
            targets=[Target(product_variant=ProductVariantTarget(id=variant.id, quantity=line.quantity))],
            value=Value(percentage=Percentage(value=entry.discount)),
        )

    return best


# ─────────────────────────── Entry points ───────────────────────────

def run_fixed_rule(lines: List[CartLine], config: FixedRuleConfig) -> FunctionRunResult:
    total = aggregate(lines)
    if not passes_threshold(total, config.cart_value_threshold):
        logger.debug("Cart value %s is less than %s.", total, config.cart_value_threshold)
        return no_discount()

    targets = find_fixed_rule_targets(lines, config)
    if not targets:
        logger.debug("No cart lines belong to the target collection %s.", config.target_collection)
        return no_discount()

    return FunctionRunResult(discounts=[Discount(
        message=config.message,
        targets=targets,
        value=Value(percentage=Percentage(value=config.discount_percentage)),
    )])


def run_tiered(lines: List[CartLine], configuration: Configuration) -> FunctionRunResult:
    total = aggregate(lines, excluded_collections_predicate(configuration.collection_ids))

    tier = select_tier(total, configuration.mapping)
    if tier is None:
        logger.debug("Cart value %s (excluding collections) clears no tier.", total)
        return no_discount()

    discount = find_best_tier_discount(lines, tier)
    if discount is None:
        logger.debug("No product carries a discount for collection %s.", tier.collection)
        return no_discount()

    return FunctionRunResult(discounts=[discount])


def run_tiered_from_metafield(lines: List[CartLine], raw_configuration: Optional[str]) -> FunctionRunResult:
    """Absent configuration means no discount; a malformed one raises."""
    if raw_configuration is None:
        return no_discount()
    return run_tiered(lines, parse_configuration(raw_configuration))


# ─────────────────────────── Cart validation ───────────────────────────

def validate_cart_quantities(lines: List[CartLine], limits: QuantityLimits) -> List[FunctionError]:
    """One error per (line, limited collection) pair whose quantity exceeds the limit."""
    allowed = {limit.collection: limit.qty for limit in limits.mapping}

    errors = []
    for line in lines:
        variant = _variant_of(line)
        if variant is None:
            continue
        for membership in variant.product.in_collections:
            if not membership.is_member:
                continue
            allowed_qty = allowed.get(membership.collection_id)
            if allowed_qty is not None and line.quantity > allowed_qty:
                errors.append(FunctionError(
                    localized_message=f"Cannot order more than {allowed_qty} of the product",
                    target="cart",
                ))
    return errors
