"""
main.py
=======
FastAPI application entry point.

Endpoints:
  POST   /functions/fixed-rule/run        - Evaluate the fixed-rule collection discount
  POST   /functions/tiered/run            - Evaluate the tiered discount for a discount node
  POST   /functions/cart-validation/run   - Check per-collection quantity limits
  POST   /discount-configs                - Store a tiered configuration
  GET    /discount-configs                - List stored configurations
  GET    /discount-configs/{id}           - Get a stored configuration
  PUT    /discount-configs/{id}           - Update a stored configuration
  DELETE /discount-configs/{id}           - Delete a stored configuration
  POST   /discount-configs/{id}/run       - Evaluate a cart against a stored configuration
"""

import logging
from typing import List

from fastapi import FastAPI, HTTPException, Depends, status
from sqlalchemy.orm import Session

import models
import schemas
import discount_engine
from database import engine, get_db
from logging_config import setup_logging
from settings import settings

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

# Create DB tables on startup
models.Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Collection Discounts API",
    description="Deterministic collection-based discount functions for an e-commerce cart.",
    version="1.0.0",
)


def get_fixed_rule_config() -> schemas.FixedRuleConfig:
    return schemas.FixedRuleConfig(
        target_collection=settings.fixed_rule_target_collection,
        discount_percentage=settings.fixed_rule_discount_percentage,
        cart_value_threshold=settings.fixed_rule_cart_value_threshold,
        message=settings.fixed_rule_message or (
            f"{discount_engine.format_rate(settings.fixed_rule_discount_percentage)}% discount applied to eligible collection items."
        ),
    )


def _get_config_or_404(config_id: int, db: Session) -> models.DiscountConfig:
    db_config = db.query(models.DiscountConfig).filter(models.DiscountConfig.id == config_id).first()
    if not db_config:
        raise HTTPException(status_code=404, detail=f"Discount config with id={config_id} not found")
    return db_config


def _unprocessable(e: discount_engine.DiscountEngineError) -> HTTPException:
    logger.warning("Evaluation aborted: %s", e)
    return HTTPException(status_code=422, detail=f"Could not evaluate discount: {e}")


# ═══════════════════════════════════════════════════
#  DISCOUNT FUNCTIONS
# ═══════════════════════════════════════════════════

@app.post(
    "/functions/fixed-rule/run",
    response_model=schemas.FunctionRunResult,
    response_model_exclude_none=True,
    tags=["Functions"],
    summary="Evaluate the fixed-rule collection discount",
)
def run_fixed_rule(
    request: schemas.CartRunRequest,
    config: schemas.FixedRuleConfig = Depends(get_fixed_rule_config),
):
    """
    Applies the configured percentage to every cart line in the target
    collection once the full cart value reaches the threshold. Every
    targeted line must carry an id.
    """
    try:
        return discount_engine.run_fixed_rule(request.cart.lines, config)
    except discount_engine.DiscountEngineError as e:
        raise _unprocessable(e) from e


@app.post(
    "/functions/tiered/run",
    response_model=schemas.FunctionRunResult,
    response_model_exclude_none=True,
    tags=["Functions"],
    summary="Evaluate the tiered collection discount",
)
def run_tiered(request: schemas.TieredRunRequest):
    """
    Reads the tiered configuration from the discount node metafield.
    A missing metafield yields no discount; a malformed one is rejected with 422.
    """
    metafield = request.discount_node.metafield
    raw = metafield.value if metafield is not None else None
    try:
        return discount_engine.run_tiered_from_metafield(request.cart.lines, raw)
    except discount_engine.DiscountEngineError as e:
        raise _unprocessable(e) from e


@app.post(
    "/functions/cart-validation/run",
    response_model=schemas.ValidationRunResult,
    tags=["Functions"],
    summary="Check per-collection quantity limits",
)
def run_cart_validation(request: schemas.CartValidationRequest):
    try:
        limits = discount_engine.parse_quantity_limits(request.validation.metafield.value)
    except discount_engine.DiscountEngineError as e:
        raise _unprocessable(e) from e
    errors = discount_engine.validate_cart_quantities(request.cart.lines, limits)
    return schemas.ValidationRunResult(errors=errors)


# ═══════════════════════════════════════════════════
#  STORED CONFIGURATIONS
# ═══════════════════════════════════════════════════

@app.post(
    "/discount-configs",
    response_model=schemas.DiscountConfigResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Discount Configs"],
    summary="Store a tiered configuration",
)
def create_discount_config(config: schemas.DiscountConfigCreate, db: Session = Depends(get_db)):
    db_config = models.DiscountConfig(
        title=config.title,
        configuration=config.configuration.model_dump(by_alias=True),
        is_active=config.is_active,
    )
    db.add(db_config)
    db.commit()
    db.refresh(db_config)
    return db_config


@app.get(
    "/discount-configs",
    response_model=List[schemas.DiscountConfigResponse],
    tags=["Discount Configs"],
    summary="Get all stored configurations",
)
def get_all_discount_configs(db: Session = Depends(get_db)):
    return db.query(models.DiscountConfig).all()


@app.get(
    "/discount-configs/{config_id}",
    response_model=schemas.DiscountConfigResponse,
    tags=["Discount Configs"],
    summary="Get a stored configuration by ID",
)
def get_discount_config(config_id: int, db: Session = Depends(get_db)):
    return _get_config_or_404(config_id, db)


@app.put(
    "/discount-configs/{config_id}",
    response_model=schemas.DiscountConfigResponse,
    tags=["Discount Configs"],
    summary="Update a stored configuration",
)
def update_discount_config(config_id: int, update_data: schemas.DiscountConfigUpdate, db: Session = Depends(get_db)):
    """Only provided fields are updated."""
    db_config = _get_config_or_404(config_id, db)

    if update_data.title is not None:
        db_config.title = update_data.title
    if update_data.configuration is not None:
        db_config.configuration = update_data.configuration.model_dump(by_alias=True)
    if update_data.is_active is not None:
        db_config.is_active = update_data.is_active

    db.commit()
    db.refresh(db_config)
    return db_config


@app.delete(
    "/discount-configs/{config_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Discount Configs"],
    summary="Delete a stored configuration",
)
def delete_discount_config(config_id: int, db: Session = Depends(get_db)):
    db_config = _get_config_or_404(config_id, db)
    db.delete(db_config)
    db.commit()
    return None


@app.post(
    "/discount-configs/{config_id}/run",
    response_model=schemas.FunctionRunResult,
    response_model_exclude_none=True,
    tags=["Discount Configs"],
    summary="Evaluate a cart against a stored configuration",
)
def run_discount_config(config_id: int, request: schemas.CartRunRequest, db: Session = Depends(get_db)):
    db_config = _get_config_or_404(config_id, db)
    if not db_config.is_active:
        raise HTTPException(status_code=400, detail="Discount config is not active")

    configuration = schemas.Configuration.model_validate(db_config.configuration)
    try:
        return discount_engine.run_tiered(request.cart.lines, configuration)
    except discount_engine.DiscountEngineError as e:
        raise _unprocessable(e) from e


# ═══════════════════════════════════════════════════
#  HEALTH CHECK
# ═══════════════════════════════════════════════════

@app.get("/", tags=["Health"], summary="Health check")
def root():
    return {"status": "ok", "message": "Collection Discounts API is running"}
