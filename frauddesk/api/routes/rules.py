"""
FraudDesk — Rules API  (CRUD)
POST   /api/v1/rules            → create a rule
GET    /api/v1/rules            → list all rules (with enabled/disabled filter)
GET    /api/v1/rules/{rule_id}  → single rule
PUT    /api/v1/rules/{rule_id}  → full update
PATCH  /api/v1/rules/{rule_id}  → partial update (toggle, adjust weight …)
DELETE /api/v1/rules/{rule_id}  → soft-delete (sets is_enabled = False)

Rule changes only affect transactions scored afterwards.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from frauddesk.models.models import AuditLog, Rule
from frauddesk.models.schemas import RuleCreate, RuleResponse, RuleUpdate
from frauddesk.services.db import get_db
from frauddesk.services.security import get_current_admin, get_current_user

logger = logging.getLogger("frauddesk.api.rules")
router = APIRouter()


# ===========================================================================
# POST  /api/v1/rules
# ===========================================================================
@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    response_model=RuleResponse,
    summary="Create a Rule",
)
async def create_rule(
    body: RuleCreate,
    db: AsyncSession = Depends(get_db),
    admin: Dict[str, Any] = Depends(get_current_admin),
):
    await _ensure_name_free(db, body.name)

    rule = Rule(
        name=body.name,
        field=body.field,
        condition=body.condition,
        value=body.value,
        is_enabled=body.is_enabled,
        severity=body.severity.value,
        severity_weight=body.severity_weight,
    )
    db.add(rule)
    await db.flush()
    _audit(db, admin, "RULE_CREATED", rule)
    await db.commit()
    await db.refresh(rule)
    logger.info("Rule created: name=%s weight=%d", rule.name, rule.severity_weight)
    return RuleResponse.model_validate(rule)


# ===========================================================================
# GET  /api/v1/rules
# ===========================================================================
@router.get(
    "/",
    response_model=List[RuleResponse],
    summary="List All Rules",
)
async def list_rules(
    enabled_only: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    stmt = select(Rule)
    if enabled_only:
        stmt = stmt.where(Rule.is_enabled.is_(True))
    stmt = stmt.order_by(Rule.created_at, Rule.id)
    result = await db.execute(stmt)
    return [RuleResponse.model_validate(r) for r in result.scalars()]


# ===========================================================================
# GET  /api/v1/rules/{rule_id}
# ===========================================================================
@router.get(
    "/{rule_id}",
    response_model=RuleResponse,
    summary="Get a Rule",
)
async def get_rule(
    rule_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    rule = await _fetch_rule(db, rule_id)
    return RuleResponse.model_validate(rule)


# ===========================================================================
# PUT  /api/v1/rules/{rule_id}  — full replace
# ===========================================================================
@router.put(
    "/{rule_id}",
    response_model=RuleResponse,
    summary="Replace a Rule",
)
async def replace_rule(
    rule_id: str,
    body: RuleCreate,
    db: AsyncSession = Depends(get_db),
    admin: Dict[str, Any] = Depends(get_current_admin),
):
    rule = await _fetch_rule(db, rule_id)
    if body.name != rule.name:
        await _ensure_name_free(db, body.name)
    rule.name = body.name
    rule.field = body.field
    rule.condition = body.condition
    rule.value = body.value
    rule.is_enabled = body.is_enabled
    rule.severity = body.severity.value
    rule.severity_weight = body.severity_weight
    _audit(db, admin, "RULE_REPLACED", rule)
    await db.commit()
    await db.refresh(rule)
    logger.info("Rule replaced: id=%s name=%s", rule_id, rule.name)
    return RuleResponse.model_validate(rule)


# ===========================================================================
# PATCH /api/v1/rules/{rule_id}  — partial update
# ===========================================================================
@router.patch(
    "/{rule_id}",
    response_model=RuleResponse,
    summary="Partial-Update a Rule",
)
async def patch_rule(
    rule_id: str,
    body: RuleUpdate,
    db: AsyncSession = Depends(get_db),
    admin: Dict[str, Any] = Depends(get_current_admin),
):
    rule = await _fetch_rule(db, rule_id)

    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in changes and changes["name"] != rule.name:
        await _ensure_name_free(db, changes["name"])
    if "severity" in changes:
        changes["severity"] = body.severity.value
    for attr, value in changes.items():
        setattr(rule, attr, value)

    _audit(db, admin, "RULE_UPDATED", rule)
    await db.commit()
    await db.refresh(rule)
    logger.info("Rule patched: id=%s fields=%s", rule_id, sorted(changes))
    return RuleResponse.model_validate(rule)


# ===========================================================================
# DELETE /api/v1/rules/{rule_id}  — soft delete
# ===========================================================================
@router.delete(
    "/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Disable (Soft-Delete) a Rule",
)
async def delete_rule(
    rule_id: str,
    db: AsyncSession = Depends(get_db),
    admin: Dict[str, Any] = Depends(get_current_admin),
):
    rule = await _fetch_rule(db, rule_id)
    rule.is_enabled = False
    _audit(db, admin, "RULE_DISABLED", rule)
    await db.commit()
    logger.info("Rule soft-deleted: id=%s name=%s", rule_id, rule.name)


# ===========================================================================
# Helpers
# ===========================================================================
async def _fetch_rule(db: AsyncSession, rule_id: str) -> Rule:
    result = await db.execute(select(Rule).where(Rule.id == rule_id))
    rule = result.scalar_one_or_none()
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Rule {rule_id} not found.")
    return rule


async def _ensure_name_free(db: AsyncSession, name: str) -> None:
    existing = await db.execute(select(Rule.id).where(Rule.name == name))
    if existing.first() is not None:
        raise HTTPException(status_code=409, detail=f"Rule '{name}' already exists.")


def _audit(db: AsyncSession, user: Dict[str, Any], action: str, rule: Rule) -> None:
    db.add(AuditLog(
        actor=f"api:{user.get('sub', 'unknown')}",
        action=action,
        details={
            "rule_id": rule.id,
            "name": rule.name,
            "field": rule.field,
            "condition": rule.condition,
            "value": rule.value,
            "is_enabled": rule.is_enabled,
            "severity_weight": rule.severity_weight,
        },
    ))
