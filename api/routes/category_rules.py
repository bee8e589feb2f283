"""Category rule endpoints.

Rules are company-scoped. Changes apply to transactions categorized after
the change; ``/apply`` re-runs the rules over stored transactions.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from api.dependencies import get_services
from banking.services import BankingServices
from categorization.models import DEFAULT_RULE_PRIORITY, CategoryRule, RuleField
from models.api_responses import CategoryRuleResponse, RecategorizeResponse


router = APIRouter()


class RuleCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    name: str = Field(..., min_length=1)
    pattern: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    is_regex: bool = False
    field: RuleField = RuleField.DESCRIPTION
    priority: int = DEFAULT_RULE_PRIORITY
    active: bool = True


class RuleUpdateRequest(BaseModel):
    """Only the fields present are changed."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    name: Optional[str] = None
    pattern: Optional[str] = None
    category: Optional[str] = None
    is_regex: Optional[bool] = None
    field: Optional[RuleField] = None
    priority: Optional[int] = None
    active: Optional[bool] = None


@router.get("/companies/{company_id}/category-rules", response_model=List[CategoryRuleResponse])
async def list_rules(
    company_id: int,
    services: BankingServices = Depends(get_services),
) -> List[CategoryRuleResponse]:
    """All rules of a company in evaluation order."""
    return [CategoryRuleResponse.from_domain(r) for r in services.categorization.list_rules(company_id)]


@router.post("/companies/{company_id}/category-rules", response_model=CategoryRuleResponse, status_code=201)
async def create_rule(
    company_id: int,
    request: RuleCreateRequest,
    services: BankingServices = Depends(get_services),
) -> CategoryRuleResponse:
    rule = services.categorization.create_rule(CategoryRule(
        company_id=company_id,
        name=request.name,
        pattern=request.pattern,
        category=request.category,
        is_regex=request.is_regex,
        field=request.field,
        priority=request.priority,
        active=request.active,
    ))
    return CategoryRuleResponse.from_domain(rule)


@router.put("/companies/{company_id}/category-rules/{rule_id}", response_model=CategoryRuleResponse)
async def update_rule(
    company_id: int,
    rule_id: int,
    request: RuleUpdateRequest,
    services: BankingServices = Depends(get_services),
) -> CategoryRuleResponse:
    rule = services.categorization.update_rule(company_id, rule_id, **request.model_dump(exclude_unset=True))
    return CategoryRuleResponse.from_domain(rule)


@router.delete("/companies/{company_id}/category-rules/{rule_id}", status_code=204)
async def delete_rule(
    company_id: int,
    rule_id: int,
    services: BankingServices = Depends(get_services),
) -> Response:
    services.categorization.delete_rule(company_id, rule_id)
    return Response(status_code=204)


@router.post("/companies/{company_id}/category-rules/apply", response_model=RecategorizeResponse)
async def apply_rules(
    company_id: int,
    only_uncategorized: bool = Query(default=True, alias="onlyUncategorized"),
    services: BankingServices = Depends(get_services),
) -> RecategorizeResponse:
    """Re-run the rules over stored transactions; manual categories are kept."""
    result = services.categorization.recategorize(company_id, only_uncategorized=only_uncategorized)
    return RecategorizeResponse.from_domain(result)
