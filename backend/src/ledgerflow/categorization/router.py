"""Categorization, feedback and rule API endpoints.

Endpoints:
- POST /api/v1/transactions/categorize - Categorize pending transactions
- GET /api/v1/transactions/categorization/progress - Durable progress
- POST /api/v1/transactions/{id}/feedback - Record a category correction
- GET/POST/PATCH/DELETE /api/v1/rules - Manage the caller's rules
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..dependencies import get_current_user_id, get_embedding_provider_dependency
from ..domain.ai.ports import EmbeddingProviderPort
from .embedding import EmbeddingGenerationService
from .feedback import FeedbackLearner
from .ports import FeedbackValidationError, NotFoundError, RuleValidationError
from .rules import DuplicateRuleError, RuleService
from .schemas import (
    CategorizeRequest,
    CategorizeResponse,
    FeedbackRequest,
    FeedbackResponse,
    ProgressResponse,
    RuleCreateRequest,
    RuleListResponse,
    RuleSchema,
    RuleUpdateRequest,
    TransactionSchema,
)
from .tasks import (
    build_orchestrator,
    categorize_pending_task,
    generate_example_embedding_task,
    run_batch_inline,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/transactions", tags=["categorization"])
rules_router = APIRouter(prefix="/api/v1/rules", tags=["rules"])


@router.post("/categorize", response_model=CategorizeResponse, status_code=status.HTTP_202_ACCEPTED)
def categorize_transactions(
    request: Optional[CategorizeRequest] = None,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    provider: Optional[EmbeddingProviderPort] = Depends(get_embedding_provider_dependency),
):
    """Start categorization of the caller's pending transactions.

    With CATEGORIZATION_EAGER the batch, including embedding of rows that
    need the similarity tier, runs inside the request and the response
    carries categorized_count; otherwise a Celery job is queued.
    """
    limit = (request.limit if request else None) or settings.CATEGORIZATION_BATCH_LIMIT
    orchestrator = build_orchestrator(db, provider)
    pending = orchestrator.count_pending(user_id)

    if pending == 0:
        return CategorizeResponse(message="No pending transactions", queued_count=0)

    if settings.CATEGORIZATION_EAGER:
        counts = run_batch_inline(db, provider, user_id, limit=limit)
        return CategorizeResponse(
            message="Categorization completed",
            queued_count=counts["claimed"],
            categorized_count=counts["categorized"],
        )

    job = categorize_pending_task.delay(user_id=str(user_id), limit=limit)
    logger.info(f"Queued categorization job {job.id}", extra={"user_id": str(user_id)})
    return CategorizeResponse(
        message="Categorization started",
        queued_count=min(pending, limit),
        job_id=job.id,
    )


@router.get("/categorization/progress", response_model=ProgressResponse)
def categorization_progress(
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    """Progress derived from transaction rows; survives worker restarts."""
    progress = build_orchestrator(db).progress(user_id)
    return ProgressResponse(**progress.to_dict())


@router.post("/{transaction_id}/feedback", response_model=FeedbackResponse)
def submit_feedback(
    transaction_id: UUID,
    request: FeedbackRequest,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    provider: Optional[EmbeddingProviderPort] = Depends(get_embedding_provider_dependency),
):
    """Record a user's category correction and learn from it.

    Raises:
        HTTPException 404: Transaction not found for this user
        HTTPException 422: Category / subcategory invalid
    """
    learner = FeedbackLearner(db, embedder=EmbeddingGenerationService(db, provider))
    try:
        outcome = learner.submit(
            user_id,
            transaction_id,
            request.category_id,
            subcategory_id=request.subcategory_id,
            apply_to_similar=request.apply_to_similar,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except FeedbackValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    if outcome.example is not None and outcome.example.embedding is None and provider is not None:
        generate_example_embedding_task.delay(user_id=str(user_id), example_id=str(outcome.example.id))

    return FeedbackResponse(
        success=True,
        transaction=TransactionSchema.model_validate(outcome.transaction),
        similar_updated=outcome.similar_updated if request.apply_to_similar else None,
        similar_ids=outcome.similar_ids if request.apply_to_similar else None,
    )


@rules_router.get("", response_model=RuleListResponse)
def list_rules(
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    """List the caller's rules in evaluation order."""
    rules = RuleService(db).list_rules(user_id)
    return RuleListResponse(
        rules=[RuleSchema.model_validate(rule) for rule in rules],
        total=len(rules),
    )


@rules_router.post("", response_model=RuleSchema, status_code=status.HTTP_201_CREATED)
def create_rule(
    request: RuleCreateRequest,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    """Create a manual rule.

    Raises:
        HTTPException 409: Pattern already exists for the caller
        HTTPException 422: Invalid regex, amount bounds or category
    """
    try:
        rule = RuleService(db).create_rule(user_id, request.model_dump())
    except DuplicateRuleError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except RuleValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return RuleSchema.model_validate(rule)


@rules_router.patch("/{rule_id}", response_model=RuleSchema)
def update_rule(
    rule_id: UUID,
    request: RuleUpdateRequest,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    """Partially update a rule."""
    try:
        rule = RuleService(db).update_rule(user_id, rule_id, request.model_dump(exclude_unset=True))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except DuplicateRuleError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except RuleValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return RuleSchema.model_validate(rule)


@rules_router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(
    rule_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    """Delete a rule."""
    try:
        RuleService(db).delete_rule(user_id, rule_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
