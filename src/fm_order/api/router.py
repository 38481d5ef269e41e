"""Orders REST API — every endpoint acts as the user named in X-Actor-Id."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from src.fm_common.enums import ActorRole, OrderStatus, OrderType
from src.fm_common.errors import PermissionDeniedError
from src.fm_common.response import ApiResponse, success_response
from src.fm_gateway.auth.dependencies import get_actor_id
from src.fm_order.application.engine import OrderEngine
from src.fm_order.application.schemas import (
    ApproveMilestoneRequest,
    AssignWorkerRequest,
    CompleteMilestoneRequest,
    CreateOrderRequest,
    DisputePaymentRequest,
    OrderListResponse,
    OrderResponse,
    OrderStatsResponse,
    OrderSummary,
    RefundPaymentRequest,
    RejectMilestoneRequest,
    TimelineItem,
    TimelineResponse,
    UpdateOrderRequest,
    cursor_decode,
    cursor_encode,
)
from src.fm_order.domain.models import Order, OrderFilters

router = APIRouter(prefix="/orders", tags=["orders"])


def get_order_engine(request: Request) -> OrderEngine:
    """The engine built at startup (see src.main lifespan)."""
    return request.app.state.order_engine


Actor = Annotated[str, Depends(get_actor_id)]
Engine = Annotated[OrderEngine, Depends(get_order_engine)]


def _ok(request: Request, data: object) -> ApiResponse:
    return success_response(data, getattr(request.state, "request_id", None))


def _order_ok(request: Request, order: Order) -> ApiResponse:
    return _ok(request, OrderResponse.from_order(order).model_dump())


def _ensure_party(order: Order, actor_id: str) -> None:
    if actor_id not in (order.client_id, order.worker_id):
        raise PermissionDeniedError(f"{actor_id} is not a party to order {order.order_id}")


@router.post("", status_code=201)
async def create_order(
    body: CreateOrderRequest, actor_id: Actor, engine: Engine, request: Request
) -> ApiResponse:
    order = await engine.create_order(body.to_draft(actor_id))
    return _order_ok(request, order)


@router.get("")
async def list_orders(
    actor_id: Actor,
    engine: Engine,
    request: Request,
    role: ActorRole = Query(ActorRole.CLIENT, description="List as client or as worker"),
    status: OrderStatus | None = Query(None, description="Filter by order status"),
    type: OrderType | None = Query(None, description="Filter by order type"),
    category: str | None = Query(None, description="Filter by category"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
    cursor: str | None = Query(None, description="Pagination cursor (opaque Base64)"),
) -> ApiResponse:
    listing = engine.list_orders(
        actor_id, role, OrderFilters(status=status, type=type, category=category)
    )
    page, next_position = await listing.page(limit, after=cursor_decode(cursor))
    data = OrderListResponse(
        items=[OrderSummary.from_order(o) for o in page],
        next_cursor=cursor_encode(next_position) if next_position else None,
        has_more=next_position is not None,
    )
    return _ok(request, data.model_dump())


@router.get("/stats")
async def get_stats(
    actor_id: Actor,
    engine: Engine,
    request: Request,
    role: ActorRole = Query(ActorRole.CLIENT, description="Stats as client or as worker"),
) -> ApiResponse:
    stats = await engine.get_order_stats(actor_id, role)
    return _ok(request, OrderStatsResponse.from_stats(stats).model_dump())


@router.get("/{order_id}")
async def get_order(order_id: str, actor_id: Actor, engine: Engine, request: Request) -> ApiResponse:
    order = await engine.get_order(order_id)
    _ensure_party(order, actor_id)
    return _order_ok(request, order)


@router.patch("/{order_id}")
async def update_order(
    order_id: str,
    body: UpdateOrderRequest,
    actor_id: Actor,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    order = await engine.update_order(order_id, body.model_dump(exclude_unset=True), actor_id)
    return _order_ok(request, order)


@router.post("/{order_id}/assign")
async def assign_worker(
    order_id: str,
    body: AssignWorkerRequest,
    actor_id: Actor,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    order = await engine.assign_worker(order_id, body.worker_id, actor_id)
    return _order_ok(request, order)


@router.get("/{order_id}/timeline")
async def get_timeline(
    order_id: str, actor_id: Actor, engine: Engine, request: Request
) -> ApiResponse:
    order = await engine.get_order(order_id)
    _ensure_party(order, actor_id)
    data = TimelineResponse(
        order_id=order.order_id,
        events=[TimelineItem.from_event(e) for e in order.timeline],
    )
    return _ok(request, data.model_dump())


@router.post("/{order_id}/milestones/{milestone_id}/complete")
async def complete_milestone(
    order_id: str,
    milestone_id: str,
    body: CompleteMilestoneRequest,
    actor_id: Actor,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    order = await engine.complete_milestone(
        order_id, milestone_id, actor_id, [d.to_draft() for d in body.deliverables]
    )
    return _order_ok(request, order)


@router.post("/{order_id}/milestones/{milestone_id}/approve")
async def approve_milestone(
    order_id: str,
    milestone_id: str,
    body: ApproveMilestoneRequest,
    actor_id: Actor,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    order = await engine.approve_milestone(
        order_id, milestone_id, actor_id, body.feedback, body.rating
    )
    return _order_ok(request, order)


@router.post("/{order_id}/milestones/{milestone_id}/reject")
async def reject_milestone(
    order_id: str,
    milestone_id: str,
    body: RejectMilestoneRequest,
    actor_id: Actor,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    order = await engine.reject_milestone(order_id, milestone_id, actor_id, body.reason)
    return _order_ok(request, order)


@router.post("/{order_id}/release-final")
async def release_final_payment(
    order_id: str, actor_id: Actor, engine: Engine, request: Request
) -> ApiResponse:
    order = await engine.release_final_payment(order_id, actor_id)
    return _order_ok(request, order)


@router.post("/{order_id}/payments/{payment_id}/release")
async def release_payment(
    order_id: str, payment_id: str, actor_id: Actor, engine: Engine, request: Request
) -> ApiResponse:
    order = await engine.request_payment_release(order_id, payment_id, actor_id)
    return _order_ok(request, order)


@router.post("/{order_id}/payments/{payment_id}/refund")
async def refund_payment(
    order_id: str,
    payment_id: str,
    body: RefundPaymentRequest,
    actor_id: Actor,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    order = await engine.refund_payment(order_id, payment_id, actor_id, body.amount_cents)
    return _order_ok(request, order)


@router.post("/{order_id}/payments/{payment_id}/dispute")
async def dispute_payment(
    order_id: str,
    payment_id: str,
    body: DisputePaymentRequest,
    actor_id: Actor,
    engine: Engine,
    request: Request,
) -> ApiResponse:
    order = await engine.dispute_payment(order_id, payment_id, actor_id, body.reason)
    return _order_ok(request, order)
