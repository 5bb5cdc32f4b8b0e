"""
Orders API Endpoints
Order lookup and breakdown reconciliation

Author: TM3
Date: 2025-10-17
"""
from fastapi import APIRouter, Depends, HTTPException

from app.api.errors import http_error
from app.core.exceptions import CheckoutError
from app.repositories.order_repository import OrderRepository
from app.services.reconciliation_service import ReconciliationService

router = APIRouter()


def get_order_repository() -> OrderRepository:
    return OrderRepository()


def get_reconciliation_service() -> ReconciliationService:
    return ReconciliationService()


@router.get("/{order_id}")
async def get_order(order_id: int, repo: OrderRepository = Depends(get_order_repository)):
    """Get order by ID with items and pricing breakdown"""
    try:
        order = repo.find_by_id(order_id)
        if not order:
            raise HTTPException(status_code=404, detail=f"Order {order_id} not found")
        return {"status": "success", "data": order.to_dict()}

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error fetching order: {str(e)}")


@router.get("/{order_id}/reconcile")
async def reconcile_order(
    order_id: int,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Recalculate an order and list breakdown differences

    Empty `discrepancies` means the stored breakdown is consistent.
    """
    try:
        discrepancies = service.compare(order_id)
        return {
            "status": "success",
            "data": {
                "order_id": order_id,
                "consistent": not discrepancies,
                "discrepancies": [d.to_dict() for d in discrepancies],
            },
        }

    except CheckoutError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Error reconciling order: {str(e)}")
