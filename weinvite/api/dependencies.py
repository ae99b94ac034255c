"""
FastAPI dependencies.

Workflows are built per request from the clients created at startup and
kept on ``app.state``.
"""
from fastapi import Request

from weinvite.core.catalog import CatalogService
from weinvite.core.order_workflow import OrderWorkflow
from weinvite.core.payment_workflow import PaymentWorkflow
from weinvite.monitoring.health import HealthCheck


def get_order_workflow(request: Request) -> OrderWorkflow:
    state = request.app.state
    return OrderWorkflow(state.storage, state.settings)


def get_payment_workflow(request: Request) -> PaymentWorkflow:
    return PaymentWorkflow(request.app.state.gateway)


def get_catalog(request: Request) -> CatalogService:
    state = request.app.state
    return CatalogService(state.storage, state.settings)


def get_health_check(request: Request) -> HealthCheck:
    return HealthCheck(request.app.state.session_factory)
