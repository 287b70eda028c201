"""Aggregate API v1 router: mounts all sub-routers."""
from fastapi import APIRouter
from tiro.api.v1 import projects, lifecycle, payments, rpc, messages, reviews, websocket

router = APIRouter(prefix="/api/v1")

router.include_router(projects.router, prefix="/projects", tags=["Projects"])
router.include_router(lifecycle.router, prefix="/projects", tags=["Lifecycle"])
router.include_router(payments.router, prefix="/payments", tags=["Payments"])
router.include_router(rpc.router, prefix="/rpc", tags=["RPC"])
router.include_router(messages.router, prefix="/conversations", tags=["Messaging"])
router.include_router(reviews.router, tags=["Reviews"])
router.include_router(websocket.router, tags=["WebSocket"])
