from fastapi import APIRouter
from dmreply.api.routes import auth, membership, subscriptions, webhooks, replies, connections

api_router = APIRouter()

api_router.include_router(auth.router, tags=["auth"])
api_router.include_router(membership.router, tags=["membership"])
api_router.include_router(subscriptions.router, tags=["subscriptions"])
api_router.include_router(webhooks.router, tags=["webhooks"])
api_router.include_router(replies.router, tags=["replies"])
api_router.include_router(connections.router, tags=["connections"])
