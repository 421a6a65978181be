"""FastAPI dependency injection providers."""

from typing import Annotated

from fastapi import Depends, Request

from hookrelay.webhooks.pipeline import WebhookPipeline


def get_pipeline(request: Request) -> WebhookPipeline:
    """Return the webhook pipeline wired at startup."""
    return request.app.state.pipeline


# Type alias for dependency injection
Pipeline = Annotated[WebhookPipeline, Depends(get_pipeline)]
