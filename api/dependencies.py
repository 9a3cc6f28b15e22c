from fastapi import Request

from core.context import AppContext


def get_context(request: Request) -> AppContext:
    """The AppContext built in the application lifespan."""
    return request.app.state.context
