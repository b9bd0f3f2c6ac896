"""Router that serves every route with and without a trailing slash."""

from typing import Any, Callable

from fastapi import APIRouter
from fastapi.types import DecoratedCallable


class TrailingSlashRouter(APIRouter):
    """Registers each endpoint for both ``/path`` and ``/path/``.

    Only the form without the slash is part of the OpenAPI schema, so the app can
    run with ``redirect_slashes=False`` and webhook deliveries are never redirected.

    Examples:
        @router.get("/plans") - documented as /plans, answers /plans and /plans/

        @router.get("") - answers both the router prefix and the prefix with a slash
    """

    def api_route(
        self, path: str, *, include_in_schema: bool = True, **kwargs: Any
    ) -> Callable[[DecoratedCallable], DecoratedCallable]:
        """Register the route under the path without and with a trailing slash.

        Args:
            path (str): The path for the endpoint
            include_in_schema (bool): Whether to include the route in the OpenAPI schema
            **kwargs: Additional arguments to pass to the parent api_route method

        Returns:
            Callable[[DecoratedCallable], DecoratedCallable]: A decorator registering both paths.
        """
        bare = path.rstrip("/")
        registrations = [
            super().api_route(bare + "/", include_in_schema=False, **kwargs),
            super().api_route(bare, include_in_schema=include_in_schema, **kwargs),
        ]

        def decorator(func: DecoratedCallable) -> DecoratedCallable:
            for register in registrations:
                func = register(func)
            return func

        return decorator
