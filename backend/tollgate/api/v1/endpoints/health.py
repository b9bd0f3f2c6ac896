"""Liveness endpoint."""

from tollgate.api.router import TrailingSlashRouter

router = TrailingSlashRouter()


@router.get("")
async def health_check() -> dict[str, str]:
    """Report that the process is up; the database and the vendor are not checked."""
    return {"status": "healthy"}
