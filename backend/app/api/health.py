from fastapi import APIRouter

router = APIRouter()


@router.get("")
async def health_check():
    """Liveness probe."""
    return {"status": "healthy"}
