"""Health check endpoints"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.orm import Session

from rbi_access.database import get_db
from rbi_access.services.geography import get_geography_store

router = APIRouter()


@router.get("/healthz")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "service": "rbi-access"}


@router.get("/readyz")
async def readiness_check(db: Session = Depends(get_db)):
    """Readiness check with dependencies"""
    try:
        db.execute(text("SELECT 1"))
        store = get_geography_store(db)

        return {
            "status": "ready",
            "service": "rbi-access",
            "dependencies": {
                "database": "healthy",
                "geography": f"{len(store)} codes",
            }
        }
    except Exception as e:
        raise HTTPException(
            status_code=503,
            detail=f"Service not ready: {str(e)}"
        )
