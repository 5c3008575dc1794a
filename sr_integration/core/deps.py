"""
FastAPI dependencies for authenticating SR integrations.
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from sr_integration.core.security import hash_api_key
from sr_integration.db.session import get_db
from sr_integration.models.integration import IntegrationConnection


def get_integration(
    authorization: Optional[str] = Header(default=None),
    x_api_key: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> IntegrationConnection:
    """
    Resolve the calling integration from its API key.

    Accepts ``Authorization: Bearer <key>`` or ``x-api-key: <key>``.
    """
    api_key = x_api_key
    if authorization and authorization.lower().startswith("bearer "):
        api_key = authorization[7:].strip()

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    integration = (
        db.query(IntegrationConnection)
        .filter(IntegrationConnection.api_key_hash == hash_api_key(api_key))
        .first()
    )
    if not integration:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if integration.status != "connected":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Integration is {integration.status}",
        )

    return integration
