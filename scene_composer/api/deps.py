import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from scene_composer.config import get_settings
from scene_composer.services.job_runner import JobRunner
from scene_composer.services.job_tracker import JobTracker

# auto_error=False so a missing header gets our 401 rather than FastAPI's 403
security = HTTPBearer(auto_error=False)


async def verify_api_secret(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> None:
    """Check the shared bearer secret. An empty configured secret disables the check."""
    expected = get_settings().api_secret
    if not expected:
        return
    if credentials is None or not hmac.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_job_tracker(request: Request) -> JobTracker:
    return request.app.state.job_tracker


def get_job_runner(request: Request) -> JobRunner:
    return request.app.state.job_runner


Authorized = Annotated[None, Depends(verify_api_secret)]
Tracker = Annotated[JobTracker, Depends(get_job_tracker)]
Runner = Annotated[JobRunner, Depends(get_job_runner)]
