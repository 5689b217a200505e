"""
Gateway Routes - Session-Scoped Data Forwarding
===============================================

Read endpoints that mirror the school system API. Every endpoint:

1. Resolves the bearer session identifier (``get_current_session``)
2. Requires a password-session (federated sessions have no school system
   credentials; only ``/api/user`` answers for them, from the local profile)
3. Forwards one GET upstream with the stored cookies and access token
4. Relays the upstream JSON unchanged

Endpoints:
----------
- GET /api/user
- GET /api/diary
- GET /api/grades
- GET /api/schedule
- GET /api/homework
- GET /api/total-marks
"""

import logging
from typing import Any, Optional

import httpx
from fastapi import APIRouter, Depends, Query

from ..auth.session import get_current_session
from ..dependencies import get_upstream_client
from ..errors import UnsupportedForSessionType
from ..models import FederatedCredentials, PasswordCredentials, SessionCredentials
from .client import SchoolClient

logger = logging.getLogger(__name__)

gateway_router = APIRouter(prefix="/api", tags=["School data"])


def require_password_session(
    session: SessionCredentials = Depends(get_current_session),
) -> PasswordCredentials:
    """
    Dependency narrowing the current session to a password-session.

    Raises:
        UnsupportedForSessionType: For federated sessions
    """
    if not isinstance(session, PasswordCredentials):
        raise UnsupportedForSessionType(
            "School data is only available for sessions created with a school system login"
        )
    return session


def get_school_client(
    session: PasswordCredentials = Depends(require_password_session),
    client: httpx.AsyncClient = Depends(get_upstream_client),
) -> SchoolClient:
    return SchoolClient(client, session)


@gateway_router.get("/user")
async def get_user(
    session: SessionCredentials = Depends(get_current_session),
    client: httpx.AsyncClient = Depends(get_upstream_client),
) -> Any:
    """
    Current user information.

    Password-sessions get the upstream ``/webapi/context`` payload;
    federated sessions get the locally held normalized profile.
    """
    if isinstance(session, FederatedCredentials):
        return {
            "success": True,
            "source": "esia",
            "profile": session.profile.model_dump(),
            "telegramUserId": session.telegram_user_id,
        }

    return await SchoolClient(client, session).context()


@gateway_router.get("/diary")
async def get_diary(
    studentId: Optional[str] = Query(None),
    weekStart: Optional[str] = Query(None),
    weekEnd: Optional[str] = Query(None),
    school: SchoolClient = Depends(get_school_client),
) -> Any:
    return await school.diary(studentId, weekStart, weekEnd)


@gateway_router.get("/grades")
async def get_grades(
    studentId: Optional[str] = Query(None),
    periodId: Optional[str] = Query(None),
    school: SchoolClient = Depends(get_school_client),
) -> Any:
    return await school.grades(studentId, periodId)


@gateway_router.get("/schedule")
async def get_schedule(
    studentId: Optional[str] = Query(None),
    date: Optional[str] = Query(None, description="ISO date, defaults to today"),
    school: SchoolClient = Depends(get_school_client),
) -> Any:
    return await school.schedule(studentId, date)


@gateway_router.get("/homework")
async def get_homework(
    studentId: Optional[str] = Query(None),
    fromDate: Optional[str] = Query(None),
    toDate: Optional[str] = Query(None),
    school: SchoolClient = Depends(get_school_client),
) -> Any:
    return await school.homework(studentId, fromDate, toDate)


@gateway_router.get("/total-marks")
async def get_total_marks(
    studentId: Optional[str] = Query(None),
    school: SchoolClient = Depends(get_school_client),
) -> Any:
    return await school.total_marks(studentId)
