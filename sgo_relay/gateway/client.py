"""
School system data client.

Forwards authenticated read requests upstream using the cookie jar and
access token of a password-session. Responses are relayed unchanged.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from ..auth.cookies import encode_cookies
from ..errors import UpstreamUnavailable
from ..models import PasswordCredentials

logger = logging.getLogger(__name__)


CONTEXT_PATH = "/webapi/context"
DIARY_PATH = "/webapi/student/diary"
GRADES_PATH = "/webapi/student/grades"
ASSIGNS_PATH = "/webapi/student/diary/assigns"
TOTAL_MARKS_PATH = "/webapi/student/total-marks"
LOGOUT_PATH = "/webapi/auth/logout"


class SchoolClient:
    """Session-scoped view of the school system API."""

    def __init__(self, client: httpx.AsyncClient, credentials: PasswordCredentials):
        self._client = client
        self._credentials = credentials

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Cookie": encode_cookies(self._credentials.cookies),
            "at": self._credentials.access_token,
        }

    def student_id(self, student_id: Optional[str]) -> Any:
        """Explicit student id, or the session user id when none is given."""
        return student_id if student_id else self._credentials.user_id

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET an upstream resource and return its JSON body.

        ``None`` parameters are not forwarded.

        Raises:
            UpstreamUnavailable: Transport error, non-2xx status or bad JSON
        """
        query = {k: v for k, v in (params or {}).items() if v is not None}
        url = f"{self._credentials.base_url}{path}"

        try:
            response = await self._client.get(url, params=query, headers=self.headers)
        except httpx.HTTPError as e:
            logger.error(f"Upstream request failed: {e}", extra={"path": path})
            raise UpstreamUnavailable("Unable to reach the school system", details=str(e)) from e

        if not response.is_success:
            logger.warning(
                f"Upstream returned {response.status_code}",
                extra={"path": path, "status_code": response.status_code},
            )
            try:
                details = response.json()
            except ValueError:
                details = response.text or None
            raise UpstreamUnavailable("School system request failed", details=details)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailable("School system returned malformed JSON", details=response.text) from e

    async def context(self) -> Any:
        return await self.get(CONTEXT_PATH)

    async def diary(self, student_id=None, week_start=None, week_end=None) -> Any:
        return await self.get(DIARY_PATH, {
            "studentId": self.student_id(student_id),
            "weekStart": week_start,
            "weekEnd": week_end,
        })

    async def grades(self, student_id=None, period_id=None) -> Any:
        return await self.get(GRADES_PATH, {
            "studentId": self.student_id(student_id),
            "periodId": period_id or 0,
        })

    async def schedule(self, student_id=None, date=None) -> Any:
        return await self.get(DIARY_PATH, {
            "studentId": self.student_id(student_id),
            "date": date or datetime.now(timezone.utc).date().isoformat(),
        })

    async def homework(self, student_id=None, from_date=None, to_date=None) -> Any:
        return await self.get(ASSIGNS_PATH, {
            "studentId": self.student_id(student_id),
            "fromDate": from_date,
            "toDate": to_date,
        })

    async def total_marks(self, student_id=None) -> Any:
        return await self.get(TOTAL_MARKS_PATH, {"studentId": self.student_id(student_id)})

    async def logout(self) -> bool:
        """
        Best-effort upstream logout.

        Returns:
            True if the school system acknowledged the logout
        """
        try:
            response = await self._client.post(
                f"{self._credentials.base_url}{LOGOUT_PATH}",
                json={},
                headers=self.headers,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Upstream logout failed: {e}")
            return False

        if not response.is_success:
            logger.warning(f"Upstream logout returned {response.status_code}")
            return False
        return True
