"""
Client du backend distant (API REST PostgREST exposée par Supabase).

Toutes les lignes échangées passent par les schémas `app.schemas.remote`
et leurs fonctions de conversion. Toute erreur réseau, HTTP ou de format
(timeout compris) est remontée sous forme de RemoteError.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from app.exceptions import RemoteError
from app.schemas.attendance import AttendanceEntry
from app.schemas.remote import (
    RemoteAttendanceRow,
    RemoteStudentRow,
    attendance_from_remote,
    attendance_to_remote,
    student_from_remote,
    student_to_remote,
)
from app.schemas.student import Student
from app.services.identifiers import is_uuid

logger = logging.getLogger(__name__)

STUDENTS_PATH = "/students"
ATTENDANCE_PATH = "/attendance_records"

Params = List[Tuple[str, str]]


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class RemoteBackend:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        page_size: int = 1000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.page_size = page_size
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Prefer": "return=representation",
            },
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Params] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        try:
            response = await self._client.request(method, path, params=params, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RemoteError(
                f"{method} {path} refusé : {exc.response.status_code} {exc.response.text}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteError(f"{method} {path} injoignable : {exc}") from exc

        if not response.content:
            return []
        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteError(f"{method} {path} : réponse illisible") from exc
        return body if isinstance(body, list) else [body]

    async def _fetch_all(self, path: str, params: Params) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            page = await self._request(
                "GET",
                path,
                params=params + [("limit", str(self.page_size)), ("offset", str(offset))],
            )
            rows.extend(page)
            if len(page) < self.page_size:
                return rows
            offset += self.page_size

    @staticmethod
    def _single(rows: List[Dict[str, Any]], what: str) -> Dict[str, Any]:
        if not rows:
            raise RemoteError(f"{what} : aucune ligne renvoyée")
        return rows[0]

    @staticmethod
    def _students(rows: List[Dict[str, Any]]) -> List[Student]:
        try:
            return [student_from_remote(RemoteStudentRow.model_validate(r)) for r in rows]
        except ValidationError as exc:
            raise RemoteError(f"Ligne élève invalide : {exc}") from exc

    @staticmethod
    def _attendance(rows: List[Dict[str, Any]]) -> List[AttendanceEntry]:
        try:
            return [attendance_from_remote(RemoteAttendanceRow.model_validate(r)) for r in rows]
        except ValidationError as exc:
            raise RemoteError(f"Ligne de passage invalide : {exc}") from exc

    # ------------------------------------------------------------------
    # Élèves
    # ------------------------------------------------------------------

    async def fetch_students(self) -> List[Student]:
        rows = await self._fetch_all(STUDENTS_PATH, [("select", "*"), ("order", "created_at.desc")])
        return self._students(rows)

    async def insert_student(self, student: Student) -> Student:
        rows = await self._request("POST", STUDENTS_PATH, json=student_to_remote(student))
        return self._students([self._single(rows, "Insertion élève")])[0]

    async def update_student(self, student: Student) -> Student:
        rows = await self._request(
            "PATCH",
            STUDENTS_PATH,
            params=[("id", f"eq.{student.id}")],
            json=student_to_remote(student),
        )
        return self._students([self._single(rows, "Mise à jour élève")])[0]

    # ------------------------------------------------------------------
    # Passages
    # ------------------------------------------------------------------

    async def fetch_attendance(self, since: Optional[datetime] = None) -> List[AttendanceEntry]:
        """Tous les passages (since=None, bootstrap) ou ceux postérieurs à `since`."""
        params: Params = [("select", "*"), ("order", "timestamp.desc")]
        if since is not None:
            params.append(("timestamp", f"gte.{_iso(since)}"))
        return self._attendance(await self._fetch_all(ATTENDANCE_PATH, params))

    async def insert_attendance(self, entry: AttendanceEntry) -> AttendanceEntry:
        rows = await self._request("POST", ATTENDANCE_PATH, json=attendance_to_remote(entry))
        return self._attendance([self._single(rows, "Insertion passage")])[0]

    async def find_attendance_near(
        self,
        entry: AttendanceEntry,
        window: timedelta = timedelta(seconds=10),
    ) -> Optional[AttendanceEntry]:
        """
        Requête d'idempotence : un passage du même type à ±window du même élève,
        identifié par student_database_id s'il s'agit d'un UUID, sinon par student_id.
        """
        params: Params = [
            ("select", "*"),
            ("type", f"eq.{entry.type}"),
            ("timestamp", f"gte.{_iso(entry.timestamp - window)}"),
            ("timestamp", f"lte.{_iso(entry.timestamp + window)}"),
            ("limit", "1"),
        ]
        if is_uuid(entry.student_database_id):
            params.append(("student_database_id", f"eq.{entry.student_database_id}"))
        else:
            params.append(("student_id", f"eq.{entry.student_id}"))
        found = self._attendance(await self._request("GET", ATTENDANCE_PATH, params=params))
        return found[0] if found else None

    async def last_attendance(self, identifier: str, entry_type: Optional[str] = None) -> Optional[AttendanceEntry]:
        """Dernier passage d'un élève (UUID → student_database_id, sinon student_id)."""
        column = "student_database_id" if is_uuid(identifier) else "student_id"
        params: Params = [
            ("select", "*"),
            (column, f"eq.{identifier}"),
            ("order", "timestamp.desc"),
            ("limit", "1"),
        ]
        if entry_type is not None:
            params.append(("type", f"eq.{entry_type}"))
        found = self._attendance(await self._request("GET", ATTENDANCE_PATH, params=params))
        return found[0] if found else None

    async def ping(self) -> bool:
        """Vrai si le backend répond ; ne lève jamais."""
        try:
            await self._request("GET", STUDENTS_PATH, params=[("select", "id"), ("limit", "1")])
        except RemoteError as exc:
            logger.debug("Backend injoignable : %s", exc)
            return False
        return True
