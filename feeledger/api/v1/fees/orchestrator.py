"""
Bulk fee assignment.

Every member is an independent unit of work: its own session, its own transaction,
its own outcome. A failing member never rolls back another; a cancelled batch keeps
what was already committed and reports the rest as not attempted.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Union
from uuid import UUID

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.ext.asyncio import async_sessionmaker

from feeledger.core.config import settings

from . import service
from .schemas import AssignmentOverrides, BulkAssignResult

logger = logging.getLogger(__name__)


class BulkAssignment:
    """One bulk run. `result` is readable at any point, including after cancellation."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        coaching_id: UUID,
        structure_id: UUID,
        member_ids: Iterable[UUID],
        overrides: Optional[AssignmentOverrides] = None,
        member_overrides: Optional[Dict[UUID, Union[AssignmentOverrides, Dict[str, Any]]]] = None,
        expected_settlements: Optional[Dict[UUID, str]] = None,
        actor_id: Optional[UUID] = None,
        concurrency: Optional[int] = None,
        member_timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        self.session_factory = session_factory
        self.coaching_id = coaching_id
        self.structure_id = structure_id
        # Duplicates would race on the same member; keep the first occurrence.
        self.member_ids: List[UUID] = list(dict.fromkeys(member_ids))
        self.overrides = overrides or AssignmentOverrides()
        self.member_overrides = member_overrides or {}
        self.expected_settlements = expected_settlements or {}
        self.actor_id = actor_id
        self.concurrency = concurrency or settings.bulk_assign_concurrency
        self.member_timeout = (
            member_timeout if member_timeout is not None else settings.bulk_assign_member_timeout_seconds
        )
        self.cancel_event = cancel_event or asyncio.Event()
        self.result = BulkAssignResult()
        self._started: Set[UUID] = set()

    def cancel(self) -> None:
        """Stop starting new members; members already running finish."""
        self.cancel_event.set()

    def _overrides_for(self, member_id: UUID) -> AssignmentOverrides:
        overrides = self.member_overrides.get(member_id, self.overrides)
        if not isinstance(overrides, AssignmentOverrides):
            overrides = AssignmentOverrides.model_validate(overrides)
        fingerprint = self.expected_settlements.get(member_id)
        if fingerprint is not None:
            overrides = overrides.model_copy(update={"expected_fingerprint": fingerprint})
        return overrides

    async def _assign_one(self, member_id: UUID) -> None:
        async with self.session_factory() as db:
            await service.assign_fee(
                db,
                self.coaching_id,
                member_id,
                self.structure_id,
                self._overrides_for(member_id),
                actor_id=self.actor_id,
            )

    async def _run_member(self, semaphore: asyncio.Semaphore, member_id: UUID) -> None:
        async with semaphore:
            if self.cancel_event.is_set():
                return
            self._started.add(member_id)
            try:
                if self.member_timeout:
                    await asyncio.wait_for(self._assign_one(member_id), timeout=self.member_timeout)
                else:
                    await self._assign_one(member_id)
            except asyncio.TimeoutError:
                self._fail(member_id, f"Timed out after {self.member_timeout}s")
            except SchemaValidationError as e:
                self._fail(member_id, _describe_invalid(e))
            except Exception as e:
                self._fail(member_id, getattr(e, "message", None) or str(e) or e.__class__.__name__)
            else:
                self.result.succeeded.append(member_id)

    def _fail(self, member_id: UUID, message: str) -> None:
        logger.warning(
            "Bulk fee assignment failed for member %s (coaching=%s structure=%s): %s",
            member_id, self.coaching_id, self.structure_id, message,
        )
        self.result.failed.append(member_id)
        self.result.errors[member_id] = message

    def _finalize(self) -> None:
        done = set(self.result.succeeded) | set(self.result.failed)
        # Started but interrupted: the member's transaction was rolled back with its session.
        for member_id in self.member_ids:
            if member_id in self._started and member_id not in done:
                self._fail(member_id, "Cancelled before completion")
        done = set(self.result.succeeded) | set(self.result.failed)
        self.result.not_attempted = [m for m in self.member_ids if m not in done]
        self.result.cancelled = self.cancel_event.is_set() or bool(self.result.not_attempted)

    async def run(self) -> BulkAssignResult:
        logger.info(
            "Bulk fee assignment started: coaching=%s structure=%s members=%d concurrency=%d",
            self.coaching_id, self.structure_id, len(self.member_ids), self.concurrency,
        )
        semaphore = asyncio.Semaphore(self.concurrency)
        tasks = [asyncio.create_task(self._run_member(semaphore, m)) for m in self.member_ids]
        try:
            if tasks:
                await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self.cancel_event.set()
            self._finalize()
            logger.warning(
                "Bulk fee assignment cancelled: succeeded=%d failed=%d not_attempted=%d",
                len(self.result.succeeded), len(self.result.failed), len(self.result.not_attempted),
            )
            raise
        self._finalize()
        logger.info(
            "Bulk fee assignment finished: succeeded=%d failed=%d not_attempted=%d",
            len(self.result.succeeded), len(self.result.failed), len(self.result.not_attempted),
        )
        return self.result


def _describe_invalid(error: SchemaValidationError) -> str:
    parts = []
    for item in error.errors():
        field = ".".join(str(loc) for loc in item["loc"]) or "overrides"
        parts.append(f"{field}: {item['msg']}")
    return "Invalid overrides: " + "; ".join(parts)
