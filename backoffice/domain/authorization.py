from __future__ import annotations

from typing import Iterable

from backoffice.domain.models import Principal, Rfq, RfqAssignment, Tender, TenderTask
from backoffice.errors import ForbiddenError
from backoffice.policies import DEFAULT_ELEVATED_ROLES, is_elevated, normalize_allowed_roles


class AuthorizationGuard:
    """Decides who may read or change tenders, tasks and RFQs.

    Viewing is open to elevated roles, the creator and anyone assigned to one
    of the entity's tasks (or RFQ assignment rows). Mutation is creator-only.
    Task files may be handled by the tender creator or the current assignee.
    """

    def __init__(self, elevated_roles: Iterable[str] | str | None = None) -> None:
        self.elevated_roles = normalize_allowed_roles(elevated_roles) or set(DEFAULT_ELEVATED_ROLES)

    def is_elevated(self, principal: Principal) -> bool:
        return is_elevated(principal.role, self.elevated_roles)

    def can_view(
        self,
        entity: Tender | Rfq,
        principal: Principal,
        tasks_or_assignments: Iterable[TenderTask | RfqAssignment] = (),
    ) -> bool:
        if self.is_elevated(principal) or entity.created_by == principal.user_id:
            return True
        return any(row.assignee_id == principal.user_id for row in tasks_or_assignments)

    def can_mutate(self, entity: Tender | Rfq, principal: Principal) -> bool:
        return entity.created_by == principal.user_id

    def can_handle_file(self, task: TenderTask, tender: Tender, principal: Principal) -> bool:
        return principal.user_id in (tender.created_by, task.assignee_id)

    def visible_tasks(self, tender: Tender, principal: Principal, tasks: Iterable[TenderTask]) -> list[TenderTask]:
        if tender.created_by == principal.user_id:
            return list(tasks)
        return [task for task in tasks if task.assignee_id == principal.user_id]

    def require_view(
        self,
        entity: Tender | Rfq,
        principal: Principal,
        tasks_or_assignments: Iterable[TenderTask | RfqAssignment] = (),
    ) -> None:
        if not self.can_view(entity, principal, tasks_or_assignments):
            raise _forbidden("view", entity, principal)

    def require_mutate(self, entity: Tender | Rfq, principal: Principal) -> None:
        if not self.can_mutate(entity, principal):
            raise _forbidden("mutate", entity, principal)

    def require_file_access(self, task: TenderTask, tender: Tender, principal: Principal) -> None:
        if not self.can_handle_file(task, tender, principal):
            raise _forbidden("file", task, principal)


def _forbidden(action: str, entity, principal: Principal) -> ForbiddenError:
    return ForbiddenError(details=f"{principal.user_id} may not {action} {type(entity).__name__} {entity.id}")
