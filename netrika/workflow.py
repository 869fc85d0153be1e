"""
Moderation workflow: propose, approve, deny and direct admin updates.

Every entry point takes the caller's ``Actor`` explicitly and returns a
``WorkflowResult``; expected failures never escape as exceptions. Approval runs
the entity write, the ledger transition and the revision append inside one
transaction, in that order, so a lost race on the ledger's conditional update
rolls the entity write back.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from netrika import ledger, revisions
from netrika.db import readonly_session_scope, session_scope
from netrika.edit_diffs import field_diff
from netrika.entity_registry import ENTITY_TYPE_POLITICIAN, EntityHandler, get_handler
from netrika.errors import (
    InvalidTransitionError,
    MissingAttributionError,
    MissingDataError,
    NotFoundError,
    PersistenceError,
    WorkflowError,
    WorkflowResult,
)
from netrika.identity import Actor, require_authenticated, require_moderator
from netrika.media_assets import resolve_asset_url
from netrika.op_timing import timed_operation

logger = logging.getLogger(__name__)

POLICY_ROLLBACK = "rollback"
POLICY_FLAG = "flag"
AUDIT_GAP_KIND = "PersistenceError"
_DEFAULT_PAGE_SIZE = 15


def _parse_page_size(raw_value: str | None, default: int = _DEFAULT_PAGE_SIZE) -> int:
    try:
        return max(1, int(raw_value or default))
    except (TypeError, ValueError):
        return default


def _parse_policy(raw_value: str | None) -> str:
    normalized = str(raw_value or "").strip().lower()
    if normalized == POLICY_FLAG:
        return POLICY_FLAG
    if normalized and normalized != POLICY_ROLLBACK:
        logger.warning("Unknown NETRIKA_REVISION_FAILURE_POLICY=%s; using rollback", raw_value)
    return POLICY_ROLLBACK


PENDING_PAGE_SIZE = _parse_page_size(os.getenv("NETRIKA_PENDING_PAGE_SIZE"))
REVISION_FAILURE_POLICY = _parse_policy(os.getenv("NETRIKA_REVISION_FAILURE_POLICY"))


def _entity_key(entity_type: str) -> str:
    return f"{entity_type.strip().lower()}_id"


def _run(operation: str, action: Callable[[], WorkflowResult]) -> WorkflowResult:
    try:
        return action()
    except WorkflowError as exc:
        logger.warning("workflow.%s failed kind=%s: %s", operation, exc.kind, exc.message)
        return WorkflowResult.failure(exc)
    except (OperationalError, InterfaceError):
        # Connectivity faults are retryable; let the caller decide.
        raise
    except SQLAlchemyError as exc:
        logger.exception("workflow.%s rejected by the store: %s", operation, exc)
        return WorkflowResult.failure(
            PersistenceError(f"The database rejected the {operation.replace('_', ' ')} request.")
        )


def _coerce_id(value: object, label: str) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise NotFoundError(f"{label} {value!r} not found.") from None


def _load_edit(session: Session, edit_id: int, *, strict: bool = True) -> ledger.PendingEdit:
    edit = ledger.get_edit(session, edit_id, strict=strict)
    if edit is None:
        raise NotFoundError(f"Pending edit with ID {edit_id} not found.")
    return edit


def _require_pending(edit: ledger.PendingEdit) -> None:
    if not edit.is_pending:
        raise InvalidTransitionError(f"Edit {edit.id} is not in 'Pending' status (currently `{edit.status}`).")


def _append_revision(session: Session, *, policy: str, **fields: Any) -> Optional[int]:
    """
    Append the audit revision for an accepted change.
    Returns None only under the flag policy, when the append failed and the change was kept.
    """
    if policy != POLICY_FLAG:
        try:
            return revisions.append(session, **fields)
        except (OperationalError, InterfaceError):
            raise
        except SQLAlchemyError as exc:
            logger.error(
                "Revision append failed for %s %s; rolling back the change: %s",
                fields.get("entity_type"),
                fields.get("entity_id"),
                exc,
            )
            raise PersistenceError(
                f"Failed to record the revision for {fields.get('entity_type')} {fields.get('entity_id')}; "
                "the change was rolled back."
            ) from exc

    try:
        with session.begin_nested():
            return revisions.append(session, **fields)
    except (OperationalError, InterfaceError):
        raise
    except SQLAlchemyError as exc:
        logger.error(
            "Revision append failed for %s %s; keeping the change with an audit-trail gap: %s",
            fields.get("entity_type"),
            fields.get("entity_id"),
            exc,
        )
        return None


def _validated_proposal(handler: EntityHandler, entity_id: Optional[int], data: Mapping[str, Any]) -> Dict[str, Any]:
    if entity_id is None:
        return handler.validate_new(data)
    return handler.validate_patch(data)


# --------------------------------------------------------------------------- proposals


@timed_operation("propose")
def propose(
    entity_type: str,
    entity_id: Optional[int],
    proposed_data: Mapping[str, Any] | None,
    change_reason: Optional[str],
    actor: Actor | None,
) -> WorkflowResult:
    """
    Record a proposed change as a Pending edit.

    ``entity_id=None`` proposes a brand-new entity and ``proposed_data`` must be
    a full record; otherwise ``proposed_data`` is a partial delta for the target.
    Non-moderators must explain the change.
    """

    def _action() -> WorkflowResult:
        proposer = require_authenticated(actor)
        handler = get_handler(entity_type)
        reason = (change_reason or "").strip()
        if not reason and not proposer.is_moderator:
            raise MissingDataError("A change reason is required.")
        target_id = _coerce_id(entity_id, handler.entity_type) if entity_id is not None else None
        validated = _validated_proposal(handler, target_id, proposed_data or {})

        with session_scope() as session:
            if target_id is not None and not handler.exists(session, target_id):
                raise NotFoundError(f"{handler.entity_type} {target_id} not found.")
            edit = ledger.propose(
                session,
                entity_type=handler.entity_type,
                entity_id=target_id,
                proposed_data=validated,
                change_reason=reason or None,
                proposer_id=proposer.id,
            )
        message = (
            "Edit proposal submitted successfully."
            if entity_id is not None
            else f"New {handler.entity_type.lower()} submitted for review."
        )
        return WorkflowResult.success(message, edit_id=edit.id, edit=edit.as_dict())

    return _run("propose", _action)


def propose_new_entity(
    entity_type: str,
    proposed_data: Mapping[str, Any] | None,
    change_reason: Optional[str],
    actor: Actor | None,
) -> WorkflowResult:
    return propose(entity_type, None, proposed_data, change_reason, actor)


def propose_field_edit(
    entity_type: str,
    entity_id: int,
    field_name: str,
    new_value: Any,
    change_reason: Optional[str],
    actor: Actor | None,
) -> WorkflowResult:
    field = (field_name or "").strip()
    if not field:
        return WorkflowResult.failure(MissingDataError("A field name is required."))
    return propose(entity_type, entity_id, {field: new_value}, change_reason, actor)


# --------------------------------------------------------------------------- resolution


def _approve(edit_id: int, actor: Actor | None, *, expect_new: Optional[bool]) -> WorkflowResult:
    moderator = require_moderator(actor)
    policy = REVISION_FAILURE_POLICY
    edit_id = _coerce_id(edit_id, "Pending edit with ID")

    with session_scope() as session:
        edit = _load_edit(session, edit_id)
        handler = get_handler(edit.entity_type)
        _require_pending(edit)
        if not edit.proposed_data:
            raise MissingDataError(f"Edit {edit_id} has no proposed data.")
        if not (edit.proposer_id or "").strip():
            raise MissingAttributionError(
                f"Proposer ID is missing for edit {edit_id}. Cannot create revision."
            )
        if expect_new is True and not edit.is_new_entity:
            raise InvalidTransitionError(
                f"Edit {edit_id} changes {handler.entity_type} {edit.entity_id}; approve it as a field edit."
            )
        if expect_new is False and edit.is_new_entity:
            raise InvalidTransitionError(
                f"Edit {edit_id} proposes a new {handler.entity_type.lower()}; approve it as a new entity."
            )

        if edit.is_new_entity:
            values = handler.validate_new(edit.proposed_data)
            entity_id = handler.create(session, values)
        else:
            values = handler.validate_patch(edit.proposed_data)
            entity_id = int(edit.entity_id)
            handler.patch(session, entity_id, values)

        ledger.mark_approved(
            session,
            edit_id=edit.id,
            moderator_id=moderator.id,
            resolved_entity_id=entity_id,
        )
        revision_id = _append_revision(
            session,
            policy=policy,
            entity_type=handler.entity_type,
            entity_id=entity_id,
            data=values,
            submitter_id=edit.proposer_id,
            approver_id=moderator.id,
            edit_id=edit.id,
            change_reason=edit.change_reason,
        )

    data = {
        "edit_id": edit.id,
        "entity_id": entity_id,
        _entity_key(handler.entity_type): entity_id,
        "revision_id": revision_id,
        "created": edit.is_new_entity,
    }
    if edit.is_new_entity:
        message = (
            f"{handler.entity_type} approved and created successfully. "
            f"New {handler.entity_type} ID: {entity_id}."
        )
    else:
        message = f"Edit {edit.id} approved and applied to {handler.entity_type} {entity_id}."

    if revision_id is None:
        return WorkflowResult.partial(
            f"{message} The revision record could not be written; the audit trail has a gap.",
            kind=AUDIT_GAP_KIND,
            **data,
        )
    logger.info("Edit #%s approved by %s -> %s %s", edit.id, moderator.id, handler.entity_type, entity_id)
    return WorkflowResult.success(message, **data)


@timed_operation("approve")
def approve(edit_id: int, actor: Actor | None) -> WorkflowResult:
    """Approve a pending edit, creating or patching the entity it targets."""
    return _run("approve", lambda: _approve(edit_id, actor, expect_new=None))


@timed_operation("approve_new_entity")
def approve_new_entity(edit_id: int, actor: Actor | None) -> WorkflowResult:
    return _run("approve_new_entity", lambda: _approve(edit_id, actor, expect_new=True))


@timed_operation("approve_field_edit")
def approve_field_edit(edit_id: int, actor: Actor | None) -> WorkflowResult:
    return _run("approve_field_edit", lambda: _approve(edit_id, actor, expect_new=False))


@timed_operation("deny")
def deny(edit_id: int, actor: Actor | None, reason: Optional[str] = None) -> WorkflowResult:
    """Deny a pending edit. Nothing is written to the entity or the revision log."""

    def _action() -> WorkflowResult:
        moderator = require_moderator(actor)
        feedback = (reason or "").strip() or ledger.DEFAULT_DENIAL_REASON
        target_id = _coerce_id(edit_id, "Pending edit with ID")
        with session_scope() as session:
            edit = _load_edit(session, target_id, strict=False)
            handler = get_handler(edit.entity_type)
            _require_pending(edit)
            ledger.mark_denied(session, edit_id=edit.id, moderator_id=moderator.id, reason=feedback)
        logger.info("Edit #%s denied by %s", target_id, moderator.id)
        return WorkflowResult.success(
            f"{handler.entity_type} contribution request (Edit ID: {target_id}) has been denied.",
            edit_id=target_id,
            admin_feedback=feedback,
        )

    return _run("deny", _action)


# --------------------------------------------------------------------------- direct edits


@timed_operation("direct_admin_update")
def direct_admin_update(
    entity_id: int,
    field_name: str,
    new_value: Any,
    actor: Actor | None,
    change_reason: Optional[str] = None,
    *,
    entity_type: str = ENTITY_TYPE_POLITICIAN,
) -> WorkflowResult:
    """
    Apply a single-field change without going through the ledger.
    The change still gets a revision, attributed to the admin as submitter and approver.
    """

    def _action() -> WorkflowResult:
        admin = require_moderator(actor)
        handler = get_handler(entity_type)
        target_id = _coerce_id(entity_id, handler.entity_type)
        field = (field_name or "").strip()
        if not field:
            raise MissingDataError("A field name is required.")
        values = handler.validate_patch({field: new_value})

        with session_scope() as session:
            handler.patch(session, target_id, values)
            revision_id = _append_revision(
                session,
                policy=REVISION_FAILURE_POLICY,
                entity_type=handler.entity_type,
                entity_id=target_id,
                data=values,
                submitter_id=admin.id,
                approver_id=admin.id,
                edit_id=None,
                change_reason=(change_reason or "").strip() or revisions.DIRECT_UPDATE_REASON,
            )
            entity = handler.fetch(session, target_id)

        message = f"{handler.entity_type} field '{field}' updated successfully by admin."
        data = {"entity_id": target_id, "entity": entity, "revision_id": revision_id}
        if revision_id is None:
            return WorkflowResult.partial(
                f"{message} The revision record could not be written; the audit trail has a gap.",
                kind=AUDIT_GAP_KIND,
                **data,
            )
        return WorkflowResult.success(message, **data)

    return _run("direct_admin_update", _action)


# --------------------------------------------------------------------------- reads


@timed_operation("list_pending")
def list_pending(
    actor: Actor | None,
    *,
    entity_type: Optional[str] = None,
    page: int = 1,
    page_size: Optional[int] = None,
) -> WorkflowResult:
    def _action() -> WorkflowResult:
        require_moderator(actor)
        type_filter = get_handler(entity_type).entity_type if entity_type else None
        with readonly_session_scope() as session:
            result = ledger.list_pending(
                session,
                entity_type=type_filter,
                page=page,
                page_size=page_size or PENDING_PAGE_SIZE,
            )
        return WorkflowResult.success(
            f"{result.total} pending edit(s).",
            edits=[edit.as_dict() for edit in result.edits],
            total=result.total,
            page=result.page,
            page_size=result.page_size,
            page_count=result.page_count,
        )

    return _run("list_pending", _action)


@timed_operation("get_edit_review")
def get_edit_review(edit_id: int, actor: Actor | None) -> WorkflowResult:
    """
    One edit with a per-field comparison against the entity as it is now.
    Resolved edits are returned too; their diff is against the current record.
    """

    def _action() -> WorkflowResult:
        require_moderator(actor)
        target_id = _coerce_id(edit_id, "Pending edit with ID")
        with readonly_session_scope() as session:
            edit = _load_edit(session, target_id, strict=False)
            handler = get_handler(edit.entity_type)
            current = None if edit.is_new_entity else handler.fetch(session, int(edit.entity_id))
        return WorkflowResult.success(
            f"Edit {edit.id} ({edit.status}).",
            edit=edit.as_dict(),
            current=current,
            diff=field_diff(current, edit.proposed_data),
            payload_error=edit.payload_error,
        )

    return _run("get_edit_review", _action)


@timed_operation("list_entity_proposals")
def list_entity_proposals(entity_type: str, entity_id: int, actor: Actor | None) -> WorkflowResult:
    """Every proposal made against one entity, any status, newest first."""

    def _action() -> WorkflowResult:
        require_moderator(actor)
        handler = get_handler(entity_type)
        target_id = _coerce_id(entity_id, handler.entity_type)
        with readonly_session_scope() as session:
            edits = ledger.list_for_entity(session, entity_type=handler.entity_type, entity_id=target_id)
        return WorkflowResult.success(
            f"{len(edits)} proposal(s) for {handler.entity_type} {target_id}.",
            edits=[edit.as_dict() for edit in edits],
        )

    return _run("list_entity_proposals", _action)


@timed_operation("list_revisions")
def list_revisions(entity_type: str, entity_id: int) -> WorkflowResult:
    """Edit history is public, like the entity it describes."""

    def _action() -> WorkflowResult:
        handler = get_handler(entity_type)
        target_id = _coerce_id(entity_id, handler.entity_type)
        with readonly_session_scope() as session:
            history = revisions.list_for_entity(
                session, entity_type=handler.entity_type, entity_id=target_id
            )
        return WorkflowResult.success(
            f"{len(history)} revision(s).",
            revisions=[revision.as_dict() for revision in history],
        )

    return _run("list_revisions", _action)


@timed_operation("get_entity")
def get_entity(entity_type: str, entity_id: int) -> WorkflowResult:
    def _action() -> WorkflowResult:
        handler = get_handler(entity_type)
        target_id = _coerce_id(entity_id, handler.entity_type)
        with readonly_session_scope() as session:
            entity = handler.fetch(session, target_id)
            if entity is not None and "photo_asset_id" in entity:
                entity["photo_url"] = resolve_asset_url(session, entity.get("photo_asset_id"))
        if entity is None:
            raise NotFoundError(f"{handler.entity_type} {target_id} not found.")
        return WorkflowResult.success(f"{handler.entity_type} {target_id}.", entity=entity)

    return _run("get_entity", _action)


@timed_operation("list_contributions")
def list_contributions(actor: Actor | None) -> WorkflowResult:
    """The caller's own proposals, any status, newest first."""

    def _action() -> WorkflowResult:
        proposer = require_authenticated(actor)
        with readonly_session_scope() as session:
            edits = ledger.list_by_proposer(session, proposer.id)
        return WorkflowResult.success(
            f"{len(edits)} contribution(s).",
            edits=[edit.as_dict() for edit in edits],
        )

    return _run("list_contributions", _action)
