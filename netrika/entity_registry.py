from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from netrika import entity_store
from netrika.errors import MissingDataError, UnsupportedEntityTypeError
from netrika.politician_payloads import PoliticianPatch, PoliticianProposal

ENTITY_TYPE_POLITICIAN = "Politician"

Payload = Dict[str, Any]


@dataclass(frozen=True)
class EntityHandler:
    entity_type: str
    validate_new: Callable[[Mapping[str, Any]], Payload]
    validate_patch: Callable[[Mapping[str, Any]], Payload]
    create: Callable[[Session, Payload], int]
    patch: Callable[[Session, int, Payload], None]
    fetch: Callable[[Session, int], Optional[Payload]]
    exists: Callable[[Session, int], bool]


_HANDLERS: Dict[str, EntityHandler] = {}


def register_handler(handler: EntityHandler) -> None:
    _HANDLERS[handler.entity_type] = handler


def registered_entity_types() -> tuple[str, ...]:
    return tuple(sorted(_HANDLERS))


def get_handler(entity_type: object) -> EntityHandler:
    tag = str(entity_type or "").strip()
    handler = _HANDLERS.get(tag)
    if handler is None:
        raise UnsupportedEntityTypeError(f"Entity type `{tag or 'unknown'}` has no registered handler.")
    return handler


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "payload"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def _require_mapping(data: object) -> Mapping[str, Any]:
    if not isinstance(data, Mapping) or not data:
        raise MissingDataError("Proposed data is empty.")
    return data


def _validate_new_politician(data: Mapping[str, Any]) -> Payload:
    # The store assigns identifiers; a client-supplied id is dropped.
    payload = {key: value for key, value in _require_mapping(data).items() if key != "id"}
    try:
        return PoliticianProposal.model_validate(payload).model_dump(mode="json")
    except ValidationError as exc:
        raise MissingDataError(f"Invalid politician data: {_format_validation_error(exc)}") from exc


def _validate_politician_patch(data: Mapping[str, Any]) -> Payload:
    payload = {key: value for key, value in _require_mapping(data).items() if key != "id"}
    if not payload:
        raise MissingDataError("Proposed data is empty.")
    try:
        patch = PoliticianPatch.model_validate(payload)
    except ValidationError as exc:
        raise MissingDataError(f"Invalid politician data: {_format_validation_error(exc)}") from exc
    return patch.model_dump(mode="json", exclude_unset=True)


register_handler(
    EntityHandler(
        entity_type=ENTITY_TYPE_POLITICIAN,
        validate_new=_validate_new_politician,
        validate_patch=_validate_politician_patch,
        create=lambda session, values: entity_store.insert_politician(session, values=values),
        patch=lambda session, entity_id, values: entity_store.patch_politician(
            session, politician_id=entity_id, values=values
        ),
        fetch=entity_store.fetch_politician,
        exists=entity_store.politician_exists,
    )
)
