"""
Workflow engine.

Pure functions that validate a transition request against the transition
tables and return the resulting snapshot plus the intents it produced. Nothing
here performs I/O or mutates the entity it was handed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from core.exceptions import Forbidden, InvalidPayload, InvalidTransition
from core.utils.datetime import now as utc_now
from workflow.models import (
    Application,
    Job,
    Note,
    QuestionSet,
    QuestionSetKind,
    StatusChange,
    WorkflowEntity,
)
from workflow.status import (
    ApplicationStatus,
    EntityType,
    Role,
    Status,
    parse_role,
    parse_status,
)
from workflow.transitions import (
    QUESTION_SET_RULES,
    TRANSITION_TABLES,
    available_transitions,
    TransitionContext,
    TransitionPayload,
    TransitionRule,
)

logger = logging.getLogger(__name__)

PayloadInput = Union[TransitionPayload, dict[str, Any], None]


@dataclass
class TransitionResult:
    entity: WorkflowEntity
    previous_state: Status
    new_state: Status
    transitions: list[str] = field(default_factory=list)
    side_effects: list[Any] = field(default_factory=list)


def validation_details(exc: ValidationError) -> list[dict[str, Any]]:
    """Reduce pydantic errors to location and message pairs."""
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


def coerce_payload(payload: PayloadInput) -> TransitionPayload:
    if payload is None:
        return TransitionPayload()
    if isinstance(payload, TransitionPayload):
        return payload
    try:
        return TransitionPayload.model_validate(payload)
    except ValidationError as e:
        raise InvalidPayload(
            "Invalid transition payload", errors=validation_details(e)
        ) from e


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def resolve_transition(
    entity_type: Union[EntityType, str],
    current_state: Any,
    actor_role: Union[Role, str],
    transition: str,
    payload: PayloadInput = None,
) -> TransitionRule:
    """
    Validate a transition request and return the matching rule.

    Args:
        entity_type: Kind of entity being moved
        current_state: Its current status, raw or parsed
        actor_role: Role of the acting user
        transition: Name of the requested edge
        payload: Data carried by the request

    Returns:
        The transition rule to apply

    Raises:
        UnknownState: current_state is outside the vocabulary
        InvalidTransition: no such edge out of current_state
        Forbidden: the role may not take the edge
        InvalidPayload: a required field is missing or the payload is invalid
    """
    entity_type = EntityType(entity_type)
    state = parse_status(entity_type, current_state)
    role = parse_role(actor_role)
    payload = coerce_payload(payload)

    edges = TRANSITION_TABLES[entity_type].get(state, {})
    rule = edges.get(transition)
    if rule is None:
        raise InvalidTransition(
            f"Cannot {transition} a {entity_type.value} in state {state.value}",
            entity_type=entity_type.value,
            state=state.value,
            transition=transition,
            available=available_transitions(entity_type, state),
        )

    if role not in rule.allowed_roles:
        raise Forbidden(
            f"Role {role.value} may not {transition} a {entity_type.value}",
            role=role.value,
            transition=transition,
            allowed_roles=sorted(r.value for r in rule.allowed_roles),
        )

    missing = [name for name in rule.required_fields if _is_missing(getattr(payload, name))]
    if missing:
        raise InvalidPayload(
            f"{transition} requires: {', '.join(missing)}",
            transition=transition,
            missing=missing,
        )

    return rule


def _take_edge(
    entity: WorkflowEntity,
    rule: TransitionRule,
    payload: TransitionPayload,
    ctx: TransitionContext,
) -> tuple[WorkflowEntity, list[Any]]:
    for guard in rule.guards:
        guard(entity, payload)

    updates: dict[str, Any] = {"status": rule.to_state}
    if rule.mutate is not None:
        updates.update(rule.mutate(entity, payload, ctx))

    for stamp in ("updated_at", "last_updated_at"):
        if stamp in type(entity).model_fields:
            updates[stamp] = ctx.at

    change = StatusChange(
        from_status=entity.status.value,
        to_status=rule.to_state.value,
        transition=rule.name,
        actor_role=ctx.actor_role,
        actor_id=ctx.actor_id,
        at=ctx.at,
        feedback=payload.feedback or payload.reason,
    )
    updates["history"] = [*entity.history, change]

    updated = entity.model_copy(update=updates)
    intents = [
        intent
        for intent in (template(updated, payload, ctx) for template in rule.effects)
        if intent is not None
    ]
    return updated, intents


def apply_transition(
    entity: WorkflowEntity,
    actor_role: Union[Role, str],
    transition: str,
    payload: PayloadInput = None,
    *,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """
    Move an entity along a named edge.

    Chained edges are taken as ``system`` straight after the requested one, and
    their intents are appended in order.
    """
    role = parse_role(actor_role)
    payload = coerce_payload(payload)
    at = now or utc_now()

    result = TransitionResult(
        entity=entity, previous_state=entity.status, new_state=entity.status
    )
    current = entity
    name: Optional[str] = transition
    ctx = TransitionContext(actor_role=role, actor_id=actor_id, at=at)
    while name is not None:
        rule = resolve_transition(
            current.entity_type, current.status, ctx.actor_role, name, payload
        )
        current, intents = _take_edge(current, rule, payload, ctx)
        result.transitions.append(rule.name)
        result.side_effects.extend(intents)

        name = rule.chain
        ctx = TransitionContext(actor_role=Role.SYSTEM, actor_id=None, at=at)
        payload = TransitionPayload()

    result.entity = current
    result.new_state = current.status
    logger.info(
        f"{current.entity_type.value} {current.id}: "
        f"{result.previous_state.value} -> {result.new_state.value} "
        f"via {'+'.join(result.transitions)} by {role.value}"
    )
    return result


def append_note(
    application: Application,
    note: str,
    author_role: Union[Role, str],
    author_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Application:
    """Append a note. Allowed in every state, terminal ones included."""
    role = parse_role(author_role)
    if _is_missing(note):
        raise InvalidPayload("Note text is required", missing=["note"])
    at = now or utc_now()
    entry = Note(text=note.strip(), author_role=role, author_id=author_id, created_at=at)
    return application.model_copy(
        update={"notes": [*application.notes, entry], "last_updated_at": at}
    )


def attach_question_set(
    job: Job,
    actor_role: Union[Role, str],
    kind: Union[QuestionSetKind, str],
    question_set: Union[QuestionSet, dict[str, Any]],
    *,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Job:
    """
    Attach or replace the technical or HR question set of a job.

    Raises:
        InvalidPayload: unknown kind or malformed question set
        InvalidTransition: the job is not in an editable state for that kind
        Forbidden: the role does not own that kind of question set
    """
    role = parse_role(actor_role)
    try:
        parsed_kind = QuestionSetKind(kind.strip().lower())
    except (AttributeError, ValueError) as e:
        raise InvalidPayload(f"Unknown question set kind: {kind!r}") from e

    if not isinstance(question_set, QuestionSet):
        try:
            question_set = QuestionSet.model_validate(question_set)
        except ValidationError as e:
            raise InvalidPayload(
                "Invalid question set", errors=validation_details(e)
            ) from e

    rule = QUESTION_SET_RULES[parsed_kind]
    if job.status not in rule.editable_in:
        raise InvalidTransition(
            f"Cannot edit {parsed_kind.value} questions of a job in state {job.status.value}",
            state=job.status.value,
            kind=parsed_kind.value,
        )
    if role != rule.role:
        raise Forbidden(
            f"Role {role.value} may not edit {parsed_kind.value} questions",
            role=role.value,
            kind=parsed_kind.value,
        )

    at = now or utc_now()
    attached = question_set.model_copy(update={"updated_by": actor_id, "updated_at": at})
    field_name = (
        "technical_questions"
        if parsed_kind is QuestionSetKind.TECHNICAL
        else "hr_questions"
    )
    return job.model_copy(update={field_name: attached, "updated_at": at})


def assert_deletable(job: Job, applications: Iterable[Application]) -> None:
    """Refuse hard deletion while the job still has live applications."""
    live = [
        application.id
        for application in applications
        if application.job_id == job.id
        and application.status != ApplicationStatus.WITHDRAWN
    ]
    if live:
        raise Forbidden(
            "Job has applications and can only be closed",
            job_id=job.id,
            application_count=len(live),
        )
