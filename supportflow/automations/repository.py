"""Persistence for automation rules, message templates and automation logs."""
from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID, uuid4

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from . import schemas
from .triggers import parse_trigger


class AutomationRepository(Protocol):
    def list_rules(self, kind: Optional[str] = None, active_only: bool = True) -> List[schemas.AutomationRule]: ...

    def save_rule(self, payload: schemas.AutomationRuleCreate) -> schemas.AutomationRule: ...

    def get_templates(self, template_ids: Iterable[UUID]) -> Dict[UUID, schemas.Template]: ...

    def save_template(self, payload: schemas.TemplateCreate) -> schemas.Template: ...

    def add_log(self, payload: schemas.AutomationLogCreate) -> schemas.AutomationLog: ...

    def has_log(self, rule_id: UUID, contact_id: UUID, since: Optional[datetime] = None) -> bool: ...


class PostgresAutomationRepository:
    """PostgreSQL implementation of :class:`AutomationRepository`."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    def list_rules(self, kind: Optional[str] = None, active_only: bool = True) -> List[schemas.AutomationRule]:
        clauses: List[str] = []
        params: List[Any] = []
        if active_only:
            clauses.append("active = true")
        if kind:
            clauses.append("trigger->>'type' = %s")
            params.append(kind)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._cursor() as cur:
            cur.execute(f"SELECT * FROM automation_rules {where} ORDER BY created_at, id", params)
            rows = cur.fetchall()
        return [self._row_to_rule(row) for row in rows]

    def save_rule(self, payload: schemas.AutomationRuleCreate) -> schemas.AutomationRule:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO automation_rules (name, trigger, message, template_id, active)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    payload.name,
                    Jsonb(payload.trigger.model_dump(mode="json")),
                    payload.message,
                    payload.template_id,
                    payload.active,
                ),
            )
            row = cur.fetchone()
        return self._row_to_rule(row)

    def get_templates(self, template_ids: Iterable[UUID]) -> Dict[UUID, schemas.Template]:
        ids = list(template_ids)
        if not ids:
            return {}
        with self._cursor() as cur:
            cur.execute("SELECT * FROM message_templates WHERE id = ANY(%s)", (ids,))
            rows = cur.fetchall()
        return {row["id"]: schemas.Template(**row) for row in rows}

    def save_template(self, payload: schemas.TemplateCreate) -> schemas.Template:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO message_templates (name, content, category, active, variables)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (payload.name, payload.content, payload.category, payload.active, payload.variables),
            )
            row = cur.fetchone()
        return schemas.Template(**row)

    def add_log(self, payload: schemas.AutomationLogCreate) -> schemas.AutomationLog:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO automation_logs (rule_id, contact_id, status, message, error, details)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    payload.rule_id,
                    payload.contact_id,
                    payload.status.value,
                    payload.message,
                    payload.error,
                    Jsonb(payload.details),
                ),
            )
            row = cur.fetchone()
        return schemas.AutomationLog(**row)

    def has_log(self, rule_id: UUID, contact_id: UUID, since: Optional[datetime] = None) -> bool:
        query = "SELECT 1 FROM automation_logs WHERE rule_id = %s AND contact_id = %s"
        params: List[Any] = [rule_id, contact_id]
        if since is not None:
            query += " AND created_at >= %s"
            params.append(since)
        with self._cursor() as cur:
            cur.execute(query + " LIMIT 1", params)
            return cur.fetchone() is not None

    def _row_to_rule(self, row: Dict[str, Any]) -> schemas.AutomationRule:
        data = dict(row)
        data["trigger"] = parse_trigger(data.get("trigger") or {})
        return schemas.AutomationRule(**data)


class InMemoryAutomationRepository(AutomationRepository):
    def __init__(self) -> None:
        self._rules: List[schemas.AutomationRule] = []
        self._templates: Dict[UUID, schemas.Template] = {}
        self.logs: List[schemas.AutomationLog] = []

    def list_rules(self, kind: Optional[str] = None, active_only: bool = True) -> List[schemas.AutomationRule]:
        return [
            rule.model_copy()
            for rule in self._rules
            if (not active_only or rule.active) and (kind is None or rule.kind == kind)
        ]

    def save_rule(self, payload: schemas.AutomationRuleCreate) -> schemas.AutomationRule:
        rule = schemas.AutomationRule(
            id=uuid4(), created_at=datetime.now(timezone.utc), **payload.model_dump()
        )
        self._rules.append(rule)
        return rule.model_copy()

    def get_templates(self, template_ids: Iterable[UUID]) -> Dict[UUID, schemas.Template]:
        return {tid: self._templates[tid].model_copy() for tid in template_ids if tid in self._templates}

    def save_template(self, payload: schemas.TemplateCreate) -> schemas.Template:
        template = schemas.Template(
            id=uuid4(), created_at=datetime.now(timezone.utc), **payload.model_dump()
        )
        self._templates[template.id] = template
        return template.model_copy()

    def add_log(self, payload: schemas.AutomationLogCreate) -> schemas.AutomationLog:
        log = schemas.AutomationLog(
            id=uuid4(), created_at=datetime.now(timezone.utc), **payload.model_dump()
        )
        self.logs.append(log)
        return log

    def has_log(self, rule_id: UUID, contact_id: UUID, since: Optional[datetime] = None) -> bool:
        return any(
            log.rule_id == rule_id
            and log.contact_id == contact_id
            and (since is None or log.created_at >= since)
            for log in self.logs
        )
