"""Tests for schema creation and the migration runner."""
from __future__ import annotations

from unittest.mock import patch

import pytest
from sqlalchemy import create_engine, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from mission_control.db import MIGRATIONS_DIR, applied_migrations, migration_files, run_migrations
from mission_control.models import (
    ActionItem,
    Contact,
    Interaction,
    KanbanTask,
    Partner,
    SchemaMigration,
)


@pytest.fixture()
def engine():
    return create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


class TestRunMigrations:
    def test_creates_tables(self, engine):
        assert run_migrations(engine) == []
        tables = set(inspect(engine).get_table_names())
        assert {
            "crm_partners", "crm_contacts", "crm_interactions", "crm_action_items",
            "planning_goals", "planning_weeks", "planning_daily", "schema_migrations",
            "kanban_boards", "kanban_tasks", "documents", "bible_update_requests",
        } <= tables

    def test_idempotent(self, engine):
        run_migrations(engine)
        run_migrations(engine)
        assert "crm_partners" in inspect(engine).get_table_names()

    def test_partner_columns(self, engine):
        run_migrations(engine)
        columns = {c["name"] for c in inspect(engine).get_columns("crm_partners")}
        assert {
            "pipeline_status", "last_contact_at", "health_score", "total_medallions_ordered",
            "latitude", "longitude", "created_at", "updated_at",
        } <= columns

    def test_model_defaults(self, engine):
        run_migrations(engine)
        with Session(engine) as session:
            partner = Partner(name="Acme Monuments")
            session.add(partner)
            session.flush()
            session.add_all([
                Contact(partner_id=partner.id, name="Pat"),
                Interaction(partner_id=partner.id, type="call", summary="Intro call"),
                ActionItem(partner_id=partner.id, title="Send samples"),
            ])
            session.commit()

            stored = session.execute(select(Partner)).scalars().one()
            assert stored.pipeline_status == "prospect"
            assert stored.partner_type == "monument_company"
            assert stored.total_medallions_ordered == 0
            assert stored.contacts[0].preferred_contact_method == "email"
            assert stored.action_items[0].status == "pending"
            assert stored.action_items[0].priority == "medium"

    def test_kanban_task_defaults(self, engine):
        run_migrations(engine)
        with Session(engine) as session:
            session.add(KanbanTask(title="Ship it", board="ops"))
            session.commit()
            task = session.execute(select(KanbanTask)).scalars().one()
            assert (task.status, task.priority, task.archived) == ("backlog", "medium", False)


class TestSqlFiles:
    def test_files_ordered(self):
        names = [p.name for p in migration_files()]
        assert names == sorted(names)
        assert names[0].startswith("001_")

    def test_files_cover_every_crm_table(self):
        sql = "\n".join(p.read_text() for p in MIGRATIONS_DIR.glob("*.sql"))
        tables = (
            "crm_partners", "crm_contacts", "crm_interactions", "crm_action_items",
            "kanban_tasks", "documents",
        )
        for table in tables:
            assert f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY" in sql

    def test_applies_pending_once_on_postgres(self, engine, tmp_path):
        (tmp_path / "001_first.sql").write_text("SELECT 1;")
        (tmp_path / "002_second.sql").write_text("SELECT 2;")
        with patch.object(engine.dialect, "name", "postgresql"):
            first = run_migrations(engine, tmp_path)
            second = run_migrations(engine, tmp_path)
        assert first == ["001_first.sql", "002_second.sql"]
        assert second == []
        assert applied_migrations(engine) == {"001_first.sql", "002_second.sql"}
        with Session(engine) as session:
            assert len(session.execute(select(SchemaMigration)).scalars().all()) == 2
