"""
Audit recorder tests.

Covers:
  - record(): persisted fields, unknown action, best-effort failure
  - immutability of stored entries
  - query_logs filters + pagination, tenant isolation
  - activity_summary buckets and critical counts
  - entity_trail, search_logs
  - cleanup_old_logs retention job
"""

from datetime import datetime, timedelta, timezone

import pytest

from orgadmin.models import db
from orgadmin.models.audit import AdminAuditLog
from orgadmin.services import audit_service


def _log(company, action="admin_modified", actor="E1", target="S1", **kw):
    entry = audit_service.record(
        company_id=company.id,
        action_type=action,
        actor_id=actor,
        target_id=target,
        target_type="administrator",
        **kw,
    )
    db.session.commit()
    return entry


class TestRecord:

    def test_record_persists_entry(self, company):
        entry = _log(
            company, "admin_created",
            changes={"name": {"old": None, "new": "Sam"}},
            metadata={"source": "test"},
            ip_address="10.0.0.1",
        )
        stored = db.session.get(AdminAuditLog, entry.id)
        assert stored.action_type == "admin_created"
        assert stored.changes == {"name": {"old": None, "new": "Sam"}}
        assert stored.to_dict()["metadata"] == {"source": "test"}
        assert stored.ip_address == "10.0.0.1"
        assert stored.is_critical is True

    def test_missing_actor_becomes_system(self, company):
        entry = _log(company, actor=None)
        assert entry.actor_id == "system"

    def test_unknown_action_is_skipped(self, company):
        assert audit_service.record(
            company_id=company.id, action_type="admin_teleported", actor_id="E1"
        ) is None
        assert AdminAuditLog.query.count() == 0

    def test_write_failure_never_raises(self, company, monkeypatch, caplog):
        def _boom(**kwargs):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(audit_service, "_build_entry", _boom)
        with caplog.at_level("ERROR"):
            result = audit_service.record(
                company_id=company.id, action_type="admin_created", actor_id="E1"
            )
        assert result is None
        assert "Audit write failed" in caplog.text

    def test_entries_are_immutable(self, company):
        entry = _log(company)
        entry.action_type = "admin_deleted"
        with pytest.raises(RuntimeError):
            db.session.flush()
        db.session.rollback()

        stored = db.session.get(AdminAuditLog, entry.id)
        db.session.delete(stored)
        with pytest.raises(RuntimeError):
            db.session.flush()
        db.session.rollback()

    def test_critical_set(self):
        assert audit_service.is_critical_action("hierarchy_changed") is True
        assert audit_service.is_critical_action("admin_modified") is False
        assert audit_service.is_critical_action("scope_assigned") is False


class TestQuery:

    def test_filters(self, company):
        _log(company, "admin_created", actor="E1", target="S1")
        _log(company, "admin_modified", actor="E1", target="S2")
        _log(company, "admin_modified", actor="SUB1", target="S1")

        assert audit_service.query_logs(company.id)["total"] == 3
        assert audit_service.query_logs(company.id, actor_id="SUB1")["total"] == 1
        assert audit_service.query_logs(company.id, target_id="S1")["total"] == 2
        by_type = audit_service.query_logs(company.id, action_type="admin_modified")
        assert {log["target_id"] for log in by_type["logs"]} == {"S1", "S2"}

    def test_date_range(self, company):
        now = datetime.now(timezone.utc)
        _log(company, created_at=now - timedelta(days=10))
        _log(company, created_at=now - timedelta(days=1))
        result = audit_service.query_logs(company.id, date_from=now - timedelta(days=2))
        assert result["total"] == 1
        result = audit_service.query_logs(company.id, date_to=now - timedelta(days=5))
        assert result["total"] == 1

    def test_pagination_newest_first(self, company):
        now = datetime.now(timezone.utc)
        for i in range(5):
            _log(company, target=f"T{i}", created_at=now - timedelta(minutes=10 - i))
        page = audit_service.query_logs(company.id, page=1, per_page=2)
        assert page["total"] == 5
        assert page["pages"] == 3
        assert [log["target_id"] for log in page["logs"]] == ["T4", "T3"]

    def test_tenant_isolation(self, company, other_company):
        _log(company)
        _log(other_company)
        assert audit_service.query_logs(company.id)["total"] == 1


class TestSummary:

    def test_buckets_and_critical(self, company):
        now = datetime(2026, 10, 18, 15, 0, tzinfo=timezone.utc)
        _log(company, "admin_created", created_at=now - timedelta(hours=2))
        _log(company, "admin_modified", created_at=now - timedelta(days=3))
        _log(company, "permission_granted", actor="SUB1", created_at=now - timedelta(days=20))
        _log(company, "admin_deleted", created_at=now - timedelta(days=60))

        summary = audit_service.activity_summary(company.id, now=now)
        assert summary["today"] == 1
        assert summary["week"] == 2
        assert summary["month"] == 3
        assert summary["critical_actions"] == 1
        assert summary["total_actions"] == 4
        assert summary["actions_by_type"]["admin_modified"] == 1
        assert summary["most_active_users"][0] == {"user_id": "E1", "action_count": 3}
        assert len(summary["recent_critical_actions"]) == 3


class TestTrailSearchCleanup:

    def test_entity_trail(self, company):
        _log(company, target="S1")
        _log(company, target="S2")
        _log(company, "hierarchy_changed", target="S1")
        trail = audit_service.entity_trail("S1", "administrator")
        assert [t["action_type"] for t in trail] == ["hierarchy_changed", "admin_modified"]

    def test_search(self, company):
        _log(company, changes={"email": {"old": "a@example.com", "new": "sam@northwind.example"}})
        _log(company, changes={"name": {"old": "Bo", "new": "Bob"}})
        hits = audit_service.search_logs(company.id, "NORTHWIND")
        assert len(hits) == 1

    def test_cleanup_old_logs(self, company):
        now = datetime.now(timezone.utc)
        _log(company, created_at=now - timedelta(days=400))
        _log(company, created_at=now - timedelta(days=10))
        assert audit_service.cleanup_old_logs(365, now=now) == 1
        assert AdminAuditLog.query.count() == 1

    def test_cleanup_rejects_zero_retention(self):
        with pytest.raises(ValueError):
            audit_service.cleanup_old_logs(0)
