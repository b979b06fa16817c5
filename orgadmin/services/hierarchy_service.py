"""
Hierarchy Graph Manager — parent/child reporting lines between administrators.

The ``parent_admin_id`` pointer is authoritative. Every change also appends a
HierarchyEdge row (the previous active edge for the child is deactivated) so
the history can be audited or replayed; edges are never read for decisions.

Graph rules:
  - No cycles. A parent assignment that would make the child its own
    ancestor is rejected with CycleError and leaves the pointer untouched.
  - A parent must not rank below its child (entity > sub-entity > school > branch).
  - Parent and child belong to the same company.

Every traversal keeps a visited set, so already-corrupted cyclic data
terminates instead of looping.

Concurrency: mutations lock the company row (SELECT ... FOR UPDATE) before
checking, which serialises reparentings inside one tenant on PostgreSQL.
SQLite ignores the lock clause and serialises writers on its own.
"""

from __future__ import annotations

import logging
from collections import deque

from sqlalchemy import select

from orgadmin.core.exceptions import CycleError, NotFoundError, ValidationError
from orgadmin.models import db
from orgadmin.models.admin import LEVEL_RANK, AdminLevel, Administrator, HierarchyEdge
from orgadmin.models.organisation import Company
from orgadmin.services import audit_service

logger = logging.getLogger(__name__)


def _get_admin(admin_id: str) -> Administrator:
    admin = db.session.get(Administrator, admin_id)
    if admin is None:
        raise NotFoundError(resource="Administrator", resource_id=admin_id)
    return admin


def _lock_company(company_id: int) -> None:
    db.session.execute(
        select(Company.id).where(Company.id == company_id).with_for_update()
    )


def _children_of(parent_ids, include_inactive: bool = True) -> list[Administrator]:
    stmt = select(Administrator).where(Administrator.parent_admin_id.in_(list(parent_ids)))
    if not include_inactive:
        stmt = stmt.where(Administrator.is_active.is_(True))
    return db.session.execute(stmt).scalars().all()


# ═════════════════════════════════════════════════════════════════════════════
# Traversal
# ═════════════════════════════════════════════════════════════════════════════


def descendant_ids(admin_id: str) -> set[str]:
    """Ids of every administrator below *admin_id* (any depth, active or not)."""
    visited: set[str] = {admin_id}
    found: set[str] = set()
    frontier = [admin_id]
    while frontier:
        next_frontier = []
        for child in _children_of(frontier):
            if child.id in visited:
                continue
            visited.add(child.id)
            found.add(child.id)
            next_frontier.append(child.id)
        frontier = next_frontier
    return found


def get_descendants(admin_id: str, include_inactive: bool = False) -> list[dict]:
    """Breadth-first flat list of everyone reporting (directly or not) to *admin_id*."""
    _get_admin(admin_id)
    visited: set[str] = {admin_id}
    result: list[dict] = []
    queue = deque([admin_id])
    while queue:
        current = queue.popleft()
        for child in _children_of([current]):
            if child.id in visited:
                continue
            visited.add(child.id)
            queue.append(child.id)
            if include_inactive or child.is_active:
                result.append(child.to_dict())
    return result


def get_ancestor_chain(admin_id: str) -> list[dict]:
    """Walk parent pointers upward; returns root-to-self order, no id twice."""
    admin = _get_admin(admin_id)
    chain = [admin]
    visited = {admin.id}
    while admin.parent_admin_id and admin.parent_admin_id not in visited:
        parent = db.session.get(Administrator, admin.parent_admin_id)
        if parent is None:
            break
        visited.add(parent.id)
        chain.append(parent)
        admin = parent
    if admin.parent_admin_id in visited:
        logger.error("Cyclic parent pointers detected above admin %s", admin_id)
    chain.reverse()
    return [a.to_dict() for a in chain]


def get_direct_reports(admin_id: str, include_inactive: bool = False) -> list[dict]:
    rows = _children_of([admin_id], include_inactive=include_inactive)
    rows = sorted(rows, key=lambda a: (-LEVEL_RANK.get(_safe_level(a), 0), a.name or ""))
    return [a.to_dict() for a in rows]


def would_create_cycle(child_id: str, proposed_parent_id: str | None) -> bool:
    """True if making *proposed_parent_id* the parent of *child_id* closes a loop."""
    if proposed_parent_id is None:
        return False
    if proposed_parent_id == child_id:
        return True
    return proposed_parent_id in descendant_ids(child_id)


# ═════════════════════════════════════════════════════════════════════════════
# Mutation
# ═════════════════════════════════════════════════════════════════════════════


def apply_parent(child: Administrator, parent_id: str | None, actor_id: str | None, source: str) -> bool:
    """Check and apply one parent change without committing. Returns False for a no-op."""
    if would_create_cycle(child.id, parent_id):
        logger.warning("Rejected parent %s for admin %s: cycle", parent_id, child.id)
        raise CycleError(child.id, parent_id)

    if parent_id is not None:
        parent = db.session.get(Administrator, parent_id)
        if parent is None or parent.company_id != child.company_id:
            raise NotFoundError(
                resource="Administrator", resource_id=parent_id, company_id=child.company_id
            )
        if parent.rank < child.rank:
            raise ValidationError(
                f"A {child.admin_level} cannot report to a {parent.admin_level}",
                details={"child_level": child.admin_level, "parent_level": parent.admin_level},
            )

    old_parent_id = child.parent_admin_id
    if old_parent_id == parent_id:
        return False

    child.parent_admin_id = parent_id

    HierarchyEdge.query.filter_by(
        child_admin_id=child.id, is_active=True
    ).update({"is_active": False}, synchronize_session=False)
    if parent_id is not None:
        db.session.add(HierarchyEdge(
            company_id=child.company_id,
            parent_admin_id=parent_id,
            child_admin_id=child.id,
            relationship_type="direct",
            is_active=True,
            created_by=actor_id,
        ))
    db.session.flush()

    audit_service.record(
        company_id=child.company_id,
        action_type="hierarchy_changed",
        actor_id=actor_id,
        target_id=child.id,
        target_type="administrator",
        changes={"parent_admin_id": {"old": old_parent_id, "new": parent_id}},
        metadata={"source": source},
    )
    return True


def set_parent(child_id: str, parent_id: str | None, *, actor_id: str | None = None) -> dict:
    """Point *child_id* at a new parent (or None to make it a root).

    Raises:
        CycleError:      parent is the child itself or one of its descendants.
        NotFoundError:   child or parent unknown, or parent in another company.
        ValidationError: parent ranks below the child.
    """
    child = _get_admin(child_id)
    _lock_company(child.company_id)
    try:
        changed = apply_parent(child, parent_id, actor_id, "hierarchy_service.set_parent")
    except Exception:
        db.session.rollback()
        raise
    if changed:
        db.session.commit()
        logger.info("Admin %s now reports to %s", child_id, parent_id)
    return child.to_dict()


def remove_from_hierarchy(child_id: str, *, actor_id: str | None = None) -> dict:
    return set_parent(child_id, None, actor_id=actor_id)


def reassign_children(
    from_admin_id: str,
    to_admin_id: str | None,
    *,
    actor_id: str | None = None,
    commit: bool = True,
) -> int:
    """Move every direct report of *from_admin_id* under *to_admin_id*.

    All moves pass the same checks as ``set_parent``; one failure rolls back
    the whole batch. Returns the number of administrators re-parented.
    """
    source = _get_admin(from_admin_id)
    if to_admin_id == from_admin_id:
        raise CycleError(from_admin_id, to_admin_id)
    _lock_company(source.company_id)

    children = _children_of([from_admin_id])
    moved = 0
    try:
        for child in children:
            if apply_parent(child, to_admin_id, actor_id, "hierarchy_service.reassign_children"):
                moved += 1
    except Exception:
        db.session.rollback()
        raise
    if commit:
        db.session.commit()
    if moved:
        logger.info("Reassigned %d reports from %s to %s", moved, from_admin_id, to_admin_id)
    return moved


# ═════════════════════════════════════════════════════════════════════════════
# Diagnostics
# ═════════════════════════════════════════════════════════════════════════════


def _safe_level(admin: Administrator):
    try:
        return AdminLevel.parse(admin.admin_level)
    except ValueError:
        return None


def _cycle_members(admins, by_id) -> set[str]:
    """Ids whose parent pointers loop back onto themselves."""
    in_cycle: set[str] = set()
    cleared: set[str] = set()
    for start in admins:
        path: list[str] = []
        on_path: set[str] = set()
        current = start.id
        while current in by_id and current not in cleared and current not in on_path:
            path.append(current)
            on_path.add(current)
            current = by_id[current].parent_admin_id
        if current in on_path:
            in_cycle.update(path[path.index(current):])
        cleared.update(path)
    return in_cycle


def validate_hierarchy_integrity(company_id: int) -> dict:
    """Scan a company's administrators and report problems without raising.

    Reports orphaned parent references (missing or cross-tenant parent),
    level-order violations and cycles as human-readable strings.
    """
    admins = Administrator.query.filter_by(company_id=company_id).all()
    by_id = {a.id: a for a in admins}
    issues: list[str] = []

    for admin in admins:
        if not admin.parent_admin_id:
            continue
        parent = by_id.get(admin.parent_admin_id)
        if parent is None:
            issues.append(f'Admin "{admin.name}" has invalid parent reference')
            continue
        child_level, parent_level = _safe_level(admin), _safe_level(parent)
        if child_level and parent_level and child_level.rank > parent_level.rank:
            issues.append(
                f'Admin "{admin.name}" ({admin.admin_level}) incorrectly reports to '
                f'"{parent.name}" ({parent.admin_level})'
            )

    in_cycle = _cycle_members(admins, by_id)
    for admin in admins:
        if admin.id in in_cycle:
            issues.append(f'Admin "{admin.name}" is part of a circular reference')

    if issues:
        logger.warning("Hierarchy integrity issues in company %s: %d", company_id, len(issues))
    return {"valid": not issues, "issues": issues}


def hierarchy_tree(company_id: int, include_inactive: bool = False) -> list[dict]:
    """Nested ``{"admin": ..., "children": [...]}`` roots built from parent pointers only.

    Administrators caught in a parent-pointer cycle are appended as extra
    roots marked ``"in_cycle": True`` so none drop out of the tree.
    """
    q = Administrator.query.filter_by(company_id=company_id)
    if not include_inactive:
        q = q.filter(Administrator.is_active.is_(True))
    admins = q.all()
    by_id = {a.id: a for a in admins}
    in_cycle = _cycle_members(admins, by_id)

    children: dict[str, list[Administrator]] = {}
    roots: list[Administrator] = []
    for admin in admins:
        if admin.parent_admin_id and admin.parent_admin_id in by_id:
            children.setdefault(admin.parent_admin_id, []).append(admin)
        else:
            roots.append(admin)

    def sort_key(a):
        level = _safe_level(a)
        return (-(level.rank if level else 0), a.name or "")

    placed: set[str] = set()

    def build(admin):
        placed.add(admin.id)
        kids = [c for c in sorted(children.get(admin.id, []), key=sort_key) if c.id not in placed]
        return {"admin": admin.to_dict(), "children": [build(c) for c in kids]}

    tree = [build(root) for root in sorted(roots, key=sort_key)]

    # A pointer loop has no root: surface it from its first unplaced member
    for admin in sorted(admins, key=sort_key):
        if admin.id in in_cycle and admin.id not in placed:
            node = build(admin)
            node["in_cycle"] = True
            tree.append(node)
    return tree


def hierarchy_stats(company_id: int) -> dict:
    """Counts over active administrators: total, per level, max depth, orphans."""
    admins = Administrator.query.filter_by(company_id=company_id, is_active=True).all()
    by_id = {a.id: a for a in admins}
    stats = {
        "total_admins": len(admins),
        "by_level": {},
        "max_depth": 0,
        "orphaned_admins": 0,
    }
    children: dict[str, list[str]] = {}
    for admin in admins:
        stats["by_level"][admin.admin_level] = stats["by_level"].get(admin.admin_level, 0) + 1
        if admin.parent_admin_id:
            if admin.parent_admin_id in by_id:
                children.setdefault(admin.parent_admin_id, []).append(admin.id)
            else:
                stats["orphaned_admins"] += 1

    roots = [a.id for a in admins if not a.parent_admin_id]
    visited: set[str] = set()
    frontier, depth = roots, 0
    while frontier:
        depth += 1
        visited.update(frontier)
        frontier = [c for pid in frontier for c in children.get(pid, []) if c not in visited]
    stats["max_depth"] = depth
    return stats
