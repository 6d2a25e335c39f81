"""
Earnings configuration store.

Manages RuleSet versions: exactly one rule set is active at a time, and a
rule set's rules are never changed after creation. Revising a rule set
inserts a new version and, if the source was active, moves the active
flag to it in the same transaction.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.models import AuditAction, RuleSet
from src.services.exceptions import (
    CannotDeleteActive,
    ConfigInvalid,
    ConfigNotFound,
    ConfigValidationError,
)
from src.services.rules import DEFAULT_RULES, Rule, dump_rules, load_rules
from src.utils.audit import SYSTEM_ACTOR, log_action

logger = logging.getLogger(__name__)

DEFAULT_RULE_SET_VERSION = 0


def default_rule_set() -> RuleSet:
    """
    Built-in rule set used while no rule set has been activated.

    Transient: never added to a session. Version 0 marks earnings computed
    with it.
    """
    return RuleSet(
        id=None,
        version=DEFAULT_RULE_SET_VERSION,
        name="Built-in default",
        rules=dump_rules(DEFAULT_RULES),
        is_active=True,
        notes="67% driver, 33% company for every fee",
    )


class ConfigStore:
    """RuleSet lifecycle on top of an async session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ── Lookup ────────────────────────────────────────────

    async def get(self, rule_set_id: int) -> RuleSet:
        rule_set = await self.db.get(RuleSet, rule_set_id)
        if rule_set is None:
            raise ConfigNotFound(rule_set_id)
        return rule_set

    async def get_active(self) -> RuleSet:
        """Active rule set, or the built-in default if none is active."""
        result = await self.db.execute(
            select(RuleSet).where(RuleSet.is_active.is_(True))
        )
        rule_set = result.scalar_one_or_none()
        if rule_set is None:
            return default_rule_set()
        return rule_set

    async def get_active_rules(self) -> Tuple[RuleSet, List[Rule]]:
        """
        Active rule set with its parsed rules.

        A stored active rule set that no longer validates is reported and
        replaced by the built-in default, so deliveries are never left
        without a split.
        """
        rule_set = await self.get_active()
        try:
            return rule_set, load_rules(rule_set.rules)
        except ConfigValidationError as e:
            logger.error(
                f"Active rule set {rule_set.id} (v{rule_set.version}) is invalid: "
                f"{e.message}; using built-in default"
            )
            return default_rule_set(), list(DEFAULT_RULES)

    async def get_rules(self, rule_set_id: int) -> Tuple[RuleSet, List[Rule]]:
        """Named rule set with its parsed rules. Invalid rules raise ConfigInvalid."""
        rule_set = await self.get(rule_set_id)
        try:
            return rule_set, load_rules(rule_set.rules)
        except ConfigValidationError as e:
            raise ConfigInvalid(rule_set_id, e)

    async def list_rule_sets(self, page: int = 1, limit: int = 20) -> Tuple[Sequence[RuleSet], int]:
        """Rule sets, newest version first, with the total count."""
        total = await self.db.scalar(select(func.count()).select_from(RuleSet))

        result = await self.db.execute(
            select(RuleSet)
            .order_by(RuleSet.version.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return result.scalars().all(), total or 0

    # ── Changes ───────────────────────────────────────────

    async def create(
        self,
        rules: list,
        notes: Optional[str] = None,
        author: Optional[str] = None,
        name: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> RuleSet:
        """
        Validate and store a new, inactive rule set version.

        Raises:
            ConfigValidationError if the rules are malformed
        """
        parsed = load_rules(rules)
        rule_set = await self._insert(parsed, notes, author, name)

        await log_action(
            db=self.db,
            actor=author or SYSTEM_ACTOR,
            action=AuditAction.CREATE_RULE_SET,
            target_type="rule_set",
            target_id=rule_set.id,
            action_metadata={"version": rule_set.version},
            ip_address=ip_address,
        )
        await self.db.commit()

        logger.info(f"Rule set v{rule_set.version} created by {author or SYSTEM_ACTOR}")
        return rule_set

    async def revise(
        self,
        rule_set_id: int,
        author: Optional[str] = None,
        rules: Optional[list] = None,
        notes: Optional[str] = None,
        name: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> RuleSet:
        """
        Create the next version from an existing rule set.

        Fields not given are copied from the source. If the source is the
        active rule set, the new version becomes active.
        """
        source = await self.get(rule_set_id)
        parsed = load_rules(rules if rules is not None else source.rules)

        revised = await self._insert(
            parsed,
            notes if notes is not None else source.notes,
            author,
            name or source.name,
            derived_from_version=source.version,
        )
        if source.is_active:
            await self._switch_active(revised, author)

        await log_action(
            db=self.db,
            actor=author or SYSTEM_ACTOR,
            action=AuditAction.CREATE_RULE_SET,
            target_type="rule_set",
            target_id=revised.id,
            action_metadata={
                "version": revised.version,
                "derived_from_version": source.version,
                "activated": revised.is_active,
            },
            ip_address=ip_address,
        )
        await self.db.commit()

        logger.info(
            f"Rule set v{revised.version} revised from v{source.version} "
            f"by {author or SYSTEM_ACTOR} (active={revised.is_active})"
        )
        return revised

    async def activate(
        self,
        rule_set_id: int,
        author: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> RuleSet:
        """
        Make one rule set active and every other inactive, in one transaction.

        Raises:
            ConfigNotFound if the id does not exist
            ConfigInvalid if the stored rules fail validation
        """
        rule_set, _ = await self.get_rules(rule_set_id)
        await self._switch_active(rule_set, author)

        await log_action(
            db=self.db,
            actor=author or SYSTEM_ACTOR,
            action=AuditAction.ACTIVATE_RULE_SET,
            target_type="rule_set",
            target_id=rule_set.id,
            action_metadata={"version": rule_set.version},
            ip_address=ip_address,
        )
        await self.db.commit()

        logger.info(f"Rule set v{rule_set.version} activated by {author or SYSTEM_ACTOR}")
        return rule_set

    async def delete_non_active(
        self,
        rule_set_id: int,
        author: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        """
        Raises:
            ConfigNotFound if the id does not exist
            CannotDeleteActive if it is the active rule set
        """
        rule_set = await self.get(rule_set_id)
        if rule_set.is_active:
            raise CannotDeleteActive(rule_set_id)

        version = rule_set.version
        await self.db.delete(rule_set)
        await log_action(
            db=self.db,
            actor=author or SYSTEM_ACTOR,
            action=AuditAction.DELETE_RULE_SET,
            target_type="rule_set",
            target_id=rule_set_id,
            action_metadata={"version": version},
            ip_address=ip_address,
        )
        await self.db.commit()

        logger.info(f"Rule set v{version} deleted by {author or SYSTEM_ACTOR}")

    # ── Internals ─────────────────────────────────────────

    async def _next_version(self) -> int:
        current = await self.db.scalar(select(func.max(RuleSet.version)))
        return (current or 0) + 1

    async def _insert(
        self,
        rules: Sequence[Rule],
        notes: Optional[str],
        author: Optional[str],
        name: Optional[str],
        derived_from_version: Optional[int] = None,
    ) -> RuleSet:
        version = await self._next_version()
        rule_set = RuleSet(
            version=version,
            name=name or f"Earnings rules v{version}",
            rules=dump_rules(rules),
            notes=notes,
            is_active=False,
            derived_from_version=derived_from_version,
            created_by=author,
            updated_by=author,
        )
        self.db.add(rule_set)
        await self.db.flush()
        return rule_set

    async def _switch_active(self, rule_set: RuleSet, author: Optional[str]) -> None:
        # Deactivate first: the partial unique index allows one active row
        await self.db.execute(
            update(RuleSet)
            .where(RuleSet.is_active.is_(True), RuleSet.id != rule_set.id)
            .values(is_active=False)
        )
        rule_set.is_active = True
        rule_set.updated_by = author
        rule_set.effective_from = datetime.now(timezone.utc)
        await self.db.flush()
