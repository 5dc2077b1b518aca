"""Organization bootstrap: the tenant row plus its starter rules."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from txn_monitoring.db import record_audit
from txn_monitoring.models import Organization
from txn_monitoring.rules.store import seed_default_rules

logger = logging.getLogger(__name__)


def create_organization(session: Session, name: str, seed_defaults: bool = True) -> Organization:
    org = Organization(name=name)
    session.add(org)
    session.flush()
    record_audit(session, "Organization Created", "organization", org.id, organization_id=org.id)
    if seed_defaults:
        rules = seed_default_rules(session, org.id)
        logger.info("Seeded %d default rules for organization %s", len(rules), org.id)
    return org
