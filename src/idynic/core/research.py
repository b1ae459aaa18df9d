from __future__ import annotations

import logging

from idynic.core.extraction import truncate
from idynic.db.models import Opportunity
from idynic.types import CompanyResearch

logger = logging.getLogger(__name__)


def research_company(llm, opportunity: Opportunity) -> CompanyResearch | None:
    """Short research note for the opportunity's company; ``None`` when the company is unknown."""
    company = (opportunity.company or "").strip()
    if not company:
        logger.info("Skipping company research for opportunity_id=%s: no company", opportunity.id)
        return None

    return llm.research_company(
        company=company,
        title=opportunity.title,
        description=truncate(opportunity.description or "", 4000),
    )
