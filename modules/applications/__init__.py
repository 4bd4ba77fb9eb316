"""Application Pipeline Tracking.

SQLite-backed tracking of job applications through a per-user pipeline of
stage templates. Stage history is an append-only ledger; current stage, last
activity and company/job status are derived from it on read.
"""

from .models import (
    Application,
    ApplicationStatus,
    Base,
    Comment,
    Company,
    EntityStatus,
    Job,
    Resume,
    StageEntry,
    StageStatus,
    StageTemplate,
)
from .database import (
    get_engine,
    get_session,
    init_db,
    migrate_db,
)
from .templates import (
    list_templates,
    get_template,
    create_template,
    update_template,
    reorder_templates,
    delete_template,
    seed_default_templates,
)
from .service import (
    create_application,
    get_application,
    update_application_status,
    describe_application,
    list_applications,
)
from .ledger import (
    append_stage,
    transition_stage,
    remove_stage,
    list_stages,
    advance_stage,
)
from .derived import (
    DerivedStateCalculator,
    LedgerScanCalculator,
    get_company_summary,
    get_job_summary,
)

__all__ = [
    # Models
    "Application",
    "ApplicationStatus",
    "Base",
    "Comment",
    "Company",
    "EntityStatus",
    "Job",
    "Resume",
    "StageEntry",
    "StageStatus",
    "StageTemplate",
    # Database
    "get_engine",
    "get_session",
    "init_db",
    "migrate_db",
    # Stage template catalog
    "list_templates",
    "get_template",
    "create_template",
    "update_template",
    "reorder_templates",
    "delete_template",
    "seed_default_templates",
    # Application store
    "create_application",
    "get_application",
    "update_application_status",
    "describe_application",
    "list_applications",
    # Stage history ledger
    "append_stage",
    "transition_stage",
    "remove_stage",
    "list_stages",
    "advance_stage",
    # Derived state
    "DerivedStateCalculator",
    "LedgerScanCalculator",
    "get_company_summary",
    "get_job_summary",
]
