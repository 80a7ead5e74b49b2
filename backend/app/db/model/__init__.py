
# 聚合导入所有模型，供 Alembic 发现

from .recipe import Recipe
from .rules import TaggingRule, MetafieldRule
from .activity_log import ActivityLog, ActivityLogDetail
from .automation_log import AutomationLog
from .backup import Backup
from .usage import Usage
from .job_metric import JobMetric
from .bulk_job import BulkJob
from .shop import ShopInstallation

__all__ = [
    # automation
    "Recipe", "TaggingRule", "MetafieldRule",
    # audit trail
    "ActivityLog", "ActivityLogDetail", "AutomationLog",
    # bulk / usage
    "Backup", "Usage", "JobMetric", "BulkJob",
    # others
    "ShopInstallation",
]
