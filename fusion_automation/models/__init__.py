from fusion_automation.core.db.session import Base
from fusion_automation.models.automation import (
    ActionExecutionStatus,
    AutomationActionExecution,
    AutomationExecution,
    AutomationRuleRecord,
    ExecutionStatus,
)
