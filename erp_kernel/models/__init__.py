"""ORM models for the kernel: approval workflows/requests and the audit log."""

from erp_kernel.models.approval import (
    ApprovalActionModel,
    ApprovalLevelApproverModel,
    ApprovalLevelModel,
    ApprovalRequestModel,
    ApprovalWorkflowModel,
)
from erp_kernel.models.audit_log import AuditLogModel

__all__ = [
    "ApprovalActionModel",
    "ApprovalLevelApproverModel",
    "ApprovalLevelModel",
    "ApprovalRequestModel",
    "ApprovalWorkflowModel",
    "AuditLogModel",
]
