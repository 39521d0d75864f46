"""Service layer exports."""

from .deadline_policy import DeadlinePolicy, Transition
from .linking import INVALID_LINK_MESSAGE, LinkingService
from .notifications import LinkNotifier
from .reconciler import WebhookReconciler

__all__ = [
    "DeadlinePolicy",
    "INVALID_LINK_MESSAGE",
    "LinkNotifier",
    "LinkingService",
    "Transition",
    "WebhookReconciler",
]
