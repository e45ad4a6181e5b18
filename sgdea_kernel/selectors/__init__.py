"""Read-only query selectors."""

from sgdea_kernel.selectors.base import BaseSelector
from sgdea_kernel.selectors.workflow_selector import WorkflowSelector

__all__ = ["BaseSelector", "WorkflowSelector"]
