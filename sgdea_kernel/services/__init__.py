"""Kernel write services (flush-only, caller owns the transaction)."""

from sgdea_kernel.services.base import BaseService
from sgdea_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = ["BaseService", "SequenceCounter", "SequenceService"]
