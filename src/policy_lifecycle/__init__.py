# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Policy lifecycle engine - coverage, conversion, cleanup and consistency audits."""

__version__ = "0.1.0"

from .services import (
    CleanupScheduler,
    ConsistencyAuditor,
    ConversionCoordinator,
    PolicyUsageRecorder,
    compute_coverage,
    score_priority,
)
from .storage import DocumentStore, InMemoryDocumentStore, create_store

__all__ = [
    "__version__",
    "CleanupScheduler",
    "ConsistencyAuditor",
    "ConversionCoordinator",
    "PolicyUsageRecorder",
    "compute_coverage",
    "score_priority",
    "DocumentStore",
    "InMemoryDocumentStore",
    "create_store",
]
