# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Lifecycle service layer."""

from ..core.result_types import Err, Ok, Result
from .auditor import ConsistencyAuditor
from .cleanup import CleanupScheduler
from .conversion import ConversionCoordinator
from .coverage import CoverageSnapshot, compute_coverage, compute_policy_coverage
from .owner_data import generate_owner_profile
from .priority import score_priority
from .usage import PolicyUsageRecorder

__all__ = [
    "Result",
    "Ok",
    "Err",
    "CoverageSnapshot",
    "compute_coverage",
    "compute_policy_coverage",
    "score_priority",
    "generate_owner_profile",
    "ConversionCoordinator",
    "PolicyUsageRecorder",
    "CleanupScheduler",
    "ConsistencyAuditor",
]
