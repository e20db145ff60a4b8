# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
from .table import JOB_ACTIVE, JOB_COMPLETED, JOB_FAILED, JOB_WAITING, JobsTable

__all__ = ["JOB_ACTIVE", "JOB_COMPLETED", "JOB_FAILED", "JOB_WAITING", "JobsTable"]
