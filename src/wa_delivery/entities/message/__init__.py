# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
from .table import MESSAGE_STATUSES, STATUS_FAILED, STATUS_QUEUED, STATUS_SENT, MessagesTable

__all__ = ["MESSAGE_STATUSES", "MessagesTable", "STATUS_FAILED", "STATUS_QUEUED", "STATUS_SENT"]
