# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Background maintenance for the tier lifecycle."""

from cortex_memory.maintenance.scheduler import MaintenanceScheduler

__all__ = ["MaintenanceScheduler"]
