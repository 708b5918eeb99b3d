# SPDX-License-Identifier: LGPL-3.0-or-later
# guestprep/orchestrator/__init__.py
from .pipeline import PrepPipeline
from .report import RunReport

__all__ = ["PrepPipeline", "RunReport"]
