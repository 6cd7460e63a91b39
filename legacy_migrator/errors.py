# Licensed to the Apache Software Foundation (ASF) under one or more
# contributor license agreements.  See the NOTICE file distributed with
# this work for additional information regarding copyright ownership.
# The ASF licenses this file to You under the Apache License, Version 2.0
# (the "License"); you may not use this file except in compliance with
# the License.  You may obtain a copy of the License at
#
#      https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Exception types raised by the scheduler components.

Components raise these; the orchestrator turns them into failure envelopes.
"""

from typing import Optional


class MigratorError(Exception):
    """Base class for all scheduler errors."""


class ScanError(MigratorError):
    """A single file could not be read or parsed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Could not scan {path}: {reason}")
        self.path = path
        self.reason = reason


class StoreError(MigratorError):
    """The durable store could not complete a call."""


class ProjectNotFound(MigratorError):
    """No workspace or migration project exists for the given id."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class UnitNotFound(MigratorError):
    """No source unit exists for the given id within the project."""

    def __init__(self, unit_id: str, project_id: Optional[str] = None) -> None:
        where = f" in project {project_id}" if project_id else ""
        super().__init__(f"Unit not found: {unit_id}{where}")
        self.unit_id = unit_id


class InvalidTransition(MigratorError):
    """A status change the state machine does not permit."""

    def __init__(self, unit_id: str, current: str, target: str) -> None:
        super().__init__(f"Unit {unit_id} cannot move from {current} to {target}")
        self.unit_id = unit_id
        self.current = current
        self.target = target


class EvidenceMissing(MigratorError):
    """Completion was requested but no output artifacts were observed."""


class ProbeInterrupted(MigratorError):
    """A filesystem walk exceeded its deadline or was cancelled."""
