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
Source Analysis Package

Classification, relatedness and batching of legacy source files.
"""

from legacy_migrator.analysis.models import SourceUnit, Workspace, Batch, UnitKind, UnitStatus
from legacy_migrator.analysis.naming import NamingStrategy, WebFormsNamingStrategy
from legacy_migrator.analysis.classifier import FileClassifier
from legacy_migrator.analysis.relatedness import RelatednessGraph
from legacy_migrator.analysis.batching import BatchAssembler

__all__ = [
    "SourceUnit",
    "Workspace",
    "Batch",
    "UnitKind",
    "UnitStatus",
    "NamingStrategy",
    "WebFormsNamingStrategy",
    "FileClassifier",
    "RelatednessGraph",
    "BatchAssembler",
]
