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
Module Graph Analysis Package

Extractors and analytics over the module tree: dependency graph,
coupling, scoped override resolution, plugin seams and graph risk.
"""

from modgraph.analysis.models import Edge, Evidence, Module, PluginSeam
from modgraph.analysis.warnings import Extraction, WarningLog
from modgraph.analysis.module_resolver import ModuleResolver
from modgraph.analysis.dependency_graph import DependencyGraph, DependencyGraphBuilder
from modgraph.analysis.coupling import compute_coupling
from modgraph.analysis.resolution import DelegationResolver, ResolutionEngine
from modgraph.analysis.plugin_seams import PluginSeamAnalyzer
from modgraph.analysis.graph_risk import detect_cycles, percentile_leq, rank_hotspots

__all__ = [
    "Edge",
    "Evidence",
    "Module",
    "PluginSeam",
    "Extraction",
    "WarningLog",
    "ModuleResolver",
    "DependencyGraph",
    "DependencyGraphBuilder",
    "compute_coupling",
    "DelegationResolver",
    "ResolutionEngine",
    "PluginSeamAnalyzer",
    "detect_cycles",
    "percentile_leq",
    "rank_hotspots",
]
