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
Canonical Identity

Every document joins on the IDs produced here, so all analyzers derive
module, class, method, override-target and plugin identifiers through
these helpers instead of formatting strings themselves.
"""

import re
from pathlib import Path

UNKNOWN_MODULE = "unknown"
CORE_VENDOR_PREFIX = "Magento\\"

_APP_CODE_PATTERN = re.compile(r"(?:^|/)app/code/([^/]+)/([^/]+)/")
_MODULE_ID_PATTERN = re.compile(r"^[A-Za-z0-9]+_[A-Za-z0-9_]+$")


def normalize_fqcn(name: str) -> str:
    """Strip whitespace and the leading namespace separator."""
    return name.strip().lstrip("\\")


def module_id(vendor: str, module: str) -> str:
    """`Vendor` + `Module` -> `Vendor_Module`."""
    return f"{vendor}_{module}"


def is_module_id(value: str) -> bool:
    return bool(_MODULE_ID_PATTERN.match(value))


def module_id_from_class(fqcn: str) -> str:
    """
    Derive a module ID from the first two namespace segments.

    Example:
        "Vendor\\Module\\Model\\Thing" -> "Vendor_Module"
    """
    parts = [p for p in normalize_fqcn(fqcn).split("\\") if p]
    if len(parts) >= 2:
        return module_id(parts[0], parts[1])
    return UNKNOWN_MODULE


def module_id_from_path(relative_path: str) -> str:
    """Derive a module ID from an `app/code/Vendor/Module/...` path."""
    match = _APP_CODE_PATTERN.search(relative_path.replace("\\", "/"))
    if match:
        return module_id(match.group(1), match.group(2))
    return UNKNOWN_MODULE


def file_id(absolute_path: "str | Path", repo_root: "str | Path") -> str:
    """Repository-relative POSIX path without a leading slash."""
    path = Path(absolute_path)
    root = Path(repo_root)
    try:
        relative = path.resolve().relative_to(root.resolve())
    except ValueError:
        return path.as_posix().lstrip("/")
    return relative.as_posix()


def class_id(fqcn: str) -> str:
    """Lowercased FQCN; PHP class names are case-insensitive."""
    return normalize_fqcn(fqcn).lower()


def method_id(fqcn: str, method: str) -> str:
    return f"{class_id(fqcn)}::{method}"


def di_target_id(fqcn: str) -> str:
    return class_id(fqcn)


def is_core_class(fqcn: str) -> bool:
    return normalize_fqcn(fqcn).startswith(CORE_VENDOR_PREFIX)
