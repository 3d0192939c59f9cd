"""
Shared fixtures: small module trees written into tmp_path.
"""

from pathlib import Path
from typing import Callable

import pytest

from modgraph.config import AnalyzerConfig, default_settings


def write_tree(root: Path, files: dict[str, str]) -> Path:
    """Write `relative path -> content` pairs under root."""
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


SHOP_FILES: dict[str, str] = {
    "app/code/Acme/Core/etc/module.xml": """<?xml version="1.0"?>
<config>
    <module name="Acme_Core"/>
</config>
""",
    "app/code/Acme/Core/Api/ThingInterface.php": """<?php
namespace Acme\\Core\\Api;

interface ThingInterface
{
    public function save();
}
""",
    "app/code/Acme/Core/Model/Thing.php": """<?php
namespace Acme\\Core\\Model;

use Acme\\Core\\Api\\ThingInterface;

class Thing implements ThingInterface
{
    public function save()
    {
        return $this;
    }
}
""",
    "app/code/Acme/Catalog/etc/module.xml": """<?xml version="1.0"?>
<config>
    <module name="Acme_Catalog">
        <sequence>
            <module name="Acme_Core"/>
        </sequence>
    </module>
</config>
""",
    "app/code/Acme/Catalog/etc/di.xml": """<?xml version="1.0"?>
<config>
    <preference for="Acme\\Core\\Api\\ThingInterface" type="Acme\\Catalog\\Model\\CatalogThing"/>
    <type name="Acme\\Core\\Api\\ThingInterface">
        <plugin name="catalog_thing_guard" type="Acme\\Catalog\\Plugin\\ThingPlugin" sortOrder="10"/>
    </type>
</config>
""",
    "app/code/Acme/Catalog/etc/graphql/di.xml": """<?xml version="1.0"?>
<config>
    <preference for="Acme\\Core\\Api\\ThingInterface" type="Acme\\Catalog\\Model\\GraphThing"/>
</config>
""",
    "app/code/Acme/Catalog/etc/webapi.xml": """<?xml version="1.0"?>
<routes>
    <route url="/V1/things" method="POST">
        <service class="Acme\\Core\\Api\\ThingInterface" method="save"/>
    </route>
</routes>
""",
    "app/code/Acme/Catalog/Model/CatalogThing.php": """<?php
namespace Acme\\Catalog\\Model;

use Acme\\Core\\Model\\Thing;

class CatalogThing extends Thing
{
    public function save()
    {
        $copy = new Thing();
        return $copy;
    }
}
""",
    "app/code/Acme/Catalog/Model/GraphThing.php": """<?php
namespace Acme\\Catalog\\Model;

class GraphThing extends \\Acme\\Core\\Model\\Thing
{
}
""",
    "app/code/Acme/Catalog/Plugin/ThingPlugin.php": """<?php
namespace Acme\\Catalog\\Plugin;

use Acme\\Core\\Api\\ThingInterface;

class ThingPlugin
{
    public function aroundSave(ThingInterface $subject, callable $proceed)
    {
        return $subject;
    }

    public function afterSave(ThingInterface $subject, $result)
    {
        return $result;
    }
}
""",
}


@pytest.fixture
def make_tree(tmp_path: Path) -> Callable[[dict[str, str]], Path]:
    """Factory writing a file tree into a fresh tmp_path."""
    def _make(files: dict[str, str]) -> Path:
        return write_tree(tmp_path, files)
    return _make


@pytest.fixture
def shop_repo(make_tree) -> Path:
    """Two modules: Acme_Core (interface + model) and Acme_Catalog (overrides, plugin, route)."""
    return make_tree(SHOP_FILES)


@pytest.fixture
def shop_files() -> dict[str, str]:
    """A copy of SHOP_FILES that a test may extend."""
    return dict(SHOP_FILES)


@pytest.fixture
def offline_config() -> AnalyzerConfig:
    """Defaults with the git signal and thread pool switched off."""
    return AnalyzerConfig.from_mapping({
        **default_settings(),
        "churn": {"enabled": False},
        "workers": 1,
    })
