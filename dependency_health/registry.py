"""
Dependency Health - Dependency Registry.

============================================================
IMMUTABLE DEPENDENCY CATALOG
============================================================

Holds the DependencyDefinitions the monitor checks:
- Built once at startup (from code, dicts or YAML)
- Ordered, ids unique
- Grouping by category

Category-specific behaviour (exchanges vs RPCs vs price feeds)
is expressed entirely as data: endpoints, assertions, timeouts.

============================================================
USAGE
============================================================

```python
registry = DependencyRegistry.from_yaml(Path("dependencies.yaml"))

for definition in registry:
    print(definition.id, definition.criticality.value)

rpcs = registry.by_category("blockchain_rpc")
```

============================================================
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List

import yaml

from .assertions import assertion_from_dict
from .exceptions import ConfigurationError, DependencyNotFoundError
from .models import Criticality, DependencyDefinition, EndpointProbe


logger = logging.getLogger(__name__)


class DependencyRegistry:
    """
    Ordered, immutable collection of dependency definitions.
    """

    def __init__(self, definitions: Iterable[DependencyDefinition]) -> None:
        self._definitions: Dict[str, DependencyDefinition] = {}

        for definition in definitions:
            if definition.id in self._definitions:
                raise ConfigurationError(
                    f"Duplicate dependency id: {definition.id}",
                    config_key="id",
                    actual_value=definition.id,
                )
            if not definition.endpoints:
                raise ConfigurationError(
                    f"Dependency {definition.id} has no endpoints",
                    config_key=f"{definition.id}.endpoints",
                )
            self._definitions[definition.id] = definition

        logger.info(
            f"DependencyRegistry loaded {len(self._definitions)} dependencies "
            f"in {len(self.categories())} categories"
        )

    # =========================================================
    # QUERIES
    # =========================================================

    def get(self, dependency_id: str) -> DependencyDefinition:
        """Get a definition; raises DependencyNotFoundError."""
        try:
            return self._definitions[dependency_id]
        except KeyError:
            raise DependencyNotFoundError(dependency_id, self.ids()) from None

    def ids(self) -> List[str]:
        return list(self._definitions)

    def categories(self) -> List[str]:
        """Distinct categories in registration order."""
        seen: List[str] = []
        for definition in self._definitions.values():
            if definition.category not in seen:
                seen.append(definition.category)
        return seen

    def by_category(self, category: str) -> List[DependencyDefinition]:
        return [d for d in self._definitions.values() if d.category == category]

    def critical(self) -> List[DependencyDefinition]:
        return [d for d in self._definitions.values() if d.is_critical]

    def __contains__(self, dependency_id: object) -> bool:
        return dependency_id in self._definitions

    def __iter__(self) -> Iterator[DependencyDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    # =========================================================
    # LOADING
    # =========================================================

    @classmethod
    def from_dicts(cls, items: Iterable[Dict[str, Any]]) -> "DependencyRegistry":
        """Build a registry from plain mappings."""
        return cls(definition_from_dict(item) for item in items)

    @classmethod
    def from_yaml(cls, path: Path) -> "DependencyRegistry":
        """
        Load a registry from YAML.

        Expected shape:

            dependencies:
              - id: coingecko
                name: CoinGecko API
                category: price_feed
                criticality: critical
                endpoints:
                  - name: ping
                    url: https://api.coingecko.com/api/v3/ping
                    assertion: {type: json_path, path: gecko_says, op: exists}
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Cannot read dependency file {path}: {e}",
                config_key="dependencies",
            ) from e

        items = data.get("dependencies") if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ConfigurationError(
                "Dependency file must contain a list under 'dependencies'",
                config_key="dependencies",
            )
        return cls.from_dicts(items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": len(self),
            "categories": self.categories(),
            "dependencies": [d.to_dict() for d in self],
        }


def endpoint_from_dict(data: Dict[str, Any], owner: str = "") -> EndpointProbe:
    """Build an EndpointProbe from a mapping."""
    try:
        name = data["name"]
        url = data["url"]
    except (KeyError, TypeError) as e:
        raise ConfigurationError(
            f"Endpoint of {owner or 'dependency'} is missing {e}",
            config_key=f"{owner}.endpoints",
        ) from e

    assertion = None
    if data.get("assertion") is not None:
        assertion = assertion_from_dict(data["assertion"])

    timeout_ms = data.get("timeout_ms")
    return EndpointProbe(
        name=name,
        url=url,
        method=str(data.get("method", "GET")).upper(),
        headers=dict(data.get("headers") or {}),
        body=data.get("body"),
        expected_status=int(data.get("expected_status", 200)),
        assertion=assertion,
        timeout_ms=int(timeout_ms) if timeout_ms is not None else None,
    )


def definition_from_dict(data: Dict[str, Any]) -> DependencyDefinition:
    """Build a DependencyDefinition from a mapping."""
    try:
        dependency_id = data["id"]
    except (KeyError, TypeError) as e:
        raise ConfigurationError(
            f"Dependency entry without id: {json.dumps(data, default=str)[:200]}",
            config_key="id",
        ) from e

    raw_criticality = str(data.get("criticality", Criticality.MEDIUM.value)).lower()
    try:
        criticality = Criticality(raw_criticality)
    except ValueError:
        raise ConfigurationError(
            f"Invalid criticality for {dependency_id}",
            config_key=f"{dependency_id}.criticality",
            expected_value=", ".join(c.value for c in Criticality),
            actual_value=raw_criticality,
        ) from None

    endpoints = tuple(
        endpoint_from_dict(e, owner=dependency_id)
        for e in data.get("endpoints") or []
    )

    return DependencyDefinition(
        id=dependency_id,
        name=data.get("name", dependency_id),
        category=data.get("category", "uncategorized"),
        criticality=criticality,
        endpoints=endpoints,
    )
