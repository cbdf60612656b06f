"""Unified Oracle Configuration System

This module provides a single source of truth for the oracle sets used by
the CLI and the tests.

It supports:
- Wiring oracles (parse, selectors, references, ports, secrets), which run
  offline against the manifest text alone
- The schema oracle (kubernetes-validate), which checks each document
  against the Kubernetes OpenAPI schema
"""

from typing import List, Optional

from kubewire.core.schema.oracle import Oracle
from kubewire.k8s.oracles import (
    ParseOracle,
    PortOracle,
    ReferenceOracle,
    SchemaOracle,
    SecretOracle,
    SelectorOracle,
    WorkloadSelectorOracle,
)


class OracleConfig:
    """Configuration for oracle sets.

    Oracles are built on demand so that configuration (schema version,
    strict mode) is read when the set is used, not at import time.
    """

    def __init__(
        self,
        name: str,
        wiring: bool = True,
        schema: bool = False,
        description: str = ""
    ):
        """Initialize oracle configuration.

        Args:
            name: Configuration name (e.g., "wiring", "full")
            wiring: Include the cross-reference oracles
            schema: Include the OpenAPI schema oracle
            description: Description of this configuration
        """
        self.name = name
        self.wiring = wiring
        self.schema = schema
        self.description = description

    def get_oracles(self, kubernetes_version: Optional[str] = None) -> List[Oracle]:
        """Get list of oracles for this configuration.

        Args:
            kubernetes_version: Overrides the schema version from config

        Returns:
            List of oracle instances
        """
        oracles: List[Oracle] = []
        if self.wiring:
            oracles.extend([
                ParseOracle(),
                SelectorOracle(),
                WorkloadSelectorOracle(),
                ReferenceOracle(),
                PortOracle(),
                SecretOracle(),
            ])
        if self.schema:
            oracles.append(SchemaOracle(kubernetes_version=kubernetes_version))
        return oracles


WIRING_CONFIG = OracleConfig(
    name="wiring",
    wiring=True,
    schema=False,
    description="Cross-reference checks: selectors, env references, ports, secrets"
)

FULL_CONFIG = OracleConfig(
    name="full",
    wiring=True,
    schema=True,
    description="Cross-reference checks plus Kubernetes OpenAPI schema validation"
)

SCHEMA_CONFIG = OracleConfig(
    name="schema",
    wiring=False,
    schema=True,
    description="Kubernetes OpenAPI schema validation only"
)

CONFIGS = {
    "wiring": WIRING_CONFIG,
    "full": FULL_CONFIG,
    "schema": SCHEMA_CONFIG,
}


def get_oracle_config(config_name: str) -> OracleConfig:
    """Get oracle configuration by name.

    Raises:
        ValueError: If config_name is not recognized
    """
    if config_name not in CONFIGS:
        raise ValueError(
            f"Unknown oracle config: {config_name}. "
            f"Available: {', '.join(CONFIGS.keys())}"
        )
    return CONFIGS[config_name]


def get_oracles_for_scenario(scenario: str, kubernetes_version: Optional[str] = None) -> List[Oracle]:
    """Convenience wrapper around get_oracle_config().get_oracles()."""
    return get_oracle_config(scenario).get_oracles(kubernetes_version=kubernetes_version)
