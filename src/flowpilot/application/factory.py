"""
Application Layer - Coordinator Factory

This module wires ExecutionCoordinator instances from configuration profiles.

Key Responsibilities:
- Load configuration profiles (dev/prod) from YAML
- Instantiate infrastructure adapters (HTTP stream transport, approval client)
- Pick the frame scheduler used for text coalescing
- Load flow graphs from YAML or JSON files
"""

import json
import os
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml

from flowpilot.application.coalescer import FrameScheduler, LoopFrameScheduler
from flowpilot.application.coordinator import ExecutionCoordinator
from flowpilot.application.modes import create_mode
from flowpilot.core.domain.errors import ProfileNotFoundError
from flowpilot.core.domain.models import FlowGraph
from flowpilot.infrastructure.transport.http_transport import (
    HttpApprovalClient,
    HttpStreamTransport,
)

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "configs"


class CoordinatorFactory:
    """
    Factory for creating coordinators with dependency injection.

    Reads a YAML profile and injects the matching transport, approval client
    and frame scheduler into an ExecutionCoordinator.
    """

    def __init__(self, config_dir: Optional[str] = None):
        """
        Initialize CoordinatorFactory with configuration directory.

        Args:
            config_dir: Path to directory containing profile YAML files
                (defaults to the profiles shipped with the package)
        """
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self.logger = structlog.get_logger().bind(component="coordinator_factory")

    def create_coordinator(
        self,
        mode: str,
        agent_id: str,
        conversation_id: Optional[str] = None,
        flow_graph: Optional[FlowGraph] = None,
        profile: str = "dev",
    ) -> ExecutionCoordinator:
        """
        Create a coordinator for one agent session.

        Args:
            mode: Execution mode (chat, flow, flow_authoring)
            agent_id: Agent whose turns are executed
            conversation_id: Conversation the turns belong to
            flow_graph: Graph to execute (required in flow mode)
            profile: Configuration profile name

        Returns:
            ExecutionCoordinator wired with the profile's adapters

        Raises:
            ProfileNotFoundError: If the profile YAML does not exist
            ValueError: If the mode is unknown or flow mode lacks a graph
        """
        config = self._load_profile(profile)
        strategy = create_mode(mode)

        if strategy.supports_retry and flow_graph is None:
            raise ValueError("Flow mode requires a flow graph")

        self.logger.info(
            "creating_coordinator",
            profile=profile,
            mode=strategy.name,
            agent_id=agent_id,
            steps=len(flow_graph.nodes) if flow_graph else 0,
        )

        return ExecutionCoordinator(
            transport=self._create_transport(config),
            mode=strategy,
            agent_id=agent_id,
            conversation_id=conversation_id,
            flow_graph=flow_graph,
            approvals=self._create_approval_client(config),
            scheduler_factory=self._create_scheduler_factory(config),
        )

    def _load_profile(self, profile: str) -> dict:
        """
        Load configuration profile from YAML file.

        Args:
            profile: Profile name (dev/prod)

        Returns:
            Configuration dictionary

        Raises:
            ProfileNotFoundError: If profile YAML not found
        """
        profile_path = self.config_dir / f"{profile}.yaml"

        if not profile_path.exists():
            self.logger.error(
                "profile_not_found",
                profile=profile,
                path=str(profile_path),
                hint="Ensure profile YAML exists in configs directory",
            )
            raise ProfileNotFoundError(f"Profile not found: {profile_path}")

        with open(profile_path) as f:
            config = yaml.safe_load(f) or {}

        self.logger.debug("profile_loaded", profile=profile, config_keys=list(config.keys()))
        return config

    def _base_url(self, config: dict) -> str:
        transport_config = config.get("transport", {})
        env_var = transport_config.get("base_url_env")
        if env_var and os.getenv(env_var):
            return os.environ[env_var]
        return transport_config.get("base_url", "http://localhost:3000")

    def _create_transport(self, config: dict) -> HttpStreamTransport:
        transport_config = config.get("transport", {})
        return HttpStreamTransport(
            base_url=self._base_url(config),
            routes=transport_config.get("routes"),
            timeout=float(transport_config.get("timeout_seconds", 300)),
            headers=transport_config.get("headers"),
        )

    def _create_approval_client(self, config: dict) -> HttpApprovalClient:
        transport_config = config.get("transport", {})
        return HttpApprovalClient(
            base_url=self._base_url(config),
            route=transport_config.get("approval_route", "/api/agents/confirm"),
            headers=transport_config.get("headers"),
        )

    def _create_scheduler_factory(self, config: dict):
        interval_ms = config.get("rendering", {}).get("frame_interval_ms", 16)
        interval = float(interval_ms) / 1000.0

        def factory() -> FrameScheduler:
            return LoopFrameScheduler(interval=interval)

        return factory


def load_flow_graph(path: str | Path) -> FlowGraph:
    """
    Load a flow graph from a YAML or JSON file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file does not describe a valid graph
    """
    graph_path = Path(path)
    if not graph_path.exists():
        raise FileNotFoundError(f"Flow graph not found: {graph_path}")

    text = graph_path.read_text(encoding="utf-8")
    if graph_path.suffix.lower() == ".json":
        data: Any = json.loads(text)
    else:
        data = yaml.safe_load(text)

    if not isinstance(data, dict):
        raise ValueError(f"Flow graph file must contain a mapping: {graph_path}")
    # Exported agent definitions nest the graph under "flowGraph"
    if "flowGraph" in data:
        data = data["flowGraph"]
    return FlowGraph.from_dict(data)
