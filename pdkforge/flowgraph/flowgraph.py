#  Orders installers by their requirements and runs them in sequence.
#
#  See LICENSE for licence details.

# pylint: disable=invalid-name

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import networkx as nx

from pdkforge.core import INSTALLERS, ForgeDriver, ProvisionHookAction
from pdkforge.logging import ForgeLogging


class Status(Enum):
    """Represents the status of an installer in the graph."""
    NOT_RUN    = "NOT_RUN"
    RUNNING    = "RUNNING"
    INCOMPLETE = "INCOMPLETE"
    COMPLETE   = "COMPLETE"


@dataclass
class InstallerNode:
    """Defines an installer in the graph.

    Returns:
        InstallerNode: Installer name and the installers it needs first.
    """
    name:     str
    requires: List[str] = field(default_factory=list)
    status:   Status    = Status.NOT_RUN

    def __hash__(self) -> int:
        """Nodes are identified by installer name.

        Returns:
            int: Hash of the name.
        """
        return hash(self.name)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, InstallerNode) and other.name == self.name


@dataclass
class InstallerGraph:
    """Defines the installer dependency graph.

    Returns:
        InstallerGraph: Graph with an edge from each requirement to the installer needing it.
    """
    nodes: List[InstallerNode]

    def __post_init__(self) -> None:
        by_name = {n.name: n for n in self.nodes}  # type: Dict[str, InstallerNode]
        self.networkx = nx.DiGraph()
        self.networkx.add_nodes_from(self.nodes)
        for node in self.nodes:
            for req in node.requires:
                if req not in by_name:
                    raise ValueError("Installer {name} requires unknown installer {req}".format(name=node.name, req=req))
                self.networkx.add_edge(by_name[req], node)

    @staticmethod
    def from_driver(driver: ForgeDriver, names: Optional[List[str]] = None) -> "InstallerGraph":
        """Build the graph from installers' declared requirements.

        Args:
            driver (ForgeDriver): Driver used to load each installer.
            names (Optional[List[str]]): Installers to include (default: all known installers).

        Returns:
            InstallerGraph: Graph of the named installers.
        """
        selected = list(INSTALLERS.keys()) if names is None else names
        return InstallerGraph([InstallerNode(name, list(driver.load_installer(name).requires)) for name in selected])

    def node(self, name: str) -> InstallerNode:
        for n in self.networkx:
            if n.name == name:
                return n
        raise KeyError(name)

    def order(self) -> List[InstallerNode]:
        """Installers in an order where each comes after its requirements.

        Raises:
            ValueError: If the requirements form a cycle.

        Returns:
            List[InstallerNode]: Run order.
        """
        try:
            return list(nx.lexicographical_topological_sort(self.networkx, key=lambda n: n.name))
        except nx.NetworkXUnfeasible as e:
            raise ValueError("Installer requirements contain a cycle") from e

    def run(self, driver: ForgeDriver, hook_actions: Optional[List[ProvisionHookAction]] = None) -> bool:
        """Runs every installer in order, stopping at the first that does not finish.

        Args:
            driver (ForgeDriver): Driver to run installers with.
            hook_actions (Optional[List[ProvisionHookAction]]): Hooks applied to every installer.

        Returns:
            bool: True if every installer finished.
        """
        ctxt = ForgeLogging.context("graph")
        for node in self.order():
            node.status = Status.RUNNING
            ctxt.info("Running graph step {name}".format(name=node.name))
            try:
                success = driver.run_installer(node.name, hook_actions)
            except Exception:
                node.status = Status.INCOMPLETE
                raise
            if not success:
                node.status = Status.INCOMPLETE
                ctxt.error("Step {name} failed".format(name=node.name))
                return False
            node.status = Status.COMPLETE
        return True

    def to_mermaid(self, fname: str) -> str:
        """Writes the graph in Mermaid format for visualization.

        Args:
            fname (str): Output file name.

        Returns:
            str: Path to Mermaid Markdown file.
        """
        os.makedirs(os.path.dirname(os.path.abspath(fname)), exist_ok=True)
        with open(fname, 'w', encoding="utf-8") as f:
            f.write("```mermaid\nstateDiagram-v2\n")
            for start in self.networkx:
                f.writelines(
                    "    {a} --> {b}\n".format(a=start.name.replace('-', '_'), b=child.name.replace('-', '_'))
                    for child in nx.neighbors(self.networkx, start)
                )
            f.write("```\n")
        return fname
