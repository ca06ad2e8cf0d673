from .flowgraph import InstallerGraph, InstallerNode, Status
