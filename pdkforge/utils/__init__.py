#  Misc utils/functions for pdkforge.
#
#  See LICENSE for licence details.

import copy
from typing import Dict, List, Optional, Tuple, TypeVar


def deepdict(x: dict) -> dict:
    """
    Deep copy a dictionary. This is needed because dict() by itself only makes a shallow copy.

    :param x: Dictionary to copy
    :return: Deep copy of the dictionary provided by copy.deepcopy().
    """
    return copy.deepcopy(x)


_T = TypeVar('_T')


def add_dicts(a: dict, b: dict) -> dict:
    """Helper method: join two dicts together while type checking.
    The second dictionary will override any entries in the first."""
    assert isinstance(a, dict)
    assert isinstance(b, dict)

    # Don't modify the original 'a', and don't alias mutable values of 'b'.
    newdict = deepdict(a)
    newdict.update(deepdict(b))
    return newdict


def topological_sort(graph: Dict[str, Tuple[List[str], List[str]]], starting_nodes: List[str]) -> List[str]:
    """
    Perform a topological sort on the graph and return a valid ordering.

    :param graph: dict that represents key as the node and value as a tuple of (outgoing edges, incoming edges).
    :param starting_nodes: List of starting nodes to use.
    :return: A valid topological ordering of the graph.
    """

    # Make a copy of the graph since we'll be modifying it.
    working_graph = deepdict(graph)  # type: Dict[str, Tuple[List[str], List[str]]]

    queue = []  # type: List[str]
    output = []  # type: List[str]

    queue.extend(starting_nodes)

    while len(queue) > 0:
        node = queue.pop(0)

        # It should have no incoming edges.
        assert len(working_graph[node][1]) == 0

        output.append(node)

        for target_node in working_graph[node][0]:
            working_graph[target_node][1].remove(node)

            # If the target node now has no incoming nodes, we can add it to the queue.
            if len(working_graph[target_node][1]) == 0:
                queue.append(target_node)

    return output


def get_or_else(optional: Optional[_T], default: _T) -> _T:
    """
    Get the value in optional or the given default if it is None.

    :param optional: Optional value
    :param default: Default value if optional is None
    :return: The value in optional or default
    """
    if optional is None:
        return default
    else:
        return optional
