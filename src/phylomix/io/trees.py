"""
Phylogenetic tree parsing and manipulation.
"""

import copy
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass(eq=False)
class TreeNode:
    """
    Phylogenetic tree node.

    Attributes
    ----------
    id : int
        Node identifier (preorder position in the parsed string)
    name : Optional[str]
        Node name (for leaves)
    parent : Optional[TreeNode]
        Parent node
    children : list[TreeNode]
        Child nodes
    branch_length : float
        Branch length to parent
    """

    id: int
    name: Optional[str] = None
    parent: Optional["TreeNode"] = field(default=None, repr=False)
    children: list["TreeNode"] = field(default_factory=list, repr=False)
    branch_length: float = 0.0

    @property
    def is_leaf(self) -> bool:
        """Check if node is a leaf."""
        return len(self.children) == 0


@dataclass(eq=False)
class Tree:
    """
    Phylogenetic tree.

    Attributes
    ----------
    root : TreeNode
        Root node of the tree
    n_nodes : int
        Total number of nodes
    n_leaves : int
        Number of leaf nodes
    leaf_names : list[str]
        Names of leaf nodes
    """

    root: TreeNode
    n_nodes: int
    n_leaves: int
    leaf_names: list[str]

    @classmethod
    def from_newick(cls, newick_string: str, default_length: float = 0.1) -> "Tree":
        """
        Parse Newick format tree string.

        Parameters
        ----------
        newick_string : str
            Newick format tree
        default_length : float
            Branch length assigned to branches without an explicit length

        Returns
        -------
        Tree
            Parsed tree
        """
        # Strip [..] comments
        newick = re.sub(r'\[[^\]]*\]', '', newick_string).strip()

        if ';' not in newick:
            raise ValueError("Invalid Newick format: missing semicolon")

        tree_line = newick[:newick.index(';')]
        tree_line = tree_line.replace('\n', '').replace('\t', '').replace('\r', '')
        if not tree_line.strip():
            raise ValueError("Invalid Newick format: no tree found")

        node_id_counter = [0]

        def skip_whitespace(s: str, pos: int) -> int:
            while pos < len(s) and s[pos] in ' \t\n\r':
                pos += 1
            return pos

        def parse_node(s: str, start: int, parent: Optional[TreeNode] = None) -> tuple[TreeNode, int]:
            """Parse a node from position start in string s."""
            node = TreeNode(id=node_id_counter[0], branch_length=default_length)
            node_id_counter[0] += 1
            node.parent = parent
            pos = skip_whitespace(s, start)

            if pos < len(s) and s[pos] == '(':
                pos = skip_whitespace(s, pos + 1)
                while True:
                    child, pos = parse_node(s, pos, node)
                    node.children.append(child)
                    pos = skip_whitespace(s, pos)

                    if pos < len(s) and s[pos] == ',':
                        pos = skip_whitespace(s, pos + 1)
                        continue
                    elif pos < len(s) and s[pos] == ')':
                        pos = skip_whitespace(s, pos + 1)
                        break
                    else:
                        raise ValueError(f"Expected ',' or ')' at position {pos}")

            name_start = pos
            while pos < len(s) and s[pos] not in ',:(); \t\n\r':
                pos += 1
            if pos > name_start:
                node.name = s[name_start:pos]

            pos = skip_whitespace(s, pos)

            if pos < len(s) and s[pos] == ':':
                pos = skip_whitespace(s, pos + 1)
                length_start = pos
                while pos < len(s) and s[pos] not in ',(); \t\n\r':
                    pos += 1
                try:
                    node.branch_length = float(s[length_start:pos])
                except ValueError:
                    raise ValueError(f"Invalid branch length: {s[length_start:pos]}")

            return node, pos

        root, pos = parse_node(tree_line, 0, None)
        if skip_whitespace(tree_line, pos) != len(tree_line):
            raise ValueError(f"Unexpected characters after tree at position {pos}")
        root.branch_length = 0.0

        return cls._from_root(root)

    @classmethod
    def _from_root(cls, root: TreeNode) -> "Tree":
        n_nodes = 0
        leaf_names = []
        stack = [root]
        while stack:
            node = stack.pop()
            n_nodes += 1
            if node.is_leaf:
                if node.name is None:
                    raise ValueError(f"Leaf node {node.id} has no name")
                leaf_names.append(node.name)
            stack.extend(reversed(node.children))

        if len(set(leaf_names)) != len(leaf_names):
            raise ValueError("Tree contains duplicate leaf names")

        return cls(
            root=root,
            n_nodes=n_nodes,
            n_leaves=len(leaf_names),
            leaf_names=leaf_names,
        )

    def postorder(self) -> list[TreeNode]:
        """
        Return nodes in post-order traversal (leaves to root).

        Returns
        -------
        list[TreeNode]
            Nodes in post-order
        """
        result = []

        def traverse(node: TreeNode) -> None:
            for child in node.children:
                traverse(child)
            result.append(node)

        traverse(self.root)
        return result

    @property
    def is_rooted(self) -> bool:
        """True if the root is bifurcating and has an internal child."""
        children = self.root.children
        return len(children) == 2 and any(not child.is_leaf for child in children)

    def unroot(self) -> bool:
        """
        Remove a bifurcating root in place.

        Under a reversible model only the sum of the two root branches is
        identifiable. An internal child of the root is dissolved: its
        children move to the root and its branch length is added to the
        other root branch.

        Returns
        -------
        bool
            True if the tree was rooted
        """
        if not self.is_rooted:
            return False
        first, second = self.root.children
        merged, other = (first, second) if not first.is_leaf else (second, first)

        other.branch_length += merged.branch_length
        for child in merged.children:
            child.parent = self.root
        self.root.children = merged.children + [other]
        merged.children = []
        merged.parent = None
        self.n_nodes -= 1
        return True

    @property
    def branch_nodes(self) -> list[TreeNode]:
        """Nodes that carry a branch (every node except the root), in postorder."""
        return [node for node in self.postorder() if node.parent is not None]

    @property
    def n_branches(self) -> int:
        return self.n_nodes - 1

    def get_branch_lengths(self) -> list[float]:
        return [node.branch_length for node in self.branch_nodes]

    def set_branch_lengths(self, lengths) -> None:
        nodes = self.branch_nodes
        if len(lengths) != len(nodes):
            raise ValueError(
                f"Expected {len(nodes)} branch lengths, got {len(lengths)}"
            )
        for node, length in zip(nodes, lengths):
            node.branch_length = float(length)

    def tree_length(self) -> float:
        """Sum of all branch lengths."""
        return float(sum(self.get_branch_lengths()))

    def internal_tree_length(self, epsilon: float = 0.0) -> float:
        """Sum of internal branch lengths longer than ``epsilon``."""
        return float(sum(
            node.branch_length for node in self.branch_nodes
            if not node.is_leaf and node.branch_length > epsilon
        ))

    def copy(self) -> "Tree":
        """Return a deep copy of the tree."""
        return copy.deepcopy(self)

    def to_newick(self, precision: int = 6) -> str:
        """
        Write the tree in Newick format.

        Parameters
        ----------
        precision : int
            Number of decimal places for branch lengths

        Returns
        -------
        str
            Newick string terminated by a semicolon
        """

        def write(node: TreeNode) -> str:
            if node.is_leaf:
                text = node.name
            else:
                text = "(" + ",".join(write(child) for child in node.children) + ")"
                if node.name:
                    text += node.name
            if node.parent is not None:
                text += f":{node.branch_length:.{precision}f}"
            return text

        return write(self.root) + ";"

    def __repr__(self) -> str:
        return f"Tree(n_leaves={self.n_leaves}, n_nodes={self.n_nodes})"


def read_trees(source: Path | str) -> list[Tree]:
    """
    Read one or more Newick trees.

    Parameters
    ----------
    source : Path or str
        Path to a file with one tree per ``;``-terminated record, or the
        Newick text itself

    Returns
    -------
    list[Tree]
        Trees in file order
    """
    if isinstance(source, Path) or _is_file(source):
        text = Path(source).read_text()
    else:
        text = source

    text = re.sub(r'\[[^\]]*\]', '', text)
    records = [record.strip() for record in text.split(';')]
    trees = [Tree.from_newick(record + ';') for record in records if record]
    if not trees:
        raise ValueError("No trees found")
    return trees


def _is_file(text: str) -> bool:
    # Newick text can be longer than the OS allows for a path
    try:
        return Path(text).is_file()
    except (OSError, ValueError):
        return False
