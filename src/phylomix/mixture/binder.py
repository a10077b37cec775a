"""
Binding of linked and unlinked model/rate objects to component trees.

Ownership of every model and rate object lies with exactly one link group,
the set of component trees using it. Trees only hold references, so
teardown walks the link groups and releases each object once.
"""

import threading
from dataclasses import dataclass, field
from typing import Optional

from ..models.catalog import ModelCatalog
from ..models.spec import ModelSpec
from .component import ComponentTree

MODEL = "model"
RATE = "rate"


@dataclass
class LinkGroup:
    """
    Owner of one model or rate object.

    Attributes
    ----------
    kind : str
        ``"model"`` or ``"rate"``
    resource : object
        The owned model or rate object
    members : list[int]
        Indices of the component trees referencing ``resource``
    """

    kind: str
    resource: object
    members: list[int] = field(default_factory=list)
    released: bool = False

    @property
    def owner(self) -> int:
        """Index of the tree the resource was created for."""
        return self.members[0]

    @property
    def group_id(self) -> str:
        return f"{self.kind}:{self.owner}"

    def release(self) -> None:
        if not self.released:
            self.resource.release()
            self.released = True


class SharedResourceBinder:
    """
    Create model and rate objects for each component tree and link them.

    Every tree first gets its own objects from the catalog. If the model
    (or rate) is linked, trees 1..K-1 are then re-pointed to tree 0's
    instance and their transient instances are released immediately.

    Parameters
    ----------
    spec : ModelSpec
        Parsed tree-mixture model
    components : list[ComponentTree]
        One component per tree, ``len(components) == spec.n_trees``
    catalog : ModelCatalog, optional
        Model lookup (default: the built-in nucleotide catalog)
    verbose : bool
        Print the descriptor used for each tree
    """

    def __init__(
        self,
        spec: ModelSpec,
        components: list[ComponentTree],
        catalog: Optional[ModelCatalog] = None,
        verbose: bool = False,
    ):
        if len(components) != spec.n_trees:
            raise ValueError(
                f"The model {spec.model_string} declares {spec.n_trees} trees "
                f"but {len(components)} trees were given"
            )
        self.spec = spec
        self.components = components
        self.catalog = catalog if catalog is not None else ModelCatalog()
        self.verbose = verbose
        self.registry: dict[str, LinkGroup] = {}
        self._bound = False

    def bind(self) -> None:
        """Initialize, link and register all model and rate objects."""
        if self._bound:
            raise RuntimeError("Model objects are already bound")

        for i, component in enumerate(self.components):
            descriptor = self.spec.tree_model_name(i)
            if self.verbose:
                print(f"{component.name} model: {descriptor}")
            component.initialize_model(descriptor, self.catalog)

        self._link(MODEL, self.spec.is_model_linked)
        self._link(RATE, self.spec.is_rate_linked)

        # A rate object evaluates against the tree that owns it
        for group in self.rate_groups:
            group.resource.tree = self.components[group.owner]

        for members in self.evaluation_groups:
            lock = threading.RLock()
            for i in members:
                self.components[i].lock = lock

        self._bound = True

    def _link(self, kind: str, linked: bool) -> None:
        if linked:
            shared = getattr(self.components[0], kind)
            for component in self.components[1:]:
                transient = getattr(component, kind)
                if transient is not shared:
                    transient.release()
                setattr(component, kind, shared)
            groups = [LinkGroup(kind, shared, list(range(len(self.components))))]
        else:
            groups = [
                LinkGroup(kind, getattr(component, kind), [i])
                for i, component in enumerate(self.components)
            ]
        for group in groups:
            self.registry[group.group_id] = group

    @property
    def model_groups(self) -> list[LinkGroup]:
        return [g for g in self.registry.values() if g.kind == MODEL]

    @property
    def rate_groups(self) -> list[LinkGroup]:
        return [g for g in self.registry.values() if g.kind == RATE]

    def group_of(self, kind: str, tree_index: int) -> LinkGroup:
        """The link group owning tree ``tree_index``'s model or rate object."""
        for group in self.registry.values():
            if group.kind == kind and tree_index in group.members:
                return group
        raise KeyError(f"No {kind} group contains tree {tree_index}")

    @property
    def evaluation_groups(self) -> list[list[int]]:
        """
        Trees connected by a shared model or rate object.

        Trees in different evaluation groups share no mutable state and can
        be evaluated or optimized concurrently.
        """
        parent = list(range(len(self.components)))

        def find(i: int) -> int:
            while parent[i] != i:
                parent[i] = parent[parent[i]]
                i = parent[i]
            return i

        for group in self.registry.values():
            for i in group.members[1:]:
                parent[find(i)] = find(group.owner)

        groups: dict[int, list[int]] = {}
        for i in range(len(self.components)):
            groups.setdefault(find(i), []).append(i)
        return list(groups.values())

    def n_model_parameters(self) -> int:
        """Free model and rate parameters, counted once per link group."""
        n = 0
        for group in self.model_groups:
            n += group.resource.get_n_dim() + group.resource.get_n_dim_freq()
        for group in self.rate_groups:
            n += group.resource.get_n_dim()
        return n

    def release(self) -> None:
        """
        Release every model and rate object exactly once.

        Objects created before :meth:`bind` failed are not registered in
        any link group yet; they are released through their trees.
        """
        owned = set()
        for group in self.registry.values():
            group.release()
            owned.add(id(group.resource))
        for component in self.components:
            for kind in (MODEL, RATE):
                resource = getattr(component, kind)
                if resource is not None and id(resource) not in owned and not resource.released:
                    resource.release()
                    owned.add(id(resource))
                setattr(component, kind, None)
