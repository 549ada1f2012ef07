"""Scope tree composition.

Scopes nest so a descendant's queries are constrained by the location chain
its nearest item scope publishes. Facet and finder scopes memoize results
per (name, parameter hash) and layer them over an ancestor's results without
dropping any.
"""

from cachescope.tree.facet import FacetScope, FacetTarget
from cachescope.tree.finder import FinderScope
from cachescope.tree.item import ItemScope
from cachescope.tree.items import ItemsScope
from cachescope.tree.node import Attached, Attachment, Detached, ScopeNode, resolve_attachment
from cachescope.tree.views import ItemsView, ItemView, ScopeView, facet_result

__all__ = [
    # Nodes
    "ScopeNode",
    "ItemScope",
    "ItemsScope",
    "FinderScope",
    "FacetScope",
    "FacetTarget",
    # Attachment
    "Attached",
    "Detached",
    "Attachment",
    "resolve_attachment",
    # Views
    "ItemView",
    "ItemsView",
    "ScopeView",
    "facet_result",
]
